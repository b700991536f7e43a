#!/usr/bin/env python3
"""
vmi: virtual machine images made simple

Convert an Amazon Machine Image (AMI) into a block device attached to the
current EC2 host:

    sudo vmi -v convert ami ami-0123456789abcdef0 device /dev/xvdg
"""

import argparse
import logging
import sys
from typing import List, Optional, Tuple

from vmi import __version__
from vmi.config import PipelineConfig
from vmi.errors import PipelineError
from vmi.pipeline import load_image_to_device

logger = logging.getLogger(__name__)

SOURCES = ['ami', 'raw']
SINKS = ['device']


def configure_logging(verbose: int, log_file: Optional[str] = None) -> None:
    """
    Configure the root logger from the -v count.

    Args:
        verbose: 0 for warnings, 1 for info, 2 or more for debug
        log_file: Optional file to write the log to as well
    """
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )

    # Wire-level chatter only at -vvv
    if verbose < 3:
        for name in ('botocore', 'boto3', 'urllib3'):
            logging.getLogger(name).setLevel(logging.WARNING)


def parse_tag(value: str) -> Tuple[str, str]:
    key, sep, tag_value = value.partition('=')
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {value!r}")
    return key, tag_value


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog='vmi',
        description='Virtual machine images made simple!'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f"%(prog)s {__version__}"
    )

    parser.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Verbosity level (can be specified multiple times)'
    )

    parser.add_argument(
        '--log-file',
        type=str,
        default=None,
        help='Also write the log to this file'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    convert = subparsers.add_parser(
        'convert',
        help='Convert between virtual machine image formats'
    )
    convert.add_argument(
        'source',
        choices=SOURCES,
        help='Source of the virtual machine image (e.g. ami for an Amazon Machine Image)'
    )
    convert.add_argument(
        'source_id',
        help='Source ID (e.g. ami-1234 for an Amazon Machine Image)'
    )
    convert.add_argument(
        'sink',
        choices=SINKS,
        help='Destination of the converted virtual machine image data'
    )
    convert.add_argument(
        'sink_id',
        help='Sink ID (e.g. /dev/xvdg for a device)'
    )
    convert.add_argument(
        '--region',
        type=str,
        default=None,
        help='AWS region (default: derived from the host availability zone)'
    )
    convert.add_argument(
        '--max-wait',
        type=int,
        default=60,
        help='Seconds to wait for the new volume to become available (default: 60)'
    )
    convert.add_argument(
        '--device-timeout',
        type=float,
        default=120.0,
        help='Seconds to wait for the device to appear, 0 to wait forever (default: 120)'
    )
    convert.add_argument(
        '--tag',
        type=parse_tag,
        action='append',
        default=None,
        metavar='KEY=VALUE',
        help='Tag the new volume (can be specified multiple times; needs ec2:CreateTags)'
    )
    convert.add_argument(
        '--metadata-endpoint',
        type=str,
        default=PipelineConfig.metadata_endpoint,
        help=f"Instance metadata service endpoint (default: {PipelineConfig.metadata_endpoint})"
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> PipelineConfig:
    return PipelineConfig(
        metadata_endpoint=args.metadata_endpoint,
        max_wait=args.max_wait,
        device_timeout=args.device_timeout or None,
        region=args.region,
        volume_tags=dict(args.tag) if args.tag else None
    )


def convert(args: argparse.Namespace) -> int:
    if (args.source, args.sink) != ('ami', 'device'):
        logger.error(f"Unsupported conversion: {args.source} -> {args.sink}")
        return 2

    logger.info("=" * 80)
    logger.info("Loading AMI to Device")
    logger.info("=" * 80)
    logger.info(f"AMI ID: {args.source_id}")
    logger.info(f"Device: {args.sink_id}")

    try:
        result = load_image_to_device(args.source_id, args.sink_id, build_config(args))
    except PipelineError as e:
        logger.error("")
        logger.error("=" * 80)
        logger.error("LOAD AMI TO DEVICE FAILED")
        logger.error("=" * 80)
        logger.error(f"Error: {e}")
        if e.volume_id:
            logger.error(f"Volume {e.volume_id} may need manual cleanup")
        logger.error("=" * 80)
        return 1

    logger.info("=" * 80)
    logger.info("LOAD AMI TO DEVICE COMPLETED")
    logger.info("=" * 80)
    logger.info(f"Snapshot ID: {result.snapshot_id}")
    logger.info(f"Volume ID: {result.volume_id}")
    print(result.attached_device)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_arguments(argv)
    configure_logging(args.verbose, args.log_file)

    if args.command == 'convert':
        return convert(args)
    return 2


if __name__ == '__main__':
    sys.exit(main())

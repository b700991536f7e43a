"""
Pipeline configuration

Defaults match the reference provisioning policy. The CLI overrides them from
command-line arguments; AWS credentials and the default region come from the
standard boto3 chain.
"""

from dataclasses import dataclass
import re
from typing import Dict, Optional

IMDS_ENDPOINT = 'http://169.254.169.254'

# IMDSv2 session token lifetime in seconds
TOKEN_TTL_SECONDS = 21600

# udev directory holding the NVMe links named after the EBS volume id
BY_ID_DIR = '/dev/disk/by-id'

_REGION_PATTERN = re.compile(r'^([a-z]{2}(?:-gov|-iso[a-z]*)?-[a-z]+-\d+)')


@dataclass
class PipelineConfig:
    """Tunables for a single image-to-device run."""

    metadata_endpoint: str = IMDS_ENDPOINT
    metadata_timeout: float = 3.0
    token_ttl: int = TOKEN_TTL_SECONDS
    max_wait: int = 60
    volume_poll_delay: int = 5
    device_poll_interval: float = 0.5
    # None waits for the device forever
    device_timeout: Optional[float] = None
    region: Optional[str] = None
    by_id_dir: str = BY_ID_DIR
    # Tagging on create needs ec2:CreateTags as well as ec2:CreateVolume
    volume_tags: Optional[Dict[str, str]] = None


def region_from_zone(availability_zone: str) -> str:
    """
    Derive the region name from an availability zone name.

    Handles regular zones (us-east-1a) and local/wavelength zones
    (us-west-2-lax-1a).

    Args:
        availability_zone: Zone name as reported by instance metadata

    Returns:
        Region name

    Raises:
        ValueError: If the zone name does not look like an AWS zone
    """
    match = _REGION_PATTERN.match(availability_zone)
    if not match:
        raise ValueError(f"Cannot derive region from availability zone: {availability_zone!r}")
    return match.group(1)

"""
Load an Amazon Machine Image (AMI) to a device on the current EC2 host

Linear pipeline:

    Start -> IdentityResolved -> SnapshotResolved -> VolumeCreated
          -> VolumeAvailable -> Attached -> DeviceReady

Any failure ends the run in Failed. There is no retry and no resume; a
created volume is never deleted, its id is logged and carried on the error.
Concurrent runs against the same device path are not coordinated.
"""

from dataclasses import dataclass
from enum import Enum
import logging
import os
import threading
from typing import Any, Optional

import boto3

from vmi import devices, images, volumes
from vmi.config import PipelineConfig, region_from_zone
from vmi.errors import MetadataReadFailure, PipelineError, PreconditionViolation
from vmi.metadata import AVAILABILITY_ZONE_KEY, InstanceIdentity, InstanceMetadataClient

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    START = 'Start'
    IDENTITY_RESOLVED = 'IdentityResolved'
    SNAPSHOT_RESOLVED = 'SnapshotResolved'
    VOLUME_CREATED = 'VolumeCreated'
    VOLUME_AVAILABLE = 'VolumeAvailable'
    ATTACHED = 'Attached'
    DEVICE_READY = 'DeviceReady'
    FAILED = 'Failed'


@dataclass
class PipelineResult:
    """Identifiers produced by one run"""
    image_id: str
    device_path: str
    state: PipelineState = PipelineState.START
    identity: Optional[InstanceIdentity] = None
    snapshot_id: Optional[str] = None
    volume_id: Optional[str] = None
    attached_device: Optional[str] = None


def load_image_to_device(
    image_id: str,
    device_path: str,
    config: Optional[PipelineConfig] = None,
    ec2_client: Any = None,
    metadata_client: Optional[InstanceMetadataClient] = None,
    cancel_event: Optional[threading.Event] = None
) -> PipelineResult:
    """
    Materialize an AMI onto a local block device.

    Args:
        image_id: AMI ID
        device_path: Device path to attach the volume at; must not exist yet
        config: Pipeline tunables, defaults to ``PipelineConfig()``
        ec2_client: Boto3 EC2 client; built for the host's region if omitted
        metadata_client: Instance metadata client; built and closed here if omitted
        cancel_event: Set from another thread to abandon the device wait

    Returns:
        PipelineResult in the DeviceReady state

    Raises:
        PipelineError: Subclass naming the failed step, with ``state`` set to
            the last state reached
    """
    config = config or PipelineConfig()
    result = PipelineResult(image_id=image_id, device_path=device_path)

    # TODO: check that the host is an EC2 instance and that image_id is a valid AMI ID
    if os.path.exists(device_path):
        error = PreconditionViolation(f"Device path {device_path} already exists")
        error.state = PipelineState.START
        raise error

    preexisting = devices.existing_candidates(device_path, config.by_id_dir)

    owns_metadata_client = metadata_client is None
    if owns_metadata_client:
        metadata_client = InstanceMetadataClient(
            endpoint=config.metadata_endpoint,
            timeout=config.metadata_timeout,
            token_ttl=config.token_ttl
        )

    try:
        result.identity = metadata_client.resolve_identity()
        _advance(result, PipelineState.IDENTITY_RESOLVED)
        logger.info(f"EC2 host instance ID: {result.identity.instance_id}")
        logger.info(f"Availability zone: {result.identity.availability_zone}")

        if ec2_client is None:
            ec2_client = _ec2_client_for(config, result.identity)

        result.snapshot_id = images.resolve_snapshot(ec2_client, image_id)
        _advance(result, PipelineState.SNAPSHOT_RESOLVED)

        result.volume_id = volumes.create_volume(
            ec2_client,
            result.snapshot_id,
            result.identity.availability_zone,
            tags=config.volume_tags
        )
        _advance(result, PipelineState.VOLUME_CREATED)

        volumes.wait_until_available(
            ec2_client,
            result.volume_id,
            max_wait=config.max_wait,
            poll_delay=config.volume_poll_delay
        )
        _advance(result, PipelineState.VOLUME_AVAILABLE)

        volumes.attach(ec2_client, result.volume_id, result.identity.instance_id, device_path)
        _advance(result, PipelineState.ATTACHED)

        result.attached_device = devices.wait_for_device(
            device_path,
            volume_id=result.volume_id,
            timeout=config.device_timeout,
            interval=config.device_poll_interval,
            cancel_event=cancel_event,
            by_id_dir=config.by_id_dir,
            preexisting=preexisting
        )
        _advance(result, PipelineState.DEVICE_READY)

    except PipelineError as e:
        e.state = result.state
        if e.volume_id is None:
            e.volume_id = result.volume_id
        result.state = PipelineState.FAILED
        logger.error(f"Pipeline failed after {e.state.value}: {e}")
        if result.volume_id:
            logger.error(f"Volume {result.volume_id} was created and is NOT cleaned up automatically")
        raise

    finally:
        if owns_metadata_client:
            metadata_client.close()

    return result


def _ec2_client_for(config: PipelineConfig, identity: InstanceIdentity) -> Any:
    region = config.region
    if not region:
        try:
            region = region_from_zone(identity.availability_zone)
        except ValueError as e:
            raise MetadataReadFailure(str(e), key_path=AVAILABILITY_ZONE_KEY) from e
    logger.debug(f"Creating EC2 client for region {region}")
    return boto3.client('ec2', region_name=region)


def _advance(result: PipelineResult, state: PipelineState) -> None:
    logger.debug(f"State: {result.state.value} -> {state.value}")
    result.state = state

"""
EBS volume lifecycle

Create a volume from a snapshot, wait for it to become available, and attach
it to an instance. Nothing here deletes a volume: a volume left behind by a
failed run is reported through the raised error's ``volume_id``.
"""

import logging
import math
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from vmi.errors import AttachFailure, ProvisioningFailure

logger = logging.getLogger(__name__)


def create_and_wait(
    ec2_client: Any,
    snapshot_id: str,
    availability_zone: str,
    max_wait: int = 60,
    poll_delay: int = 5,
    tags: Optional[Dict[str, str]] = None
) -> str:
    """
    Create an EBS volume from a snapshot and wait until it is available.

    Args:
        ec2_client: Boto3 EC2 client
        snapshot_id: Source snapshot ID
        availability_zone: Zone to create the volume in
        max_wait: Maximum time to wait for the volume, in seconds
        poll_delay: Delay between availability checks, in seconds
        tags: Optional tags to put on the new volume

    Returns:
        Volume ID string

    Raises:
        ProvisioningFailure: If no volume ID is returned or the volume is not available in time
    """
    volume_id = create_volume(ec2_client, snapshot_id, availability_zone, tags)
    wait_until_available(ec2_client, volume_id, max_wait, poll_delay)
    return volume_id


def create_volume(
    ec2_client: Any,
    snapshot_id: str,
    availability_zone: str,
    tags: Optional[Dict[str, str]] = None
) -> str:
    logger.info(f"Creating volume from snapshot {snapshot_id} in {availability_zone}")

    params: Dict[str, Any] = {
        'SnapshotId': snapshot_id,
        'AvailabilityZone': availability_zone,
    }
    if tags:
        params['TagSpecifications'] = [
            {
                'ResourceType': 'volume',
                'Tags': [{'Key': key, 'Value': value} for key, value in tags.items()]
            }
        ]

    try:
        response = ec2_client.create_volume(**params)
    except (ClientError, BotoCoreError) as e:
        raise ProvisioningFailure(f"Failed to create volume from {snapshot_id}: {e}") from e

    volume_id = response.get('VolumeId')
    if not volume_id:
        raise ProvisioningFailure(f"Create volume from {snapshot_id} returned no volume ID")

    logger.info(f"Volume created: {volume_id}")
    return volume_id


def wait_until_available(
    ec2_client: Any,
    volume_id: str,
    max_wait: int = 60,
    poll_delay: int = 5
) -> None:
    """
    Block until the volume reaches the ``available`` state.

    Raises:
        ProvisioningFailure: ``timed_out`` is set when ``max_wait`` elapsed,
            unset when the volume reached a terminal failure state
    """
    max_attempts = max(1, math.ceil(max_wait / poll_delay))
    logger.info(f"Waiting up to {max_wait} seconds for volume {volume_id} to be available")

    try:
        waiter = ec2_client.get_waiter('volume_available')
        waiter.wait(
            VolumeIds=[volume_id],
            WaiterConfig={'Delay': poll_delay, 'MaxAttempts': max_attempts}
        )
    except WaiterError as e:
        reason = str(e.kwargs.get('reason', ''))
        timed_out = reason.startswith('Max attempts exceeded')
        if timed_out:
            message = f"Volume {volume_id} was not available after {max_wait} seconds"
        else:
            message = f"Volume {volume_id} failed to become available: {e}"
        raise ProvisioningFailure(message, volume_id=volume_id, timed_out=timed_out) from e
    except (ClientError, BotoCoreError) as e:
        raise ProvisioningFailure(
            f"Failed to check availability of volume {volume_id}: {e}",
            volume_id=volume_id
        ) from e

    logger.info(f"Volume {volume_id} is available")


def attach(ec2_client: Any, volume_id: str, instance_id: str, device_path: str) -> None:
    """
    Ask EC2 to attach a volume to an instance at the given device name.

    Success only means the control plane accepted the request; the device
    may not be visible to the OS yet, or may appear under another name.

    Raises:
        AttachFailure: If the provider rejects the request
    """
    logger.info(f"Attaching volume {volume_id} to instance {instance_id} at {device_path}")

    try:
        response = ec2_client.attach_volume(
            Device=device_path,
            VolumeId=volume_id,
            InstanceId=instance_id
        )
    except (ClientError, BotoCoreError) as e:
        error_code = e.response.get('Error', {}).get('Code') if isinstance(e, ClientError) else type(e).__name__
        raise AttachFailure(
            f"Failed to attach volume {volume_id} to {instance_id} at {device_path}: {e}",
            volume_id=volume_id,
            error_code=error_code
        ) from e

    logger.info(f"Attach request accepted (state: {response.get('State', 'unknown')})")

"""
Image resolver

Maps an AMI to the EBS snapshot backing it.

Selection policy: the FIRST image returned and, within it, the FIRST block
device mapping. Images with several mappings are not disambiguated; the
choice is logged so it is visible to the operator.
"""

import logging
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from vmi.errors import CatalogResolutionFailure

logger = logging.getLogger(__name__)


def resolve_snapshot(ec2_client: Any, image_id: str) -> str:
    """
    Resolve an AMI to the snapshot id of its first block device mapping.

    Args:
        ec2_client: Boto3 EC2 client
        image_id: AMI ID

    Returns:
        Snapshot ID string

    Raises:
        CatalogResolutionFailure: If the image, its mappings or the snapshot cannot be found
    """
    logger.info(f"Resolving snapshot for image {image_id}")

    try:
        response = ec2_client.describe_images(ImageIds=[image_id])
    except (ClientError, BotoCoreError) as e:
        raise CatalogResolutionFailure(
            f"Failed to describe image {image_id}: {e}",
            image_id=image_id
        ) from e

    images = response.get('Images') or []
    if not images:
        raise CatalogResolutionFailure(f"No image found for {image_id}", image_id=image_id)

    mappings = images[0].get('BlockDeviceMappings') or []
    if not mappings:
        raise CatalogResolutionFailure(
            f"Image {image_id} has no block device mappings",
            image_id=image_id
        )

    if len(mappings) > 1:
        logger.warning(
            f"Image {image_id} has {len(mappings)} block device mappings; "
            f"using the first ({mappings[0].get('DeviceName', 'unnamed')})"
        )

    snapshot_id = mappings[0].get('Ebs', {}).get('SnapshotId')
    if not snapshot_id:
        raise CatalogResolutionFailure(
            f"First block device mapping of image {image_id} has no snapshot",
            image_id=image_id
        )

    logger.info(f"Snapshot ID: {snapshot_id}")
    return snapshot_id

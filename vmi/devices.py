"""
Device materialization waiter

After EC2 accepts an attach request the block device still has to show up in
the OS, and it does not always show up under the requested name:

- Xen instances may expose a requested ``/dev/sdX`` as ``/dev/xvdX`` (and
  the other way round).
- Nitro instances expose every EBS volume as ``/dev/nvmeNn1`` regardless of
  the requested name. udev links
  ``/dev/disk/by-id/nvme-Amazon_Elastic_Block_Store_vol<hex>`` to it, where
  the suffix is the volume id without its dash.

Each poll checks those candidates in that order. The first one present that
was not already there before the attach wins.
"""

import logging
import os
import threading
import time
from typing import Collection, List, Optional, Set

from vmi.config import BY_ID_DIR
from vmi.errors import DeviceWaitFailure

logger = logging.getLogger(__name__)

NVME_EBS_LINK_PREFIX = 'nvme-Amazon_Elastic_Block_Store_'


def alias_device(device_path: str) -> Optional[str]:
    """Map /dev/sdX to /dev/xvdX and /dev/xvdX to /dev/sdX."""
    directory, name = os.path.split(device_path)
    if name.startswith('xvd'):
        return os.path.join(directory, 'sd' + name[len('xvd'):])
    if name.startswith('sd'):
        return os.path.join(directory, 'xvd' + name[len('sd'):])
    return None


def nvme_link(volume_id: str, by_id_dir: str = BY_ID_DIR) -> str:
    return os.path.join(by_id_dir, NVME_EBS_LINK_PREFIX + volume_id.replace('-', ''))


def candidate_paths(
    device_path: str,
    volume_id: Optional[str] = None,
    by_id_dir: str = BY_ID_DIR
) -> List[str]:
    candidates = [device_path]
    alias = alias_device(device_path)
    if alias:
        candidates.append(alias)
    if volume_id:
        candidates.append(nvme_link(volume_id, by_id_dir))
    return candidates


def existing_candidates(device_path: str, by_id_dir: str = BY_ID_DIR) -> Set[str]:
    """Candidate paths already present before the attach, which must not be mistaken for ours."""
    return {path for path in candidate_paths(device_path, None, by_id_dir) if os.path.exists(path)}


def find_device(
    device_path: str,
    volume_id: Optional[str] = None,
    by_id_dir: str = BY_ID_DIR,
    preexisting: Collection[str] = ()
) -> Optional[str]:
    """
    Return the device node the volume materialized at, or None.

    Symlinks (the NVMe by-id link) are resolved to the real device node.
    """
    for candidate in candidate_paths(device_path, volume_id, by_id_dir):
        if candidate in preexisting:
            continue
        if os.path.exists(candidate):
            return os.path.realpath(candidate) if os.path.islink(candidate) else candidate
    return None


def wait_for_device(
    device_path: str,
    volume_id: Optional[str] = None,
    timeout: Optional[float] = None,
    interval: float = 0.5,
    cancel_event: Optional[threading.Event] = None,
    by_id_dir: str = BY_ID_DIR,
    preexisting: Collection[str] = ()
) -> str:
    """
    Poll until the attached volume is visible as a device node.

    Args:
        device_path: Device path requested in the attach call
        volume_id: Attached volume ID, enables the NVMe by-id lookup
        timeout: Maximum time to wait in seconds, None to wait forever
        interval: Delay between checks in seconds
        cancel_event: Set from another thread to abandon the wait
        by_id_dir: Directory holding the udev by-id links
        preexisting: Paths present before the attach, never taken as the new device

    Returns:
        Path of the device node that appeared

    Raises:
        DeviceWaitFailure: If the deadline passes or the wait is cancelled
    """
    if cancel_event is None:
        cancel_event = threading.Event()
    deadline = None if timeout is None else time.monotonic() + timeout

    if timeout is None:
        logger.info(f"Waiting for device {device_path} (no deadline)")
    else:
        logger.info(f"Waiting up to {timeout} seconds for device {device_path}")

    while True:
        found = find_device(device_path, volume_id, by_id_dir, preexisting)
        if found:
            if found != device_path:
                logger.warning(f"Volume appeared at {found} instead of requested {device_path}")
            logger.info(f"Device ready: {found}")
            return found

        if deadline is not None and time.monotonic() >= deadline:
            raise DeviceWaitFailure(
                f"Device {device_path} did not appear within {timeout} seconds "
                f"(checked: {', '.join(candidate_paths(device_path, volume_id, by_id_dir))})",
                timed_out=True
            )

        logger.debug(f"Still waiting for device to be attached at {device_path}")

        if cancel_event.wait(interval):
            raise DeviceWaitFailure(f"Wait for device {device_path} was cancelled", cancelled=True)

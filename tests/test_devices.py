import os
import threading

import pytest

from vmi import devices
from vmi.errors import DeviceWaitFailure


@pytest.mark.parametrize('requested, alias', [
    ('/dev/sdf', '/dev/xvdf'),
    ('/dev/xvdg', '/dev/sdg'),
    ('/dev/nvme1n1', None),
])
def test_alias_device(requested, alias):
    assert devices.alias_device(requested) == alias


def test_nvme_link_drops_dash():
    link = devices.nvme_link('vol-0abc123', '/dev/disk/by-id')
    assert link == '/dev/disk/by-id/nvme-Amazon_Elastic_Block_Store_vol0abc123'


def test_find_device_exact_path(tmp_path):
    device = tmp_path / 'xvdg'
    device.touch()

    assert devices.find_device(str(device)) == str(device)


def test_find_device_alias(tmp_path):
    (tmp_path / 'xvdf').touch()

    assert devices.find_device(str(tmp_path / 'sdf')) == str(tmp_path / 'xvdf')


def test_find_device_nvme_link_resolves(tmp_path):
    by_id = tmp_path / 'by-id'
    by_id.mkdir()
    node = tmp_path / 'nvme1n1'
    node.touch()
    (by_id / 'nvme-Amazon_Elastic_Block_Store_vol1234').symlink_to(node)

    found = devices.find_device(str(tmp_path / 'xvdg'), 'vol-1234', str(by_id))

    assert found == os.path.realpath(str(node))


def test_find_device_skips_preexisting(tmp_path):
    other_disk = tmp_path / 'sdg'
    other_disk.touch()
    requested = str(tmp_path / 'xvdg')

    preexisting = devices.existing_candidates(requested, str(tmp_path / 'by-id'))

    assert preexisting == {str(other_disk)}
    assert devices.find_device(requested, preexisting=preexisting) is None


def test_wait_returns_after_device_appears(monkeypatch):
    results = iter([None, None, '/dev/xvdg'])
    calls = []

    def fake_find(*args):
        calls.append(args)
        return next(results)

    monkeypatch.setattr(devices, 'find_device', fake_find)

    assert devices.wait_for_device('/dev/xvdg', interval=0.01) == '/dev/xvdg'
    assert len(calls) == 3


def test_wait_reports_renamed_device(monkeypatch, caplog):
    monkeypatch.setattr(devices, 'find_device', lambda *args: '/dev/nvme2n1')

    assert devices.wait_for_device('/dev/xvdg', volume_id='vol-1', interval=0.01) == '/dev/nvme2n1'
    assert 'instead of requested /dev/xvdg' in caplog.text


def test_wait_deadline(tmp_path):
    with pytest.raises(DeviceWaitFailure) as excinfo:
        devices.wait_for_device(str(tmp_path / 'xvdg'), timeout=0.05, interval=0.01)

    assert excinfo.value.timed_out
    assert not excinfo.value.cancelled


def test_wait_cancelled(tmp_path):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(DeviceWaitFailure) as excinfo:
        devices.wait_for_device(str(tmp_path / 'xvdg'), interval=10, cancel_event=cancel)

    assert excinfo.value.cancelled
    assert not excinfo.value.timed_out


def test_wait_cancelled_from_another_thread(tmp_path):
    cancel = threading.Event()
    timer = threading.Timer(0.05, cancel.set)
    timer.start()

    try:
        with pytest.raises(DeviceWaitFailure):
            devices.wait_for_device(str(tmp_path / 'xvdg'), interval=0.01, cancel_event=cancel)
    finally:
        timer.cancel()

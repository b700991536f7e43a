import boto3
from botocore.stub import Stubber
import pytest

from vmi.metadata import InstanceMetadataClient

IMDS = 'http://169.254.169.254'


class FakeResponse:
    def __init__(self, status_code=200, content=b'', chunks=None):
        self.status_code = status_code
        self.chunks = list(chunks) if chunks is not None else [content]
        self.closed = False

    def iter_content(self, chunk_size=1):
        for chunk in self.chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk

    def close(self):
        self.closed = True


class FakeSession:
    """
    Stands in for requests.Session.

    ``routes`` maps (method, url) to a FakeResponse or an exception instance
    to raise. Every call is recorded in ``calls``.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self.closed = False

    def request(self, method, url, headers=None, timeout=None, stream=False):
        self.calls.append({'method': method, 'url': url, 'headers': headers, 'timeout': timeout, 'stream': stream})
        outcome = self.routes.get((method, url))
        if outcome is None:
            return FakeResponse(404, b'Not Found')
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self):
        self.closed = True


def imds_routes(instance_id='i-1', zone='us-east-1a', token='token-123'):
    return {
        ('PUT', f'{IMDS}/latest/api/token'): FakeResponse(200, token.encode()),
        ('GET', f'{IMDS}/latest/meta-data/instance-id'): FakeResponse(200, instance_id.encode()),
        ('GET', f'{IMDS}/latest/meta-data/placement/availability-zone'): FakeResponse(200, zone.encode()),
    }


@pytest.fixture
def fake_session():
    return FakeSession(imds_routes())


@pytest.fixture
def metadata_client(fake_session):
    return InstanceMetadataClient(session=fake_session)


@pytest.fixture
def ec2_client():
    return boto3.client(
        'ec2',
        region_name='us-east-1',
        aws_access_key_id='testing',
        aws_secret_access_key='testing'
    )


@pytest.fixture
def ec2_stub(ec2_client):
    with Stubber(ec2_client) as stubber:
        yield stubber


def image_response(image_id='ami-1', snapshot_id='snap-1'):
    return {
        'Images': [
            {
                'ImageId': image_id,
                'BlockDeviceMappings': [
                    {'DeviceName': '/dev/xvda', 'Ebs': {'SnapshotId': snapshot_id}}
                ]
            }
        ]
    }


def volume_state_response(volume_id='vol-1', state='available'):
    return {'Volumes': [{'VolumeId': volume_id, 'State': state}]}


class FailingEc2Client:
    """EC2 client whose every call, waiter included, raises ``error``."""

    def __init__(self, error):
        self.error = error
        self.calls = []

    def get_waiter(self, name):
        return self

    def __getattr__(self, name):
        def call(**kwargs):
            self.calls.append(name)
            raise self.error
        return call

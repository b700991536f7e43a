"""
Instance metadata client

Reads the calling host's identity from the EC2 instance metadata service
using the IMDSv2 token handshake.
"""

from dataclasses import dataclass
import logging
import time
from typing import Optional

import requests

from vmi.config import IMDS_ENDPOINT, TOKEN_TTL_SECONDS
from vmi.errors import AuthFailure, MetadataReadFailure

logger = logging.getLogger(__name__)

TOKEN_PATH = 'latest/api/token'
META_DATA_PATH = 'latest/meta-data'

TOKEN_TTL_HEADER = 'X-aws-ec2-metadata-token-ttl-seconds'
TOKEN_HEADER = 'X-aws-ec2-metadata-token'

INSTANCE_ID_KEY = 'instance-id'
AVAILABILITY_ZONE_KEY = 'placement/availability-zone'


@dataclass(frozen=True)
class InstanceIdentity:
    """Who and where the calling host is."""
    instance_id: str
    availability_zone: str


class _RequestFailed(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, timed_out: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.timed_out = timed_out


class InstanceMetadataClient:
    """
    Client for the local instance metadata service.

    The HTTP session is either injected or owned by the client. A session the
    client created itself is closed by ``close()`` or on leaving a ``with``
    block; an injected session is left to its owner.

    Each call, body included, is bounded by ``timeout`` seconds. A timeout is
    a failure, never a retry.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        endpoint: str = IMDS_ENDPOINT,
        timeout: float = 3.0,
        token_ttl: int = TOKEN_TTL_SECONDS
    ) -> None:
        self._owns_session = session is None
        self.session = session if session is not None else requests.Session()
        self.endpoint = endpoint.rstrip('/')
        self.timeout = timeout
        self.token_ttl = token_ttl

    def __enter__(self) -> 'InstanceMetadataClient':
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_session:
            self.session.close()

    def acquire_token(self) -> str:
        """
        Obtain a session token from the metadata service.

        Returns:
            Token string from the response body

        Raises:
            AuthFailure: If the request is rejected, times out or the body is not valid UTF-8
        """
        url = f"{self.endpoint}/{TOKEN_PATH}"
        logger.debug(f"Requesting metadata token (TTL {self.token_ttl}s)")
        try:
            return self._send('PUT', url, {TOKEN_TTL_HEADER: str(self.token_ttl)})
        except _RequestFailed as e:
            raise AuthFailure(
                f"Failed to get metadata token: {e}",
                status_code=e.status_code,
                timed_out=e.timed_out
            ) from e

    def read_value(self, token: str, key_path: str) -> str:
        """
        Read a metadata value.

        Args:
            token: Session token from ``acquire_token``
            key_path: Path below ``latest/meta-data``, e.g. ``instance-id``

        Returns:
            Raw response body as text

        Raises:
            MetadataReadFailure: If the request is rejected, times out or the body is not valid UTF-8
        """
        url = f"{self.endpoint}/{META_DATA_PATH}/{key_path.lstrip('/')}"
        logger.debug(f"Reading metadata value: {key_path}")
        try:
            return self._send('GET', url, {TOKEN_HEADER: token})
        except _RequestFailed as e:
            raise MetadataReadFailure(
                f"Failed to read metadata value {key_path}: {e}",
                key_path=key_path,
                status_code=e.status_code,
                timed_out=e.timed_out
            ) from e

    def resolve_identity(self) -> InstanceIdentity:
        """Fetch the instance id and availability zone with a single token."""
        token = self.acquire_token()
        instance_id = self.read_value(token, INSTANCE_ID_KEY)
        availability_zone = self.read_value(token, AVAILABILITY_ZONE_KEY)
        return InstanceIdentity(instance_id=instance_id, availability_zone=availability_zone)

    def _send(self, method: str, url: str, headers: dict) -> str:
        # requests applies ``timeout`` per socket operation, so the body is
        # streamed and the whole call is held to one deadline
        deadline = time.monotonic() + self.timeout
        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, stream=True)
        except requests.exceptions.Timeout as e:
            raise _RequestFailed(f"request timed out after {self.timeout}s", timed_out=True) from e
        except requests.exceptions.RequestException as e:
            raise _RequestFailed(f"HTTP request failed: {e}") from e

        try:
            if not 200 <= response.status_code < 300:
                raise _RequestFailed(f"HTTP {response.status_code}", status_code=response.status_code)

            body = b''
            try:
                for chunk in response.iter_content(chunk_size=1024):
                    body += chunk
                    if time.monotonic() > deadline:
                        raise _RequestFailed(f"request timed out after {self.timeout}s", timed_out=True)
            except requests.exceptions.RequestException as e:
                raise _RequestFailed(f"failed reading response body: {e}") from e
        finally:
            response.close()

        try:
            return body.decode('utf-8')
        except UnicodeDecodeError as e:
            raise _RequestFailed(f"response body is not valid UTF-8: {e}") from e

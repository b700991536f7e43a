"""
Pipeline failure types

Every failure is terminal: the run unwinds immediately and must be re-issued
from the start. Each exception names the step that failed so the caller can
diagnose without re-running at a higher verbosity.
"""

from typing import Optional


class PipelineError(RuntimeError):
    """Base class for all failures raised while loading an image to a device."""

    step = 'pipeline'

    def __init__(self, message: str) -> None:
        super().__init__(message)
        # Last state reached before the failure, filled in by the orchestrator
        self.state = None
        # Volume created by the run, if any; it is left behind for manual cleanup
        self.volume_id = None

    def __str__(self) -> str:
        return f"[{self.step}] {super().__str__()}"


class PreconditionViolation(PipelineError):
    """The target device path already exists."""

    step = 'precondition'


class AuthFailure(PipelineError):
    """The metadata token request was rejected, timed out or undecodable."""

    step = 'metadata-token'

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        timed_out: bool = False
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.timed_out = timed_out


class MetadataReadFailure(PipelineError):
    """A metadata value read was rejected, timed out or undecodable."""

    step = 'metadata-read'

    def __init__(
        self,
        message: str,
        key_path: Optional[str] = None,
        status_code: Optional[int] = None,
        timed_out: bool = False
    ) -> None:
        super().__init__(message)
        self.key_path = key_path
        self.status_code = status_code
        self.timed_out = timed_out


class CatalogResolutionFailure(PipelineError):
    """No image, no block device mapping or no snapshot was found."""

    step = 'resolve-snapshot'

    def __init__(self, message: str, image_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.image_id = image_id


class ProvisioningFailure(PipelineError):
    """
    Volume creation produced no volume id, or the volume never became available.

    ``volume_id`` is set when the volume was created remotely and may now be
    orphaned.
    """

    step = 'create-volume'

    def __init__(
        self,
        message: str,
        volume_id: Optional[str] = None,
        timed_out: bool = False
    ) -> None:
        super().__init__(message)
        self.volume_id = volume_id
        self.timed_out = timed_out


class AttachFailure(PipelineError):
    """The provider rejected the attach request."""

    step = 'attach-volume'

    def __init__(
        self,
        message: str,
        volume_id: Optional[str] = None,
        error_code: Optional[str] = None
    ) -> None:
        super().__init__(message)
        self.volume_id = volume_id
        self.error_code = error_code


class DeviceWaitFailure(PipelineError):
    """The device never materialized before the deadline, or the wait was cancelled."""

    step = 'wait-for-device'

    def __init__(
        self,
        message: str,
        timed_out: bool = False,
        cancelled: bool = False
    ) -> None:
        super().__init__(message)
        self.timed_out = timed_out
        self.cancelled = cancelled

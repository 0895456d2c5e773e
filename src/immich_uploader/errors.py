"""Error taxonomy for the uploader.

ConfigError and EncodingError are raised before any network traffic.
TransportError is raised by the HTTP layer and folded into a failed
UploadOutcome before it reaches a driver. LimitExceeded is the host's
backpressure signal and is not treated as a failure by the lifecycle
controller.
"""


class UploaderError(Exception):
    """Base class for all uploader errors."""


class ConfigError(UploaderError):
    """Server URL or API key is missing or malformed."""


class TransportError(UploaderError):
    """Network failure, timeout or unexpected HTTP status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EncodingError(UploaderError):
    """A required multipart field is missing or out of order."""


class LimitExceeded(UploaderError):
    """The job host refused a new job because its in-flight ceiling is reached."""


class JobHostError(UploaderError):
    """The job host rejected an operation on an individual job."""


class AssetUnavailableError(UploaderError):
    """The asset payload could not be read from the library."""

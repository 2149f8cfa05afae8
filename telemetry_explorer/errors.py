"""Error taxonomy for telemetry store access.

Only the store client raises these. Tree building and aggregation are pure
and do not fail for well-formed input.
"""

from typing import Optional


class TelemetryError(Exception):
    """Base class for every failure surfaced by the explorer.

    Attributes
    ----------
    message : str
        Human-readable message, shown to the user verbatim.
    retryable : bool
        Whether repeating the same request may succeed.
    """

    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidArgument(TelemetryError):
    """Rejected before any network call (empty trace id, bad filter value)."""


class NetworkError(TelemetryError):
    """Transport failure or timeout."""

    retryable = True

    def __init__(self, message: str, timeout: bool = False):
        super().__init__(message)
        self.timeout = timeout


class NotFound(TelemetryError):
    """The requested trace does not exist."""

    def __init__(self, message: str, resource_id: Optional[str] = None):
        super().__init__(message)
        self.resource_id = resource_id


class UpstreamError(TelemetryError):
    """Non-2xx response (or failed envelope) carrying a backend message."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
        # 5xx responses may be transient; 4xx will not change on repeat.
        self.retryable = status_code is not None and status_code >= 500

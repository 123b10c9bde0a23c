"""Monitor dispatch exceptions.

Every failure of a single dispatch surfaces as a ``MonitorError`` subclass.
The scheduler contains these per monitor and keeps the tick going; anything
else escaping a dispatch is a bug and is not contained.
"""


class MonitorError(Exception):
    """Base exception for a failed monitor dispatch."""

    reason = "error"

    def __init__(self, message: str, monitor: str | None = None):
        """Initialize monitor error.

        Args:
            message: Human-readable error message
            monitor: Description of the monitor that failed
        """
        super().__init__(message)
        self.monitor = monitor


class RemoteCallError(MonitorError):
    """The GitHub API call failed or returned an unusable response."""

    reason = "remote"


class CredentialError(MonitorError):
    """An alternate credential could not be resolved or was rejected."""

    reason = "credential"


class UnsupportedMonitorError(MonitorError):
    """The configured monitor kind is recognised but not implemented."""

    reason = "unsupported"

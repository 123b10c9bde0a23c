"""Monitor dispatch: GitHub state to metric updates."""

from .dispatcher import MonitorDispatcher
from .exceptions import (
    CredentialError,
    MonitorError,
    RemoteCallError,
    UnsupportedMonitorError,
)

__all__ = [
    "CredentialError",
    "MonitorDispatcher",
    "MonitorError",
    "RemoteCallError",
    "UnsupportedMonitorError",
]

"""Data models shared across Phasing components."""

from phasing.models.enums import LogLevel, SessionState
from phasing.models.session import Endpoint, ServiceRedirectionState, SessionConfig

__all__ = [
    "Endpoint",
    "LogLevel",
    "ServiceRedirectionState",
    "SessionConfig",
    "SessionState",
]

"""
Enumeration types for Phasing.

This module defines the enumeration types used for session lifecycle
tracking and configuration options.
"""

from enum import Enum


# =============================================================================
# Session-Related Enums
# =============================================================================


class SessionState(str, Enum):
    """
    Lifecycle state of a redirection session.

    State transitions:
        IDLE -> BOOTSTRAPPING -> REDIRECTING -> TUNNELING -> RESTORING -> TERMINATED
        BOOTSTRAPPING -> TERMINATED (control channel never came up)
        REDIRECTING -> TERMINATED (hijack failed, nothing to restore)
    """

    IDLE = "idle"  # Nothing started yet
    BOOTSTRAPPING = "bootstrapping"  # Waiting for the kubectl port-forward
    REDIRECTING = "redirecting"  # Patching the Service selector
    TUNNELING = "tunneling"  # Reverse tunnel active, relaying connections
    RESTORING = "restoring"  # Putting the original selector back
    TERMINATED = "terminated"  # Done


# =============================================================================
# Configuration Enums
# =============================================================================


class LogLevel(str, Enum):
    """
    Logging verbosity levels.

    Levels (from most to least verbose):
        - FULL: Complete trace with detailed stack information
        - DEBUG: Debug messages and above
        - INFO: Informational messages and above
        - WARNING: Only warnings and errors
    """

    FULL = "full"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"

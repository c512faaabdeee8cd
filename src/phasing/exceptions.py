"""Phasing exception classes."""


class PhasingError(Exception):
    """Base exception for Phasing operations."""

    pass


# =============================================================================
# Cluster API
# =============================================================================


class ClusterAPIError(PhasingError):
    """Cluster unreachable, authentication refused, or object missing."""

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


class ConflictExhausted(PhasingError):
    """Selector update kept losing optimistic-concurrency races."""

    def __init__(self, key: str, attempts: int):
        self.key = key
        self.attempts = attempts
        super().__init__(
            f"Service {key} was modified concurrently; "
            f"gave up after {attempts} attempts"
        )


# =============================================================================
# Control Channel
# =============================================================================


class BootstrapTimeout(PhasingError):
    """No forwarded port was reported within the startup window."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"kubectl port-forward did not report a port within {timeout}s")


class AgentUnreachable(PhasingError):
    """The agent could not be reached (port-forward exited or SSH dial failed)."""

    pass


class ControlChannelLost(PhasingError):
    """The control channel died while the session was running."""

    pass


# =============================================================================
# Tunnel
# =============================================================================


class ListenSetupFailed(PhasingError):
    """The agent refused to open the reverse listener."""

    def __init__(self, port: int, reason: str):
        self.port = port
        super().__init__(f"Cannot listen on agent port {port}: {reason}")


class AcceptError(PhasingError):
    """Handling one inbound tunnel connection failed."""

    pass


class LocalDialFailed(PhasingError):
    """The local endpoint refused or timed out for one tunnel connection."""

    def __init__(self, endpoint: str, reason: str):
        self.endpoint = endpoint
        super().__init__(f"Cannot connect to local endpoint {endpoint}: {reason}")


class SSHKeyError(PhasingError):
    """Private key missing or unreadable."""

    pass

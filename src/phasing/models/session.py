"""
Session data model.

Endpoint and SessionConfig are immutable snapshots; ServiceRedirectionState
is the single piece of mutable state shared between the main flow and
cleanup paths, so capture of the original selector is lock-guarded.
"""

import threading
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Endpoint:
    """A host:port pair."""

    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class SessionConfig:
    """
    Resolved settings for one redirection session.

    Fields discovered at runtime (agent_port, remote_port, service_name when
    picked interactively) are filled in with dataclasses.replace, producing
    a new snapshot.
    """

    service_name: str
    namespace: str
    local_port: int
    kubeconfig_path: str | None = None
    ssh_key_path: str | None = None
    agent_port: int = 0
    remote_port: int = 0
    local_host: str = "127.0.0.1"

    @property
    def local_endpoint(self) -> Endpoint:
        return Endpoint(self.local_host, self.local_port)

    @property
    def agent_endpoint(self) -> Endpoint:
        return Endpoint("127.0.0.1", self.agent_port)

    @property
    def remote_endpoint(self) -> Endpoint:
        return Endpoint(f"{self.service_name}.{self.namespace}", self.remote_port)


@dataclass
class ServiceRedirectionState:
    """
    What is needed to undo a selector hijack.

    original_selector is written at most once; `captured` tells "never read"
    apart from a Service that genuinely had no selector (None).
    """

    namespace: str
    service_name: str
    redirect_selector: dict[str, str] = field(
        default_factory=lambda: {"app": "phasing"}
    )
    original_selector: dict[str, str] | None = None
    captured: bool = False
    port: int = 0
    target_port: int | None = None
    restored: bool = False
    lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.service_name}"

    def capture(
        self,
        selector: dict[str, str] | None,
        port: int,
        target_port: int | None = None,
    ) -> bool:
        """
        Record the original selector and port unless already recorded.

        Returns:
            True if this call performed the capture.
        """
        with self.lock:
            if self.captured:
                return False
            self.original_selector = dict(selector) if selector is not None else None
            self.port = port
            self.target_port = target_port
            self.captured = True
            return True

"""
Phasing configuration.

A global Config instance that can be modified at runtime.
"""

import os
from dataclasses import dataclass, field

from phasing.models.enums import LogLevel


@dataclass
class PhasingConfig:
    """Client-side configuration."""

    # Agent Configuration
    AGENT_POD_NAME: str = "phasing"
    AGENT_SSH_PORT: int = 22
    AGENT_USER: str = "root"
    AGENT_IMAGE: str = "alpine:3.20"
    AGENT_SECRET_NAME: str = "phasing-authorized-keys"
    REDIRECT_SELECTOR: dict[str, str] = field(
        default_factory=lambda: {"app": "phasing"}
    )

    # Local Configuration
    DEFAULT_LOCAL_PORT: int = 7777
    LOCAL_HOST: str = "127.0.0.1"
    SSH_KEY_PATH: str = "~/.ssh/phasing_key"
    KUBECTL_PATH: str = "kubectl"

    # Timing Configuration
    BOOTSTRAP_TIMEOUT_SECONDS: float = 30.0
    SSH_CONNECT_TIMEOUT_SECONDS: float = 15.0
    LOCAL_DIAL_TIMEOUT_SECONDS: float = 5.0

    # Conflict Retry
    CONFLICT_RETRY_STEPS: int = 5
    CONFLICT_RETRY_DELAY_SECONDS: float = 0.01

    # Tunnel Configuration
    MAX_TUNNEL_CONNECTIONS: int = 0  # 0 = unbounded

    # Logging Configuration
    LOG_LEVEL: LogLevel = LogLevel.INFO
    LOG_FILE: str = ""

    def get_ssh_key_path(self) -> str:
        """Get the expanded private key path."""
        return os.path.expanduser(self.SSH_KEY_PATH)

    def get_default_kubeconfig(self) -> str:
        """Get the kubeconfig path from $KUBECONFIG or the usual location."""
        env_path = os.environ.get("KUBECONFIG")
        if env_path:
            # kubectl accepts a path list; the Python client wants one file
            return env_path.split(os.pathsep)[0]
        return os.path.expanduser(os.path.join("~", ".kube", "config"))


# Global config instance
config = PhasingConfig()

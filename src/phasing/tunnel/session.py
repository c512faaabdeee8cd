"""
Reverse SSH tunnel to the in-cluster agent.

The session dials the agent's sshd through the control channel and asks it
to listen on the Service's port. Every connection the agent accepts there
arrives as an SSH channel; it is paired with a fresh connection to the
local endpoint and relayed until either side closes.
"""

import asyncio
import functools

import asyncssh

from phasing.exceptions import (
    AcceptError,
    AgentUnreachable,
    ListenSetupFailed,
    LocalDialFailed,
)
from phasing.models.session import Endpoint
from phasing.tunnel.bind_connection import bind_connection
from phasing.utils.logger import format_traceback, get_logger

logger = get_logger(__name__)


class TunnelSession:
    """One SSH connection to the agent plus its reverse listeners."""

    def __init__(
        self,
        agent: Endpoint,
        local: Endpoint,
        remote_ports: list[int],
        client_keys: list | None = None,
        user: str = "root",
        connect_timeout: float = 15.0,
        dial_timeout: float = 5.0,
        max_connections: int = 0,
    ):
        """
        Initialize the tunnel session.

        Args:
            agent: Local end of the control channel (agent sshd).
            local: Developer's service that receives the traffic.
            remote_ports: Ports to listen on inside the agent pod.
            client_keys: Private keys for authentication.
            user: SSH user on the agent.
            connect_timeout: SSH connect/auth timeout (seconds).
            dial_timeout: Local endpoint connect timeout (seconds).
            max_connections: Cap on concurrent relays (0 = unbounded).
        """
        self.agent = agent
        self.local = local
        self.remote_ports = list(dict.fromkeys(remote_ports))
        self.client_keys = client_keys
        self.user = user
        self.connect_timeout = connect_timeout
        self.dial_timeout = dial_timeout
        self.max_connections = max_connections

        self._conn: asyncssh.SSHClientConnection | None = None
        self._listeners: list[asyncssh.SSHListener] = []
        self._active = 0
        self.connections_served = 0
        self.listening = asyncio.Event()

    @property
    def active_connections(self) -> int:
        return self._active

    # =========================================================================
    # Session Lifecycle
    # =========================================================================

    async def run(self) -> None:
        """
        Connect, listen, and relay until the SSH transport goes away.

        Raises:
            AgentUnreachable: SSH dial or authentication failed.
            ListenSetupFailed: The agent refused a reverse listener.
        """
        await self._connect()
        try:
            for port in self.remote_ports:
                await self._listen(port)
            self.listening.set()
            await self._conn.wait_closed()
            logger.info("SSH connection to agent closed")
        finally:
            self.close()

    def close(self) -> None:
        """Close listeners and the SSH connection."""
        for listener in self._listeners:
            listener.close()
        self._listeners.clear()
        if self._conn:
            self._conn.close()

    async def _connect(self) -> None:
        logger.debug(f"Connecting to agent at {self.agent} as {self.user}")
        try:
            self._conn = await asyncio.wait_for(
                asyncssh.connect(
                    self.agent.host,
                    self.agent.port,
                    username=self.user,
                    client_keys=self.client_keys,
                    known_hosts=None,
                ),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError:
            raise AgentUnreachable(
                f"Timed out connecting to agent at {self.agent}"
            ) from None
        except (OSError, asyncssh.Error) as e:
            raise AgentUnreachable(f"Cannot connect to agent at {self.agent}: {e}") from e

        logger.info(f"Connected to agent at {self.agent}")

    async def _listen(self, port: int) -> None:
        try:
            listener = await self._conn.start_server(self._accept, "", port)
        except (asyncssh.ChannelListenError, OSError) as e:
            raise ListenSetupFailed(port, str(e)) from e

        self._listeners.append(listener)
        logger.info(f"Agent listening on port {port}, relaying to {self.local}")

    # =========================================================================
    # Connection Handling
    # =========================================================================

    def _accept(self, orig_host: str, orig_port: int):
        """
        Handler factory called by asyncssh for each inbound channel.

        Raises:
            asyncssh.ChannelOpenError: The connection limit is reached; the
                agent refuses the channel.
        """
        if self.max_connections and self._active >= self.max_connections:
            logger.warning(
                f"[Tunnel {orig_host}:{orig_port}] Rejected: "
                f"{self._active} relays active (limit {self.max_connections})"
            )
            raise asyncssh.ChannelOpenError(
                asyncssh.OPEN_CONNECT_FAILED, "connection limit reached"
            )
        return functools.partial(self._handle_inbound, f"{orig_host}:{orig_port}")

    async def _handle_inbound(self, peer: str, reader, writer) -> None:
        """Pair one inbound channel with a local connection and relay it."""
        log_prefix = f"[Tunnel {peer}]"
        self._active += 1
        logger.debug(f"{log_prefix} Accepted ({self._active} active)")

        try:
            try:
                local_reader, local_writer = await self._dial_local()
            except LocalDialFailed as e:
                logger.warning(f"{log_prefix} {e}")
                writer.close()
                return

            self.connections_served += 1
            await bind_connection(
                reader, writer, local_reader, local_writer, label=log_prefix
            )

        except Exception as e:
            error = AcceptError(f"Connection handler failed: {e}")
            logger.error(f"{log_prefix} {error}")
            logger.debug(f"{log_prefix} Traceback:\n{format_traceback(e)}")
            writer.close()

        finally:
            self._active -= 1
            logger.debug(f"{log_prefix} Finished ({self._active} active)")

    async def _dial_local(self):
        try:
            return await asyncio.wait_for(
                asyncio.open_connection(self.local.host, self.local.port),
                timeout=self.dial_timeout,
            )
        except asyncio.TimeoutError:
            raise LocalDialFailed(str(self.local), "timed out") from None
        except OSError as e:
            raise LocalDialFailed(str(self.local), e.strerror or str(e)) from e

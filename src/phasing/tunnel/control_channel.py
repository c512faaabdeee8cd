"""
Control channel to the in-cluster agent.

Runs `kubectl port-forward` against the agent pod's SSH port with an
OS-assigned local port, and learns that port from kubectl's stdout:

    Forwarding from 127.0.0.1:41327 -> 22

The port is published once through a future; the subprocess then keeps
running for the life of the session.
"""

import asyncio
import re

from phasing.exceptions import AgentUnreachable, BootstrapTimeout
from phasing.utils.logger import get_logger

logger = get_logger(__name__)

TERMINATE_GRACE_SECONDS = 3.0


class ControlChannelBootstrap:
    """Owns the kubectl port-forward subprocess to the agent."""

    def __init__(
        self,
        namespace: str,
        kubeconfig_path: str | None = None,
        agent_pod: str = "phasing",
        agent_port: int = 22,
        local_port: int = 0,
        timeout: float = 30.0,
        kubectl: str = "kubectl",
    ):
        self.namespace = namespace
        self.kubeconfig_path = kubeconfig_path
        self.agent_pod = agent_pod
        self.agent_port = agent_port
        self.local_port = local_port
        self.timeout = timeout
        self.kubectl = kubectl

        self._forwarding_re = re.compile(
            rf"Forwarding from \S+:(\d+) -> {agent_port}\b"
        )
        self._process: asyncio.subprocess.Process | None = None
        self._port_future: asyncio.Future | None = None
        self._stdout_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self._stderr_tail: list[str] = []

    @property
    def port(self) -> int | None:
        """The discovered local port, or None before discovery."""
        if self._port_future and self._port_future.done():
            if not self._port_future.cancelled() and not self._port_future.exception():
                return self._port_future.result()
        return None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    def build_command(self) -> list[str]:
        """Build the kubectl port-forward command line."""
        cmd = [
            self.kubectl,
            "port-forward",
            f"pod/{self.agent_pod}",
            f"{self.local_port}:{self.agent_port}",
            "--address",
            "127.0.0.1",
            "-n",
            self.namespace,
        ]
        if self.kubeconfig_path:
            cmd.extend(["--kubeconfig", self.kubeconfig_path])
        return cmd

    async def start(self) -> int:
        """
        Launch the port-forward and wait for its local port.

        Returns:
            The local port forwarding to the agent's SSH port.

        Raises:
            BootstrapTimeout: No port reported within the timeout.
            AgentUnreachable: kubectl is missing or exited before reporting.
        """
        cmd = self.build_command()
        logger.debug(f"Starting control channel: {' '.join(cmd)}")

        loop = asyncio.get_running_loop()
        self._port_future = loop.create_future()

        try:
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise AgentUnreachable(
                f"'{cmd[0]}' not found. Make sure kubectl is installed and in your PATH."
            ) from None

        logger.debug(f"Control channel subprocess PID: {self._process.pid}")
        self._stderr_task = asyncio.create_task(self._watch_stderr())
        self._stdout_task = asyncio.create_task(self._watch_stdout())

        try:
            port = await asyncio.wait_for(
                asyncio.shield(self._port_future), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"Control channel gave no port within {self.timeout}s")
            await self.close()
            raise BootstrapTimeout(self.timeout) from None
        except AgentUnreachable:
            await self.close()
            raise

        logger.info(
            f"Control channel up: 127.0.0.1:{port} -> "
            f"pod/{self.agent_pod}:{self.agent_port} ({self.namespace})"
        )
        return port

    async def wait_closed(self) -> int | None:
        """Wait for the port-forward subprocess to exit and return its code."""
        if not self._process:
            return None
        returncode = await self._process.wait()
        await asyncio.gather(*self._watch_tasks(), return_exceptions=True)
        return returncode

    async def close(self) -> None:
        """Terminate the port-forward subprocess (safe to call repeatedly)."""
        process = self._process
        if process and process.returncode is None:
            logger.debug(f"Stopping control channel (PID {process.pid})")
            try:
                process.terminate()
                await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE_SECONDS)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                logger.warning("Control channel did not stop, killing it")
                process.kill()
                await process.wait()

        tasks = self._watch_tasks()
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        # Mark a failure nobody awaited as retrieved
        future = self._port_future
        if future and future.done() and not future.cancelled():
            future.exception()

    # =========================================================================
    # Output Watchers
    # =========================================================================

    def _watch_tasks(self) -> list[asyncio.Task]:
        return [t for t in (self._stdout_task, self._stderr_task) if t is not None]

    async def _watch_stdout(self) -> None:
        """Find the forwarding line, then keep draining so kubectl never blocks."""
        process = self._process
        while True:
            raw = await process.stdout.readline()
            if not raw:
                break
            line = raw.decode(errors="replace").strip()
            logger.debug(f"[kubectl] {line}")

            match = self._forwarding_re.search(line)
            if match and not self._port_future.done():
                self._port_future.set_result(int(match.group(1)))

        returncode = await process.wait()
        if not self._port_future.done():
            # stderr usually explains the exit; let it finish first
            await asyncio.wait([self._stderr_task])
            detail = self._stderr_tail[-1] if self._stderr_tail else "no output"
            self._port_future.set_exception(
                AgentUnreachable(
                    f"kubectl port-forward exited with code {returncode} before "
                    f"forwarding was established: {detail}"
                )
            )

    async def _watch_stderr(self) -> None:
        process = self._process
        while True:
            raw = await process.stderr.readline()
            if not raw:
                break
            line = raw.decode(errors="replace").strip()
            if line:
                logger.debug(f"[kubectl stderr] {line}")
                self._stderr_tail = (self._stderr_tail + [line])[-10:]

"""
Session lifecycle coordination.

Sequences control channel -> selector hijack -> reverse tunnel, and makes
sure the Service's original selector is put back exactly once however the
session ends: termination signal, tunnel failure, control channel loss, or
an error during setup.

State machine:
    IDLE -> BOOTSTRAPPING -> REDIRECTING -> TUNNELING -> RESTORING -> TERMINATED
"""

import asyncio
import dataclasses
import signal
from typing import Callable

from phasing.config import config
from phasing.exceptions import ControlChannelLost, PhasingError
from phasing.kube.redirector import ServiceRedirector
from phasing.models.enums import SessionState
from phasing.models.session import ServiceRedirectionState, SessionConfig
from phasing.tunnel.control_channel import ControlChannelBootstrap
from phasing.tunnel.session import TunnelSession
from phasing.utils.logger import format_traceback, get_logger

logger = get_logger(__name__)

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class LifecycleCoordinator:
    """Runs one redirection session from bootstrap to restoration."""

    def __init__(
        self,
        settings: SessionConfig,
        redirector: ServiceRedirector,
        bootstrap: ControlChannelBootstrap,
        tunnel_factory: Callable[[SessionConfig, ServiceRedirectionState], TunnelSession],
        service_picker: Callable[[str], str] | None = None,
        on_state_change: Callable[[SessionState, SessionConfig], None] | None = None,
    ):
        """
        Initialize the coordinator.

        Args:
            settings: Session settings; service_name may be empty.
            redirector: Selector hijack/restore implementation.
            bootstrap: Control channel to the agent.
            tunnel_factory: Builds the tunnel once agent and remote ports are known.
            service_picker: Blocking callable (namespace -> service name),
                used only when no service was named.
            on_state_change: Observer called on every transition.
        """
        self.settings = settings
        self.redirector = redirector
        self.bootstrap = bootstrap
        self.tunnel_factory = tunnel_factory
        self.service_picker = service_picker
        self.on_state_change = on_state_change

        self.state = SessionState.IDLE
        self.redirection: ServiceRedirectionState | None = None
        self.tunnel: TunnelSession | None = None
        # Failure that ended the session, if any
        self.error: PhasingError | None = None

        self._stop = asyncio.Event()
        self._restore_lock = asyncio.Lock()
        self._restore_attempted = False
        self._restore_failed = False
        self._signals_installed: list[signal.Signals] = []

    # =========================================================================
    # Public API
    # =========================================================================

    def request_stop(self) -> None:
        """Ask the session to end (signal handlers call this)."""
        if not self._stop.is_set():
            logger.info("Stop requested, shutting down...")
            self._stop.set()

    async def run(self) -> int:
        """
        Run the session to completion.

        Returns:
            Process exit code: 0 for a clean stop, 1 for any failure.
        """
        self._install_signal_handlers()
        exit_code = 1

        try:
            await self._bootstrap()
            await self._redirect()
            exit_code = await self._tunnel()

        except PhasingError as e:
            self.error = e
            logger.error(f"{type(e).__name__}: {e}")

        except Exception as e:
            logger.error(f"Unexpected error: {e}")
            logger.debug(format_traceback(e))

        finally:
            if self.redirection is not None and self.redirection.captured:
                self._transition(SessionState.RESTORING)
            await self.restore_once()
            await self.bootstrap.close()
            self._remove_signal_handlers()
            self._transition(SessionState.TERMINATED)

        if self._restore_failed:
            exit_code = 1
        return exit_code

    async def restore_once(self) -> None:
        """Attempt to restore the Service; only the first call does anything."""
        async with self._restore_lock:
            if self._restore_attempted:
                return
            self._restore_attempted = True

            if self.redirection is None:
                return

            try:
                await asyncio.to_thread(self.redirector.restore, self.redirection)
            except PhasingError as e:
                self._restore_failed = True
                logger.error(
                    f"Failed to restore Service {self.redirection.key}: {e}. "
                    f"Restore its selector to {self.redirection.original_selector} "
                    "manually or run phasing against it again."
                )

    # =========================================================================
    # Phases
    # =========================================================================

    async def _bootstrap(self) -> None:
        self._transition(SessionState.BOOTSTRAPPING)
        agent_port = await self._until_stopped(self.bootstrap.start())
        self.settings = dataclasses.replace(self.settings, agent_port=agent_port)

    async def _redirect(self) -> None:
        self._transition(SessionState.REDIRECTING)

        if not self.settings.service_name:
            if self.service_picker is None:
                raise PhasingError("No service named and no way to pick one")
            # Interactive prompt: let Ctrl+C raise KeyboardInterrupt normally
            self._remove_signal_handlers()
            try:
                name = self.service_picker(self.settings.namespace)
            finally:
                self._install_signal_handlers()
            self.settings = dataclasses.replace(self.settings, service_name=name)

        self.redirection = ServiceRedirectionState(
            namespace=self.settings.namespace,
            service_name=self.settings.service_name,
            redirect_selector=dict(config.REDIRECT_SELECTOR),
        )
        # Stopping here must still restore, so hijack is not raced against stop
        port = await asyncio.to_thread(self.redirector.hijack, self.redirection)
        self.settings = dataclasses.replace(self.settings, remote_port=port)

    async def _tunnel(self) -> int:
        if self._stop.is_set():
            return 0

        self._transition(SessionState.TUNNELING)
        self.tunnel = self.tunnel_factory(self.settings, self.redirection)

        tunnel_task = asyncio.create_task(self.tunnel.run())
        channel_task = asyncio.create_task(self.bootstrap.wait_closed())
        stop_task = asyncio.create_task(self._stop.wait())
        tasks = [tunnel_task, channel_task, stop_task]

        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            self.tunnel.close()
            await asyncio.gather(*tasks, return_exceptions=True)

        if stop_task in done:
            return 0
        if tunnel_task in done and tunnel_task.exception() is not None:
            raise tunnel_task.exception()
        if channel_task in done:
            raise ControlChannelLost(
                f"kubectl port-forward exited (code {self.bootstrap.returncode})"
            )
        raise ControlChannelLost("SSH connection to the agent closed")

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _until_stopped(self, coro):
        """Await coro unless a stop is requested first."""
        work = asyncio.create_task(coro)
        stop = asyncio.create_task(self._stop.wait())
        try:
            await asyncio.wait([work, stop], return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
        if not work.done():
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)
            raise PhasingError("Interrupted during startup")
        return work.result()

    def _transition(self, new_state: SessionState) -> None:
        logger.debug(f"Session state: {self.state.value} -> {new_state.value}")
        self.state = new_state
        if self.on_state_change:
            self.on_state_change(new_state, self.settings)

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in STOP_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_stop)
                self._signals_installed.append(sig)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Cannot install handler for {sig.name} on this platform")

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._signals_installed:
            loop.remove_signal_handler(sig)
        self._signals_installed.clear()

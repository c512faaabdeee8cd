"""
Phasing CLI entry point.

Usage:
    phasing [SERVICE] [LOCAL_PORT] [OPTIONS]

Examples:
    # Pick a service interactively, deliver its traffic to localhost:7777
    phasing

    # Deliver traffic for Service "web" to localhost:8080
    phasing web 8080 -n default

    # Install the in-cluster agent (once per namespace)
    phasing --init
"""

import asyncio
from typing import Annotated

import typer

from phasing.cli.init import run_init
from phasing.cli.output import console, print_error
from phasing.cli.prompts import select_service
from phasing.config import config
from phasing.exceptions import (
    AgentUnreachable,
    BootstrapTimeout,
    ControlChannelLost,
    ListenSetupFailed,
    PhasingError,
)
from phasing.kube.client import get_current_namespace, load_core_api
from phasing.kube.redirector import ServiceRedirector
from phasing.lifecycle import LifecycleCoordinator
from phasing.models.enums import LogLevel, SessionState
from phasing.models.session import ServiceRedirectionState, SessionConfig
from phasing.tunnel.control_channel import ControlChannelBootstrap
from phasing.tunnel.session import TunnelSession
from phasing.utils.logger import configure_logging, get_logger
from phasing.utils.ssh_key import load_private_key

logger = get_logger(__name__)

app = typer.Typer(
    name="phasing",
    help="Redirect a Kubernetes Service's traffic to your local machine.",
    add_completion=False,
    rich_markup_mode="rich",
)

NOT_INITIALIZED_HINT = (
    "Cannot reach the Phasing agent. Make sure Phasing has been initialized "
    "in this namespace ([bold]phasing --init[/bold])."
)

# Failures that usually mean the agent pod is missing or not ready
AGENT_ERRORS = (
    AgentUnreachable,
    BootstrapTimeout,
    ListenSetupFailed,
    ControlChannelLost,
)


# =============================================================================
# Session Wiring
# =============================================================================


def _print_state(state: SessionState, settings: SessionConfig) -> None:
    """User-facing progress lines for session transitions."""
    if state == SessionState.BOOTSTRAPPING:
        console.print("[dim]Connecting to agent...[/dim]")
    elif state == SessionState.TUNNELING:
        console.print(
            f"[bold green]Starting phasing[/bold green]\n"
            f"Remote endpoint is [yellow]{settings.remote_endpoint}[/yellow]\n"
            f"Local endpoint is [cyan]{settings.local_endpoint}[/cyan]"
        )
        console.print("[dim]Press Ctrl+C to stop.[/dim]")
    elif state == SessionState.RESTORING:
        console.print(f"[dim]Restoring service {settings.service_name}...[/dim]")


def build_coordinator(settings: SessionConfig, max_connections: int = 0) -> LifecycleCoordinator:
    """
    Wire the session components together.

    Raises:
        PhasingError: Key or kubeconfig cannot be loaded.
    """
    client_keys = [load_private_key(settings.ssh_key_path or config.SSH_KEY_PATH)]
    core_v1 = load_core_api(settings.kubeconfig_path)

    redirector = ServiceRedirector(
        core_v1,
        retry_steps=config.CONFLICT_RETRY_STEPS,
        retry_delay=config.CONFLICT_RETRY_DELAY_SECONDS,
    )
    bootstrap = ControlChannelBootstrap(
        namespace=settings.namespace,
        kubeconfig_path=settings.kubeconfig_path,
        agent_pod=config.AGENT_POD_NAME,
        agent_port=config.AGENT_SSH_PORT,
        timeout=config.BOOTSTRAP_TIMEOUT_SECONDS,
        kubectl=config.KUBECTL_PATH,
    )

    def tunnel_factory(
        current: SessionConfig, redirection: ServiceRedirectionState
    ) -> TunnelSession:
        remote_ports = [current.remote_port]
        if redirection.target_port:
            remote_ports.append(redirection.target_port)
        return TunnelSession(
            agent=current.agent_endpoint,
            local=current.local_endpoint,
            remote_ports=remote_ports,
            client_keys=client_keys,
            user=config.AGENT_USER,
            connect_timeout=config.SSH_CONNECT_TIMEOUT_SECONDS,
            dial_timeout=config.LOCAL_DIAL_TIMEOUT_SECONDS,
            max_connections=max_connections,
        )

    return LifecycleCoordinator(
        settings,
        redirector=redirector,
        bootstrap=bootstrap,
        tunnel_factory=tunnel_factory,
        service_picker=lambda namespace: select_service(core_v1, namespace),
        on_state_change=_print_state,
    )


def run_session(settings: SessionConfig, max_connections: int = 0) -> int:
    """Run one redirection session and return its exit code."""
    coordinator = build_coordinator(settings, max_connections)
    exit_code = asyncio.run(coordinator.run())
    if isinstance(coordinator.error, AGENT_ERRORS):
        print_error(NOT_INITIALIZED_HINT)
    return exit_code


# =============================================================================
# Command
# =============================================================================


@app.command()
def main(
    service_arg: Annotated[
        str | None,
        typer.Argument(metavar="SERVICE", help="Service to redirect (overrides --service)"),
    ] = None,
    port_arg: Annotated[
        int | None,
        typer.Argument(metavar="LOCAL_PORT", help="Local port (overrides --port)"),
    ] = None,
    service: Annotated[
        str | None,
        typer.Option("--service", "-s", help="Service name (prompted when omitted)"),
    ] = None,
    port: Annotated[
        int,
        typer.Option("--port", "-p", help="Local port to forward the service to"),
    ] = config.DEFAULT_LOCAL_PORT,
    namespace: Annotated[
        str | None,
        typer.Option(
            "--namespace",
            "-n",
            help="Namespace (default: current kubeconfig context)",
            envvar="PHASING_NAMESPACE",
        ),
    ] = None,
    kubeconfig: Annotated[
        str | None,
        typer.Option("--kubeconfig", help="Path to kubeconfig file"),
    ] = None,
    key: Annotated[
        str | None,
        typer.Option("--key", "-i", help="SSH private key", envvar="PHASING_SSH_KEY"),
    ] = None,
    init: Annotated[
        bool,
        typer.Option("--init", help="Install the Phasing agent and exit"),
    ] = False,
    max_connections: Annotated[
        int,
        typer.Option("--max-connections", help="Concurrent tunnel limit (0 = none)"),
    ] = config.MAX_TUNNEL_CONNECTIONS,
    log_level: Annotated[
        LogLevel,
        typer.Option("--log-level", help="Log verbosity", envvar="PHASING_LOG_LEVEL"),
    ] = config.LOG_LEVEL,
):
    """
    Redirect traffic for a Kubernetes Service to a local port.

    The Service's selector is pointed at the Phasing agent for the duration
    of the session and restored on exit.
    """
    configure_logging(log_level, config.LOG_FILE)

    kubeconfig_path = kubeconfig or config.get_default_kubeconfig()
    namespace = namespace or get_current_namespace(kubeconfig_path)
    key_path = key or config.SSH_KEY_PATH

    try:
        if init:
            run_init(namespace, kubeconfig_path, key_path)
            return

        settings = SessionConfig(
            service_name=service_arg or service or "",
            namespace=namespace,
            local_port=port_arg if port_arg is not None else port,
            kubeconfig_path=kubeconfig_path,
            ssh_key_path=key_path,
            local_host=config.LOCAL_HOST,
        )
        exit_code = run_session(settings, max_connections)

    except PhasingError as e:
        print_error(str(e))
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\n[dim]Cancelled.[/dim]")
        raise typer.Exit(130)

    raise typer.Exit(exit_code)


def run():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()

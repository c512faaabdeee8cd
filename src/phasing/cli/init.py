"""
One-time agent initialization.

Usage:
    phasing --init                 # current namespace
    phasing --init -n staging      # a specific namespace
"""

from phasing.agent.installer import install_agent
from phasing.cli.output import console, print_success, print_warning
from phasing.config import config
from phasing.kube.client import load_core_api
from phasing.utils.ssh_key import ensure_ssh_keypair


def run_init(namespace: str, kubeconfig_path: str | None, key_path: str) -> None:
    """
    Generate the SSH key pair if needed and install the agent.

    Raises:
        PhasingError: Key generation or cluster API failure.
    """
    console.print(f"[bold]Initializing Phasing in namespace [cyan]{namespace}[/cyan][/bold]")

    public_key = ensure_ssh_keypair(key_path)
    console.print(f"[dim]Using SSH key {key_path}[/dim]")

    core_v1 = load_core_api(kubeconfig_path)
    created = install_agent(core_v1, namespace, public_key)

    if created:
        print_success(f"Agent pod '{config.AGENT_POD_NAME}' created.")
    else:
        print_warning(
            f"Agent pod '{config.AGENT_POD_NAME}' already exists; authorized key updated."
        )
        console.print(
            f"[dim]Delete the pod (kubectl delete pod {config.AGENT_POD_NAME} "
            f"-n {namespace}) and rerun to pick up a new key.[/dim]"
        )
    print_success("Phasing initialized.")

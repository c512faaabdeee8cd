"""Interactive prompts."""

from rich.prompt import IntPrompt
from rich.table import Table

from phasing.cli.output import console
from phasing.exceptions import PhasingError
from phasing.kube.client import list_service_names


def select_service(core_v1, namespace: str) -> str:
    """Let the user pick one Service from the namespace."""
    names = list_service_names(core_v1, namespace)
    if not names:
        raise PhasingError(f"No services found in namespace '{namespace}'")

    table = Table(title=f"Services in {namespace}", show_header=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Service", style="cyan")
    for idx, name in enumerate(names, start=1):
        table.add_row(str(idx), name)
    console.print(table)

    choice = IntPrompt.ask(
        "Select service to forward",
        choices=[str(i) for i in range(1, len(names) + 1)],
        show_choices=False,
        default=1,
    )
    return names[choice - 1]

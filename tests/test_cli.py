import pytest
from typer.testing import CliRunner

from phasing.cli import main as cli_main
from phasing.exceptions import (
    AgentUnreachable,
    BootstrapTimeout,
    ClusterAPIError,
    ConflictExhausted,
    ControlChannelLost,
)
from phasing.models.session import SessionConfig

runner = CliRunner()


@pytest.fixture
def sessions(monkeypatch):
    """Record the SessionConfig each invocation would run."""
    calls = []

    def fake_run_session(settings, max_connections=0):
        calls.append((settings, max_connections))
        return 0

    monkeypatch.setattr(cli_main, "run_session", fake_run_session)
    monkeypatch.setattr(cli_main, "configure_logging", lambda *a, **kw: None)
    return calls


def test_positional_service_and_port(sessions):
    result = runner.invoke(cli_main.app, ["web", "8080", "-n", "staging"])

    assert result.exit_code == 0
    settings, max_connections = sessions[0]
    assert settings.service_name == "web"
    assert settings.local_port == 8080
    assert settings.namespace == "staging"
    assert max_connections == 0


def test_options_and_defaults(sessions):
    result = runner.invoke(cli_main.app, ["--service", "api", "-n", "default"])

    assert result.exit_code == 0
    settings, _ = sessions[0]
    assert settings.service_name == "api"
    assert settings.local_port == 7777


def test_positional_arguments_override_options(sessions):
    result = runner.invoke(
        cli_main.app, ["web", "9000", "-s", "api", "-p", "8000", "-n", "default"]
    )

    assert result.exit_code == 0
    settings, _ = sessions[0]
    assert settings.service_name == "web"
    assert settings.local_port == 9000


def test_no_service_leaves_name_for_picker(sessions):
    result = runner.invoke(cli_main.app, ["-n", "default"])

    assert result.exit_code == 0
    assert sessions[0][0].service_name == ""


def test_namespace_from_kubeconfig_context(sessions, monkeypatch):
    monkeypatch.setattr(cli_main, "get_current_namespace", lambda path: "team-a")

    result = runner.invoke(cli_main.app, ["web", "--kubeconfig", "/tmp/kc"])

    assert result.exit_code == 0
    settings, _ = sessions[0]
    assert settings.namespace == "team-a"
    assert settings.kubeconfig_path == "/tmp/kc"


def test_max_connections_passed_through(sessions):
    result = runner.invoke(cli_main.app, ["web", "-n", "default", "--max-connections", "4"])

    assert result.exit_code == 0
    assert sessions[0][1] == 4


def test_failed_session_exits_nonzero(monkeypatch):
    monkeypatch.setattr(cli_main, "run_session", lambda settings, max_connections=0: 1)
    monkeypatch.setattr(cli_main, "configure_logging", lambda *a, **kw: None)

    result = runner.invoke(cli_main.app, ["web", "-n", "default"])

    assert result.exit_code == 1


def test_setup_error_exits_one(monkeypatch):
    def fail(settings, max_connections=0):
        raise ClusterAPIError("Cannot load kubeconfig")

    monkeypatch.setattr(cli_main, "run_session", fail)
    monkeypatch.setattr(cli_main, "configure_logging", lambda *a, **kw: None)

    result = runner.invoke(cli_main.app, ["web", "-n", "default"])

    assert result.exit_code == 1


def test_init_installs_agent(sessions, monkeypatch):
    calls = []
    monkeypatch.setattr(cli_main, "run_init", lambda *args: calls.append(args))

    result = runner.invoke(
        cli_main.app, ["--init", "-n", "staging", "--kubeconfig", "/tmp/kc", "-i", "/tmp/key"]
    )

    assert result.exit_code == 0
    assert calls == [("staging", "/tmp/kc", "/tmp/key")]
    assert sessions == []


class FinishedCoordinator:
    """A coordinator whose session already ended with the given outcome."""

    def __init__(self, exit_code, error=None):
        self.exit_code = exit_code
        self.error = error

    async def run(self):
        return self.exit_code


@pytest.mark.parametrize(
    "error, hinted",
    [
        (AgentUnreachable("kubectl port-forward exited with code 1"), True),
        (BootstrapTimeout(30), True),
        (ControlChannelLost("kubectl port-forward exited (code 1)"), True),
        (ConflictExhausted("default/web", 5), False),
        (ClusterAPIError("Service default/web not found", status=404), False),
        (None, False),
    ],
)
def test_init_hint_only_for_agent_failures(monkeypatch, error, hinted):
    errors = []
    monkeypatch.setattr(
        cli_main, "build_coordinator", lambda settings, max_connections=0: FinishedCoordinator(1, error)
    )
    monkeypatch.setattr(cli_main, "print_error", errors.append)
    settings = SessionConfig(service_name="web", namespace="default", local_port=7777)

    assert cli_main.run_session(settings) == 1
    assert (cli_main.NOT_INITIALIZED_HINT in errors) is hinted

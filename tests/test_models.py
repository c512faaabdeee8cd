import dataclasses

from phasing.config import PhasingConfig
from phasing.models.session import ServiceRedirectionState, SessionConfig


def test_session_endpoints():
    settings = SessionConfig(service_name="web", namespace="default", local_port=7777)
    settings = dataclasses.replace(settings, agent_port=40022, remote_port=8080)

    assert str(settings.local_endpoint) == "127.0.0.1:7777"
    assert str(settings.agent_endpoint) == "127.0.0.1:40022"
    assert str(settings.remote_endpoint) == "web.default:8080"


def test_capture_happens_once():
    state = ServiceRedirectionState(namespace="default", service_name="web")

    assert state.capture({"app": "web"}, 8080, 8000) is True
    assert state.capture({"app": "phasing"}, 80) is False

    assert state.original_selector == {"app": "web"}
    assert state.port == 8080
    assert state.target_port == 8000
    assert state.key == "default/web"


def test_capture_of_missing_selector():
    state = ServiceRedirectionState(namespace="default", service_name="ext")

    state.capture(None, 443)

    assert state.captured
    assert state.original_selector is None


def test_kubeconfig_from_environment(monkeypatch):
    monkeypatch.setenv("KUBECONFIG", "/a/config:/b/config")

    assert PhasingConfig().get_default_kubeconfig() == "/a/config"


def test_kubeconfig_default_location(monkeypatch):
    monkeypatch.delenv("KUBECONFIG", raising=False)
    monkeypatch.setenv("HOME", "/home/dev")

    assert PhasingConfig().get_default_kubeconfig() == "/home/dev/.kube/config"

from unittest.mock import MagicMock

import pytest
import urllib3
from kubernetes.client.rest import ApiException

from phasing.agent.installer import build_agent_pod, build_agent_secret, install_agent
from phasing.config import config
from phasing.exceptions import ClusterAPIError

PUBLIC_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIExampleKey phasing"


@pytest.fixture
def api():
    return MagicMock()


def test_agent_pod_carries_redirect_selector():
    pod = build_agent_pod("staging")

    assert pod.metadata.name == config.AGENT_POD_NAME
    assert pod.metadata.namespace == "staging"
    for key, value in config.REDIRECT_SELECTOR.items():
        assert pod.metadata.labels[key] == value

    container = pod.spec.containers[0]
    assert container.ports[0].container_port == config.AGENT_SSH_PORT
    assert "GatewayPorts yes" in container.command[-1]
    assert pod.spec.volumes[0].secret.secret_name == config.AGENT_SECRET_NAME


def test_agent_secret_holds_public_key():
    secret = build_agent_secret(PUBLIC_KEY, "staging")

    assert secret.string_data["authorized_keys"] == PUBLIC_KEY + "\n"
    assert secret.metadata.namespace == "staging"


def test_install_creates_secret_and_pod(api):
    assert install_agent(api, "default", PUBLIC_KEY) is True

    api.create_namespaced_secret.assert_called_once()
    api.replace_namespaced_secret.assert_not_called()
    api.create_namespaced_pod.assert_called_once()


def test_install_refreshes_existing_secret(api):
    api.create_namespaced_secret.side_effect = ApiException(status=409, reason="Conflict")
    api.create_namespaced_pod.side_effect = ApiException(status=409, reason="Conflict")

    assert install_agent(api, "default", PUBLIC_KEY) is False

    api.replace_namespaced_secret.assert_called_once()
    assert api.replace_namespaced_secret.call_args.kwargs["name"] == config.AGENT_SECRET_NAME


def test_install_forbidden(api):
    api.create_namespaced_secret.side_effect = ApiException(status=403, reason="Forbidden")

    with pytest.raises(ClusterAPIError) as exc_info:
        install_agent(api, "default", PUBLIC_KEY)

    assert exc_info.value.status == 403
    api.create_namespaced_pod.assert_not_called()


def test_install_unreachable_cluster(api):
    api.create_namespaced_secret.side_effect = urllib3.exceptions.MaxRetryError(
        pool=None, url="/api/v1/namespaces/default/secrets"
    )

    with pytest.raises(ClusterAPIError, match="unreachable"):
        install_agent(api, "default", PUBLIC_KEY)

    api.create_namespaced_pod.assert_not_called()


def test_install_connection_lost_creating_pod(api):
    api.create_namespaced_pod.side_effect = urllib3.exceptions.ProtocolError(
        "Connection aborted."
    )

    with pytest.raises(ClusterAPIError):
        install_agent(api, "default", PUBLIC_KEY)

"""
Kubernetes client helpers.

Loads a CoreV1Api for an explicit kubeconfig file and answers the few
read-only questions the CLI needs before a session starts.
"""

import urllib3
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from phasing.exceptions import ClusterAPIError
from phasing.utils.logger import get_logger

logger = get_logger(__name__)


def load_core_api(kubeconfig_path: str | None = None) -> client.CoreV1Api:
    """
    Build a CoreV1Api client.

    Args:
        kubeconfig_path: Path to the kubeconfig file (None = client default).

    Raises:
        ClusterAPIError: If the kubeconfig cannot be loaded.
    """
    try:
        api_client = config.new_client_from_config(config_file=kubeconfig_path)
    except (ConfigException, OSError) as e:
        logger.error(f"Failed to load kubeconfig {kubeconfig_path}: {e}")
        raise ClusterAPIError(f"Cannot load kubeconfig '{kubeconfig_path}': {e}") from e

    logger.debug(f"Loaded kubeconfig {kubeconfig_path}")
    return client.CoreV1Api(api_client)


def get_current_namespace(kubeconfig_path: str | None = None) -> str:
    """
    Get the namespace of the kubeconfig's current context.

    Falls back to "default" when the file or context cannot be read.
    """
    try:
        _, active_context = config.list_kube_config_contexts(config_file=kubeconfig_path)
    except (ConfigException, OSError) as e:
        logger.debug(f"Cannot read current context from {kubeconfig_path}: {e}")
        return "default"

    if not active_context:
        return "default"
    return active_context.get("context", {}).get("namespace") or "default"


def list_service_names(core_v1: client.CoreV1Api, namespace: str) -> list[str]:
    """
    List the names of Services in a namespace.

    Raises:
        ClusterAPIError: If the cluster cannot be queried.
    """
    try:
        services = core_v1.list_namespaced_service(namespace=namespace)
    except ApiException as e:
        raise ClusterAPIError(
            f"Cannot list services in {namespace}: {e.reason}", status=e.status
        ) from e
    except urllib3.exceptions.HTTPError as e:
        raise ClusterAPIError(f"Cluster unreachable: {e}") from e

    return sorted(svc.metadata.name for svc in services.items)

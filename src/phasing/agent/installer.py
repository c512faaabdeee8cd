"""
In-cluster agent installation.

The agent is a stock sshd in a pod labelled with the redirect selector.
The developer's public key is delivered through a Secret mounted into the
pod; GatewayPorts lets reverse listeners bind on the pod's interfaces so
kube-proxy can reach them.
"""

import urllib3
from kubernetes import client
from kubernetes.client.rest import ApiException

from phasing.config import config
from phasing.exceptions import ClusterAPIError
from phasing.utils.logger import get_logger

logger = get_logger(__name__)

AUTHORIZED_KEYS_MOUNT = "/etc/phasing"

SSHD_BOOTSTRAP_SCRIPT = f"""\
set -e
apk add --no-cache openssh-server >/dev/null
ssh-keygen -A
mkdir -p /root/.ssh
cp {AUTHORIZED_KEYS_MOUNT}/authorized_keys /root/.ssh/authorized_keys
chmod 700 /root/.ssh
chmod 600 /root/.ssh/authorized_keys
cat >> /etc/ssh/sshd_config <<EOF
PermitRootLogin prohibit-password
PasswordAuthentication no
AllowTcpForwarding yes
GatewayPorts yes
EOF
exec /usr/sbin/sshd -D -e
"""


def build_agent_secret(public_key: str, namespace: str) -> client.V1Secret:
    """Build the Secret carrying the authorized public key."""
    return client.V1Secret(
        metadata=client.V1ObjectMeta(
            name=config.AGENT_SECRET_NAME,
            namespace=namespace,
            labels={"app.kubernetes.io/managed-by": "phasing"},
        ),
        string_data={"authorized_keys": public_key + "\n"},
    )


def build_agent_pod(namespace: str) -> client.V1Pod:
    """Build the agent Pod running sshd on the agent SSH port."""
    container = client.V1Container(
        name="agent",
        image=config.AGENT_IMAGE,
        command=["/bin/sh", "-c", SSHD_BOOTSTRAP_SCRIPT],
        ports=[client.V1ContainerPort(container_port=config.AGENT_SSH_PORT, name="ssh")],
        volume_mounts=[
            client.V1VolumeMount(
                name="authorized-keys",
                mount_path=AUTHORIZED_KEYS_MOUNT,
                read_only=True,
            )
        ],
        readiness_probe=client.V1Probe(
            tcp_socket=client.V1TCPSocketAction(port=config.AGENT_SSH_PORT),
            period_seconds=2,
        ),
    )

    return client.V1Pod(
        metadata=client.V1ObjectMeta(
            name=config.AGENT_POD_NAME,
            namespace=namespace,
            labels={
                **config.REDIRECT_SELECTOR,
                "app.kubernetes.io/managed-by": "phasing",
            },
        ),
        spec=client.V1PodSpec(
            containers=[container],
            volumes=[
                client.V1Volume(
                    name="authorized-keys",
                    secret=client.V1SecretVolumeSource(
                        secret_name=config.AGENT_SECRET_NAME
                    ),
                )
            ],
        ),
    )


def install_agent(core_v1: client.CoreV1Api, namespace: str, public_key: str) -> bool:
    """
    Install (or refresh) the agent in a namespace.

    The Secret is created or replaced; the Pod is created unless it already
    exists.

    Returns:
        True if the Pod was created, False if it already existed.

    Raises:
        ClusterAPIError: Cluster unreachable or any other API failure.
    """
    secret = build_agent_secret(public_key, namespace)
    try:
        _apply_secret(core_v1, namespace, secret)
        created = _create_pod(core_v1, namespace)
    except urllib3.exceptions.HTTPError as e:
        raise ClusterAPIError(f"Cluster unreachable: {e}") from e

    if not created:
        logger.info(f"Agent pod {namespace}/{config.AGENT_POD_NAME} already exists")
        return False

    logger.info(f"Created agent pod {namespace}/{config.AGENT_POD_NAME}")
    return True


def _apply_secret(core_v1: client.CoreV1Api, namespace: str, secret: client.V1Secret) -> None:
    """Create the key Secret, replacing it when it already exists."""
    try:
        core_v1.create_namespaced_secret(namespace=namespace, body=secret)
        logger.info(f"Created secret {namespace}/{config.AGENT_SECRET_NAME}")
        return
    except ApiException as e:
        if e.status != 409:
            raise ClusterAPIError(
                f"Cannot create secret: {e.status} {e.reason}", status=e.status
            ) from e

    try:
        core_v1.replace_namespaced_secret(
            name=config.AGENT_SECRET_NAME, namespace=namespace, body=secret
        )
    except ApiException as e:
        raise ClusterAPIError(
            f"Cannot update secret: {e.status} {e.reason}", status=e.status
        ) from e
    logger.info(f"Updated secret {namespace}/{config.AGENT_SECRET_NAME}")


def _create_pod(core_v1: client.CoreV1Api, namespace: str) -> bool:
    """Create the agent Pod; False if it already exists."""
    try:
        core_v1.create_namespaced_pod(namespace=namespace, body=build_agent_pod(namespace))
    except ApiException as e:
        if e.status == 409:
            return False
        raise ClusterAPIError(
            f"Cannot create agent pod: {e.status} {e.reason}", status=e.status
        ) from e
    return True

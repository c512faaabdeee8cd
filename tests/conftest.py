"""
Shared pytest fixtures for Phasing tests.

This module provides:
- FakeCoreV1: in-memory Service store with resourceVersion conflicts
- Loopback stream helpers for relay tests
"""

import asyncio
import copy
import socket

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from phasing.models.session import ServiceRedirectionState


# =============================================================================
# Kubernetes API Fake
# =============================================================================


class FakeCoreV1:
    """
    Mimics the parts of CoreV1Api used by Phasing.

    Reads return deep copies, and replace enforces resourceVersion like the
    API server does, so stale writes fail with 409.
    """

    def __init__(self):
        self.services: dict[tuple[str, str], client.V1Service] = {}
        self.writes: list[client.V1Service] = []
        self.reads = 0
        # Number of upcoming reads after which another actor modifies the Service
        self.interfere = 0
        # Exception raised by every call when set
        self.error: Exception | None = None

    def add_service(
        self,
        namespace: str,
        name: str,
        selector: dict[str, str] | None,
        port: int = 8080,
        target_port=None,
        annotations: dict[str, str] | None = None,
        ports: bool = True,
    ) -> None:
        self.services[(namespace, name)] = client.V1Service(
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=namespace,
                resource_version="1",
                annotations=annotations,
            ),
            spec=client.V1ServiceSpec(
                selector=selector,
                ports=(
                    [client.V1ServicePort(port=port, target_port=target_port)]
                    if ports
                    else None
                ),
            ),
        )

    def selector(self, namespace: str, name: str):
        return self.services[(namespace, name)].spec.selector

    def annotations(self, namespace: str, name: str) -> dict:
        return self.services[(namespace, name)].metadata.annotations or {}

    def read_namespaced_service(self, name: str, namespace: str):
        if self.error:
            raise self.error
        self.reads += 1
        key = (namespace, name)
        if key not in self.services:
            raise ApiException(status=404, reason="Not Found")
        result = copy.deepcopy(self.services[key])

        if self.interfere > 0:
            self.interfere -= 1
            self._bump(self.services[key])
        return result

    def replace_namespaced_service(self, name: str, namespace: str, body):
        if self.error:
            raise self.error
        stored = self.services[(namespace, name)]
        if body.metadata.resource_version != stored.metadata.resource_version:
            raise ApiException(status=409, reason="Conflict")

        updated = copy.deepcopy(body)
        self._bump(updated)
        self.services[(namespace, name)] = updated
        self.writes.append(copy.deepcopy(updated))
        return updated

    def list_namespaced_service(self, namespace: str):
        if self.error:
            raise self.error
        items = [svc for (ns, _), svc in self.services.items() if ns == namespace]
        return client.V1ServiceList(items=items)

    @staticmethod
    def _bump(service) -> None:
        service.metadata.resource_version = str(int(service.metadata.resource_version) + 1)


@pytest.fixture
def core_v1():
    """A FakeCoreV1 holding Service default/web with selector {app: web}."""
    api = FakeCoreV1()
    api.add_service("default", "web", {"app": "web"}, port=8080)
    return api


@pytest.fixture
def web_state():
    return ServiceRedirectionState(namespace="default", service_name="web")


# =============================================================================
# Stream Helpers
# =============================================================================


async def open_stream_pair():
    """
    Open two connected asyncio stream endpoints over a socketpair.

    Returns:
        ((reader_a, writer_a), (reader_b, writer_b))
    """
    sock_a, sock_b = socket.socketpair()
    side_a = await asyncio.open_connection(sock=sock_a)
    side_b = await asyncio.open_connection(sock=sock_b)
    return side_a, side_b


async def start_echo_server(host: str = "127.0.0.1"):
    """Start a TCP echo server on an ephemeral port; returns (server, port)."""

    async def handle(reader, writer):
        try:
            while True:
                data = await reader.read(65536)
                if not data:
                    break
                writer.write(data)
                await writer.drain()
        finally:
            writer.close()

    server = await asyncio.start_server(handle, host, 0)
    port = server.sockets[0].getsockname()[1]
    return server, port


def unused_port() -> int:
    """Find a local port nothing listens on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]

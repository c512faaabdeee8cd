"""
Service selector redirection.

Hijacking a Service means replacing its label selector with the agent's
label so kube-proxy routes the Service's traffic to the agent pod. Every
write is a read-modify-write against the freshest object, retried on 409
Conflict, because other actors (rollouts, operators) may be updating the
same Service.

The selector read just before the first successful hijack write is the
only one ever restored. It is also stored on the Service as an annotation, so a session
that was killed before restoring can be repaired by the next one.
"""

import json
import random
import time
from typing import Callable

import urllib3
from kubernetes import client
from kubernetes.client.rest import ApiException

from phasing.exceptions import ClusterAPIError, ConflictExhausted
from phasing.models.session import ServiceRedirectionState
from phasing.utils.logger import get_logger

logger = get_logger(__name__)

ORIGINAL_SELECTOR_ANNOTATION = "phasing.io/original-selector"


class ServiceRedirector:
    """Swaps a Service's selector to the agent and back."""

    def __init__(
        self,
        core_v1: client.CoreV1Api,
        retry_steps: int = 5,
        retry_delay: float = 0.01,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the redirector.

        Args:
            core_v1: Kubernetes CoreV1Api client.
            retry_steps: Attempts per operation before giving up on conflicts.
            retry_delay: Base delay between conflicting attempts (seconds).
            sleep: Sleep function, replaceable in tests.
        """
        self.core_v1 = core_v1
        self.retry_steps = max(1, retry_steps)
        self.retry_delay = retry_delay
        self._sleep = sleep

    # =========================================================================
    # Public Operations
    # =========================================================================

    def hijack(self, state: ServiceRedirectionState) -> int:
        """
        Point the Service at the agent.

        Args:
            state: Redirection state for the target Service.

        Returns:
            The Service's first declared port.

        Raises:
            ClusterAPIError: Service missing, portless, or cluster unreachable.
            ConflictExhausted: Too many concurrent modifications.
        """

        def attempt() -> None:
            service = self._read(state)
            if state.captured:
                original = state.original_selector
            else:
                original, port, target_port = self._inspect(state, service)

            service.spec.selector = dict(state.redirect_selector)
            annotations = dict(service.metadata.annotations or {})
            annotations[ORIGINAL_SELECTOR_ANNOTATION] = json.dumps(
                original, sort_keys=True
            )
            service.metadata.annotations = annotations
            self._write(state, service)

            if not state.captured and state.capture(original, port, target_port):
                logger.debug(
                    f"[Redirect {state.key}] Captured selector {original}, "
                    f"port {port}, targetPort {target_port}"
                )

        self._retry_on_conflict(state, attempt)
        state.restored = False

        logger.info(
            f"[Redirect {state.key}] Selector set to {state.redirect_selector} "
            f"(original: {state.original_selector}, port: {state.port})"
        )
        return state.port

    def restore(self, state: ServiceRedirectionState) -> bool:
        """
        Put the captured original selector back.

        A no-op when nothing was captured or the restore already happened.

        Returns:
            True if a restoring write was issued.

        Raises:
            ClusterAPIError: Service missing or cluster unreachable.
            ConflictExhausted: Too many concurrent modifications.
        """
        with state.lock:
            if not state.captured:
                logger.debug(f"[Redirect {state.key}] Nothing captured, not restoring")
                return False
            if state.restored:
                logger.debug(f"[Redirect {state.key}] Already restored")
                return False

            original = state.original_selector

            def attempt() -> None:
                service = self._read(state)
                service.spec.selector = dict(original) if original is not None else None
                annotations = dict(service.metadata.annotations or {})
                annotations.pop(ORIGINAL_SELECTOR_ANNOTATION, None)
                service.metadata.annotations = annotations
                self._write(state, service)

            self._retry_on_conflict(state, attempt)
            state.restored = True

        logger.info(f"[Redirect {state.key}] Selector restored to {original}")
        return True

    # =========================================================================
    # Internals
    # =========================================================================

    def _inspect(
        self, state: ServiceRedirectionState, service
    ) -> tuple[dict[str, str] | None, int, int | None]:
        """
        Work out what a first hijack would capture from a fresh read.

        Returns:
            Tuple of (original selector, port, numeric targetPort or None).
        """
        ports = service.spec.ports or []
        if not ports:
            raise ClusterAPIError(f"Service {state.key} declares no ports")

        first = ports[0]
        target_port = first.target_port if isinstance(first.target_port, int) else None
        selector = service.spec.selector

        # Left behind by a session that never got to restore
        recorded = (service.metadata.annotations or {}).get(
            ORIGINAL_SELECTOR_ANNOTATION
        )
        if recorded is not None and selector == state.redirect_selector:
            try:
                selector = json.loads(recorded)
                logger.warning(
                    f"[Redirect {state.key}] Service is still redirected by an "
                    f"earlier session; will restore recorded selector {selector}"
                )
            except ValueError:
                logger.warning(
                    f"[Redirect {state.key}] Ignoring unreadable "
                    f"{ORIGINAL_SELECTOR_ANNOTATION} annotation: {recorded!r}"
                )

        return selector, first.port, target_port

    def _read(self, state: ServiceRedirectionState):
        try:
            return self.core_v1.read_namespaced_service(
                name=state.service_name, namespace=state.namespace
            )
        except ApiException as e:
            if e.status == 404:
                raise ClusterAPIError(
                    f"Service {state.key} not found", status=404
                ) from e
            raise

    def _write(self, state: ServiceRedirectionState, service) -> None:
        self.core_v1.replace_namespaced_service(
            name=state.service_name, namespace=state.namespace, body=service
        )

    def _retry_on_conflict(
        self, state: ServiceRedirectionState, fn: Callable[[], None]
    ) -> None:
        """Run a read-modify-write, retrying it on 409 Conflict."""
        for attempt in range(1, self.retry_steps + 1):
            try:
                fn()
                return
            except ApiException as e:
                if e.status != 409:
                    raise ClusterAPIError(
                        f"Cluster API error for Service {state.key}: "
                        f"{e.status} {e.reason}",
                        status=e.status,
                    ) from e
                logger.debug(
                    f"[Redirect {state.key}] Conflict on attempt "
                    f"{attempt}/{self.retry_steps}"
                )
            except urllib3.exceptions.HTTPError as e:
                raise ClusterAPIError(f"Cluster unreachable: {e}") from e

            if attempt < self.retry_steps:
                self._sleep(self.retry_delay * (1 + random.uniform(0, 0.1)))

        raise ConflictExhausted(state.key, self.retry_steps)

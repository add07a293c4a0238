"""Owned handle over one job's proxy container and networks."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import socket
import time
from typing import Any, Callable, Final

import docker.errors

from .proxy_errors import ProxyContainerError, ProxyReadinessError, ProxyTeardownError

logger = logging.getLogger(__name__)

PortProbe = Callable[[str, int, float], bool]


@dataclass(frozen=True)
class ProxyEndpoint:
    """Reachable proxy endpoint.

    Attributes:
        host: Proxy address on the job's internal network.
        port: Proxy listening port.
    """

    host: str
    port: int

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"


def proxy_tcp_probe(host: str, port: int, timeout_seconds: float) -> bool:
    """Return whether a TCP connection to `host:port` succeeds within the timeout."""

    try:
        with socket.create_connection((host, port), timeout=timeout_seconds):
            return True
    except OSError:
        return False


class ProxyInstance:
    """Running-or-created proxy with a single explicit teardown.

    The instance is created by the proxy builder and started by its caller.
    `shutdown()` stops and removes the container, then removes both job
    networks; using the instance as a context manager runs it on every exit.
    """

    _STOP_TIMEOUT_SECONDS: Final[int] = 10
    _PROBE_TIMEOUT_SECONDS: Final[float] = 1.0
    _STOPPED_STATUSES: Final[frozenset[str]] = frozenset({"exited", "dead"})

    def __init__(
        self,
        container: Any,
        internal_network: Any,
        external_network: Any,
        network_name: str,
        ca_cert_pem: str,
        proxy_port: int = 1080,
        readiness_timeout_seconds: float = 60.0,
        readiness_poll_interval_seconds: float = 0.5,
        port_probe: PortProbe | None = None,
    ):
        """Initialize proxy instance handle.

        Args:
            container: Created proxy container.
            internal_network: Isolated job network shared with updater containers.
            external_network: Egress network reachable only by the proxy.
            network_name: Name of the isolated job network.
            ca_cert_pem: Public CA certificate the proxy presents.
            proxy_port: Proxy listening port.
            readiness_timeout_seconds: Default bounded wait for `proxy_endpoint`.
            readiness_poll_interval_seconds: Delay between readiness probes.
            port_probe: Optional TCP probe override.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when timing values are invalid.
        """

        if readiness_timeout_seconds <= 0:
            raise ValueError("readiness_timeout_seconds must be > 0")
        if readiness_poll_interval_seconds <= 0:
            raise ValueError("readiness_poll_interval_seconds must be > 0")

        self.container = container
        self.internal_network = internal_network
        self.external_network = external_network
        self.network_name = network_name
        self.ca_cert_pem = ca_cert_pem
        self._proxy_port = proxy_port
        self._readiness_timeout_seconds = readiness_timeout_seconds
        self._readiness_poll_interval_seconds = readiness_poll_interval_seconds
        self._port_probe = port_probe or proxy_tcp_probe
        self._shut_down = False

    def __enter__(self) -> ProxyInstance:
        return self

    def __exit__(self, exc_type, exc, traceback) -> None:
        self.shutdown()

    @property
    def container_id(self) -> str:
        return str(self.container.id)

    @property
    def network_id(self) -> str:
        return str(self.internal_network.id)

    @property
    def external_network_name(self) -> str:
        return str(self.external_network.name)

    def proxy_start(self) -> None:
        """Start the created proxy container.

        Raises:
            ProxyContainerError: Raised when the runtime refuses to start the container.
        """

        try:
            self.container.start()
        except docker.errors.APIError as error:
            raise ProxyContainerError(f"proxy container {self.container_id} failed to start: {error}") from error
        logger.info("Started proxy container %s", self.container_id)

    def proxy_endpoint(self, timeout_seconds: float | None = None) -> ProxyEndpoint:
        """Poll until the proxy accepts TCP connections on the job network.

        Args:
            timeout_seconds: Bounded wait; defaults to the configured readiness timeout.

        Returns:
            ProxyEndpoint: Reachable proxy host and port.

        Raises:
            ProxyReadinessError: Raised when the window elapses, the container
                stops, or the runtime cannot report container state.
        """

        wait_seconds = self._readiness_timeout_seconds if timeout_seconds is None else timeout_seconds
        deadline = time.monotonic() + wait_seconds
        while True:
            try:
                self.container.reload()
            except docker.errors.APIError as error:
                raise ProxyReadinessError(f"proxy container state could not be read: {error}") from error

            container_status = str(getattr(self.container, "status", "") or "")
            if container_status in self._STOPPED_STATUSES:
                raise ProxyReadinessError(
                    f"proxy container stopped with status {container_status} before accepting connections"
                )

            proxy_host = self._proxy_network_address()
            if proxy_host and self._port_probe(proxy_host, self._proxy_port, self._PROBE_TIMEOUT_SECONDS):
                logger.info("Proxy is accepting connections at %s:%d", proxy_host, self._proxy_port)
                return ProxyEndpoint(host=proxy_host, port=self._proxy_port)

            remaining_seconds = deadline - time.monotonic()
            if remaining_seconds <= 0:
                raise ProxyReadinessError(
                    f"proxy did not accept connections on port {self._proxy_port} within {wait_seconds:.1f}s"
                )
            time.sleep(min(self._readiness_poll_interval_seconds, remaining_seconds))

    def shutdown(self) -> None:
        """Stop and remove the container, then remove both job networks.

        Every step runs even when an earlier one fails. Resources that are
        already gone count as removed. Repeated calls are no-ops.

        Raises:
            ProxyTeardownError: Raised after all steps when any step failed.
        """

        if self._shut_down:
            return
        self._shut_down = True

        teardown_steps: list[tuple[str, Callable[[], None]]] = [
            ("stop container", lambda: self.container.stop(timeout=self._STOP_TIMEOUT_SECONDS)),
            ("remove container", lambda: self.container.remove(force=True)),
            ("remove internal network", self.internal_network.remove),
            ("remove external network", self.external_network.remove),
        ]
        failures: list[tuple[str, str]] = []
        for step_label, step in teardown_steps:
            try:
                step()
            except docker.errors.NotFound:
                logger.debug("Teardown step '%s' found nothing to remove", step_label)
            except docker.errors.APIError as error:
                logger.warning("Teardown step '%s' failed: %s", step_label, error)
                failures.append((step_label, str(error)))

        if failures:
            failed_steps = ", ".join(step_label for step_label, _ in failures)
            raise ProxyTeardownError(f"proxy teardown incomplete: {failed_steps}", failures=failures)
        logger.info("Proxy for network %s torn down", self.network_name)

    def _proxy_network_address(self) -> str | None:
        """Return the container address on the internal network, once assigned."""

        attributes = getattr(self.container, "attrs", None) or {}
        networks = (attributes.get("NetworkSettings") or {}).get("Networks") or {}
        network_settings = networks.get(self.network_name) or {}
        address = str(network_settings.get("IPAddress") or "").strip()
        return address or None

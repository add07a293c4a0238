"""Proxy builder: CA, isolated job networks and a credential-seeded proxy container."""

from __future__ import annotations

from enum import Enum
import io
import json
import logging
import os
from pathlib import Path
import tarfile
import time
from typing import Any, Callable, Final, Mapping

import docker
import docker.errors
import requests.exceptions

from update_proxy.domain import CredentialSet, JobContext

from .certificate_authority import CertificateAuthority, CertificateAuthorityBuilder
from .proxy_errors import ProxyContainerError, ProxyNetworkError
from .proxy_instance import PortProbe, ProxyInstance

logger = logging.getLogger(__name__)

JOB_ID_LABEL: Final[str] = "update-proxy.job-id"
ROLE_LABEL: Final[str] = "update-proxy.role"


def proxy_container_name(job_id: int) -> str:
    return f"dependabot-job-{job_id}-proxy"


def proxy_network_name(job_id: int, internal: bool) -> str:
    """Return the deterministic network name for a job.

    Args:
        job_id: Job identifier.
        internal: Whether the name is for the isolated network updater containers join.

    Returns:
        str: Job-scoped network name.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    network_kind = "internal" if internal else "external"
    return f"dependabot-job-{job_id}-{network_kind}-network"


class ProxyBuildState(str, Enum):
    """Proxy builder states, in transition order."""

    IDLE = "idle"
    NETWORK_PROVISIONING = "network_provisioning"
    CONTAINER_CREATING = "container_creating"
    CREATED = "created"
    FAILED = "failed"


class ProxyBuilder:
    """Turn job identity, credentials and a proxy image into a created proxy container.

    Credentials and CA key material reach the proxy only as a file written into
    the created container's own filesystem; they are never placed in the
    container environment or on the shared job network.
    """

    PROXY_PORT: Final[int] = 1080
    CONFIG_FILE_PATH: Final[str] = "/"
    CONFIG_FILE_NAME: Final[str] = "config.json"
    CA_CERT_INPUT_PATH: Final[str] = "/usr/local/share/ca-certificates"
    CUSTOM_CA_CERT_NAME: Final[str] = "custom-ca-cert.crt"
    ENTRYPOINT: Final[tuple[str, ...]] = ("sh", "-c", "/usr/sbin/update-ca-certificates && /dependabot-proxy")
    _PASSTHROUGH_PROXY_VARIABLES: Final[tuple[str, ...]] = ("http_proxy", "https_proxy", "no_proxy")

    def __init__(
        self,
        docker_client: docker.DockerClient,
        proxy_image: str,
        cached_mode: bool = False,
        ca_builder: CertificateAuthorityBuilder | None = None,
        custom_ca_path: Path | None = None,
        readiness_timeout_seconds: float = 60.0,
        readiness_poll_interval_seconds: float = 0.5,
        port_probe: PortProbe | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        """Initialize proxy builder.

        Args:
            docker_client: Container runtime client.
            proxy_image: Proxy image reference, already present locally.
            cached_mode: Whether the proxy may cache across jobs and reuse a prior CA.
            ca_builder: Optional CA builder; defaults to one matching `cached_mode`.
            custom_ca_path: Optional extra CA certificate the proxy should trust upstream.
            readiness_timeout_seconds: Bounded wait used by the returned instance.
            readiness_poll_interval_seconds: Readiness probe interval.
            port_probe: Optional TCP probe override for the returned instance.
            environ: Host environment used for proxy variable passthrough.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when required values are missing.
        """

        if docker_client is None:
            raise ValueError("docker_client must not be None")
        if not proxy_image.strip():
            raise ValueError("proxy_image must not be blank")

        self._docker_client = docker_client
        self._proxy_image = proxy_image.strip()
        self._cached_mode = cached_mode
        self._ca_builder = ca_builder or CertificateAuthorityBuilder(cached_mode=cached_mode)
        self._custom_ca_path = custom_ca_path
        self._readiness_timeout_seconds = readiness_timeout_seconds
        self._readiness_poll_interval_seconds = readiness_poll_interval_seconds
        self._port_probe = port_probe
        self._environ = os.environ if environ is None else environ
        self.state = ProxyBuildState.IDLE
        self.state_history: list[ProxyBuildState] = [ProxyBuildState.IDLE]

    def proxy_build(self, job_context: JobContext, credentials: CredentialSet) -> ProxyInstance:
        """Create the job networks and a not-yet-started proxy container.

        Args:
            job_context: Job identity, token, job-control URL and cache mode.
            credentials: Credential set delivered to the proxy only.

        Returns:
            ProxyInstance: Created proxy; the caller starts it and owns teardown.

        Raises:
            CertificateAuthorityError: Raised when CA generation fails.
            ProxyNetworkError: Raised when a job network cannot be created.
            ProxyContainerError: Raised when the container cannot be created or seeded.
        """

        if self.state != ProxyBuildState.IDLE:
            raise RuntimeError(f"proxy builder already used, state={self.state.value}")

        job_id = job_context.job_id
        labels = {JOB_ID_LABEL: str(job_id), ROLE_LABEL: "proxy"}
        created_resources: list[tuple[str, Callable[[], None]]] = []
        try:
            authority = self._ca_builder.ca_generate()

            self._proxy_transition(ProxyBuildState.NETWORK_PROVISIONING)
            external_network_name = proxy_network_name(job_id, internal=False)
            internal_network_name = proxy_network_name(job_id, internal=True)
            external_network = self._proxy_create_network(external_network_name, internal=False, labels=labels)
            created_resources.append((external_network_name, external_network.remove))
            internal_network = self._proxy_create_network(internal_network_name, internal=True, labels=labels)
            created_resources.append((internal_network_name, internal_network.remove))

            self._proxy_transition(ProxyBuildState.CONTAINER_CREATING)
            container = self._proxy_create_container(
                job_context=job_context,
                external_network_name=external_network_name,
                labels=labels,
            )
            created_resources.insert(
                0,
                (proxy_container_name(job_id), lambda: container.remove(force=True)),
            )
            self._proxy_connect_network(internal_network, container)
            self._proxy_store_config(container, authority=authority, credentials=credentials)
            if self._custom_ca_path is not None:
                self._proxy_store_custom_ca(container, self._custom_ca_path)
        except Exception:
            self._proxy_transition(ProxyBuildState.FAILED)
            self._proxy_remove_created(created_resources)
            raise

        self._proxy_transition(ProxyBuildState.CREATED)
        logger.info(
            "Created proxy container %s on network %s with %d credential(s)",
            container.id,
            internal_network_name,
            len(credentials),
        )
        return ProxyInstance(
            container=container,
            internal_network=internal_network,
            external_network=external_network,
            network_name=internal_network_name,
            ca_cert_pem=authority.cert_pem,
            proxy_port=self.PROXY_PORT,
            readiness_timeout_seconds=self._readiness_timeout_seconds,
            readiness_poll_interval_seconds=self._readiness_poll_interval_seconds,
            port_probe=self._port_probe,
        )

    def _proxy_transition(self, state: ProxyBuildState) -> None:
        self.state = state
        self.state_history.append(state)
        logger.debug("Proxy builder state: %s", state.value)

    def _proxy_create_network(self, name: str, internal: bool, labels: dict[str, str]) -> Any:
        """Create one job network, removing a stale same-name network once on conflict.

        Args:
            name: Deterministic network name.
            internal: Whether the network has no external connectivity.
            labels: Job labels.

        Returns:
            Any: Created network handle.

        Raises:
            ProxyNetworkError: Raised when creation fails, or fails again after stale removal.
        """

        try:
            return self._docker_client.networks.create(
                name,
                driver="bridge",
                internal=internal,
                labels=labels,
                check_duplicate=True,
            )
        except docker.errors.APIError as error:
            if error.status_code != 409:
                raise ProxyNetworkError(f"network {name} could not be created: {error}") from error
            logger.warning("Network %s already exists, removing stale network before retrying", name)

        self._proxy_remove_stale_networks(name)
        try:
            return self._docker_client.networks.create(
                name,
                driver="bridge",
                internal=internal,
                labels=labels,
                check_duplicate=True,
            )
        except docker.errors.APIError as error:
            raise ProxyNetworkError(f"network {name} could not be created after stale network removal: {error}") from error

    def _proxy_remove_stale_networks(self, name: str) -> None:
        """Disconnect leftover endpoints and remove every network named exactly `name`.

        Raises:
            ProxyNetworkError: Raised when a stale network cannot be removed.
        """

        try:
            stale_networks = [
                network for network in self._docker_client.networks.list(names=[name]) if network.name == name
            ]
            for stale_network in stale_networks:
                stale_network.reload()
                for attached_container in stale_network.containers:
                    stale_network.disconnect(attached_container, force=True)
                stale_network.remove()
        except docker.errors.APIError as error:
            raise ProxyNetworkError(f"stale network {name} could not be removed: {error}") from error

    def _proxy_create_container(
        self,
        job_context: JobContext,
        external_network_name: str,
        labels: dict[str, str],
    ) -> Any:
        """Create the proxy container attached to the external network.

        A same-name container left by an earlier run of the same job is removed
        once and creation retried.

        Raises:
            ProxyContainerError: Raised when the runtime rejects the container.
        """

        container_name = proxy_container_name(job_context.job_id)
        create_arguments = {
            "name": container_name,
            "entrypoint": list(self.ENTRYPOINT),
            "environment": [
                *self._proxy_passthrough_environment(),
                f"JOB_ID={job_context.job_id}",
                f"JOB_TOKEN={job_context.job_token}",
                f"PROXY_CACHE={'true' if self._cached_mode else 'false'}",
                f"DEPENDABOT_API_URL={job_context.job_control_api_url}",
            ],
            "network": external_network_name,
            "labels": labels,
        }
        try:
            return self._docker_client.containers.create(self._proxy_image, **create_arguments)
        except docker.errors.APIError as error:
            if error.status_code != 409:
                raise ProxyContainerError(
                    f"proxy container could not be created from {self._proxy_image}: {error}"
                ) from error
            logger.warning("Container %s already exists, removing stale container before retrying", container_name)

        self._proxy_remove_stale_container(container_name, job_id=job_context.job_id)
        try:
            return self._docker_client.containers.create(self._proxy_image, **create_arguments)
        except docker.errors.APIError as error:
            raise ProxyContainerError(
                f"proxy container could not be created after stale container removal: {error}"
            ) from error

    def _proxy_remove_stale_container(self, name: str, job_id: int) -> None:
        """Force-remove a leftover proxy container that carries this job's label.

        Raises:
            ProxyContainerError: Raised when the container belongs to another job or cannot be removed.
        """

        try:
            stale_container = self._docker_client.containers.get(name)
            stale_labels = getattr(stale_container, "labels", None) or {}
            if stale_labels.get(JOB_ID_LABEL) != str(job_id):
                raise ProxyContainerError(f"container {name} exists but is not labelled for job {job_id}")
            stale_container.remove(force=True)
        except docker.errors.NotFound:
            logger.info("Stale container %s disappeared before removal", name)
        except docker.errors.APIError as error:
            raise ProxyContainerError(f"stale container {name} could not be removed: {error}") from error

    def _proxy_connect_network(self, internal_network: Any, container: Any) -> None:
        try:
            internal_network.connect(container)
        except docker.errors.APIError as error:
            raise ProxyContainerError(f"proxy container could not join {internal_network.name}: {error}") from error

    def _proxy_passthrough_environment(self) -> list[str]:
        """Forward host proxy settings so the proxy itself can reach upstream."""

        passthrough: list[str] = []
        for variable_name in self._PASSTHROUGH_PROXY_VARIABLES:
            value = self._environ.get(variable_name) or self._environ.get(variable_name.upper()) or ""
            passthrough.append(f"{variable_name}={value}")
        return passthrough

    def _proxy_store_config(
        self,
        container: Any,
        authority: CertificateAuthority,
        credentials: CredentialSet,
    ) -> None:
        """Write credentials and CA keypair into the proxy container's filesystem.

        Raises:
            ProxyContainerError: Raised when the runtime rejects the archive.
        """

        config_payload = {
            "all_credentials": credentials.credential_set_proxy_payload(),
            "ca": {"cert": authority.cert_pem, "key": authority.key_pem},
        }
        self._proxy_put_file(
            container,
            directory=self.CONFIG_FILE_PATH,
            file_name=self.CONFIG_FILE_NAME,
            content=json.dumps(config_payload).encode("utf-8"),
        )

    def _proxy_store_custom_ca(self, container: Any, custom_ca_path: Path) -> None:
        try:
            certificate_bytes = custom_ca_path.read_bytes()
        except OSError as error:
            raise ProxyContainerError(f"custom CA certificate {custom_ca_path} could not be read: {error}") from error
        self._proxy_put_file(
            container,
            directory=self.CA_CERT_INPUT_PATH,
            file_name=self.CUSTOM_CA_CERT_NAME,
            content=certificate_bytes,
        )

    def _proxy_put_file(self, container: Any, directory: str, file_name: str, content: bytes) -> None:
        """Copy one file into a created container as a single-entry tar archive.

        Raises:
            ProxyContainerError: Raised when the copy fails.
        """

        archive_buffer = io.BytesIO()
        with tarfile.open(fileobj=archive_buffer, mode="w") as archive:
            file_info = tarfile.TarInfo(name=file_name)
            file_info.size = len(content)
            file_info.mode = 0o644
            file_info.mtime = int(time.time())
            archive.addfile(file_info, io.BytesIO(content))

        try:
            stored = container.put_archive(directory, archive_buffer.getvalue())
        except docker.errors.APIError as error:
            raise ProxyContainerError(f"{file_name} could not be written to the proxy container: {error}") from error
        if stored is False:
            raise ProxyContainerError(f"{file_name} could not be written to the proxy container")

    def _proxy_remove_created(self, created_resources: list[tuple[str, Callable[[], None]]]) -> None:
        """Remove resources created by a failed build, container first.

        Removal failures are logged; the original build error is the one raised.
        Leftovers stay identifiable by name for `proxy_cleanup_job_resources`.
        """

        for resource_name, remove_resource in created_resources:
            try:
                remove_resource()
            except (docker.errors.APIError, requests.exceptions.RequestException) as error:
                logger.warning("Could not remove %s after failed proxy build: %s", resource_name, error)

"""Crash cleanup for proxy resources identified only by job id."""

from __future__ import annotations

import logging

import docker
import docker.errors

from .proxy_builder import proxy_container_name, proxy_network_name
from .proxy_errors import ProxyTeardownError

logger = logging.getLogger(__name__)


def proxy_cleanup_job_resources(docker_client: docker.DockerClient, job_id: int) -> list[str]:
    """Remove the proxy container and both job networks left behind by a job.

    Names are derived from the job id alone, so this works after the process
    that built the proxy has crashed. Missing resources are skipped.

    Args:
        docker_client: Container runtime client.
        job_id: Job identifier.

    Returns:
        list[str]: Names of resources that were removed.

    Raises:
        ProxyTeardownError: Raised after all steps when any removal failed.
    """

    removed_names: list[str] = []
    failures: list[tuple[str, str]] = []

    container_name = proxy_container_name(job_id)
    try:
        docker_client.containers.get(container_name).remove(force=True)
        removed_names.append(container_name)
    except docker.errors.NotFound:
        logger.debug("No proxy container %s to remove", container_name)
    except docker.errors.APIError as error:
        failures.append((container_name, str(error)))

    for internal in (True, False):
        network_name = proxy_network_name(job_id, internal=internal)
        try:
            matching_networks = [
                network for network in docker_client.networks.list(names=[network_name]) if network.name == network_name
            ]
            for network in matching_networks:
                network.remove()
            if matching_networks:
                removed_names.append(network_name)
        except docker.errors.NotFound:
            logger.debug("Network %s disappeared during cleanup", network_name)
        except docker.errors.APIError as error:
            failures.append((network_name, str(error)))

    if failures:
        failed_names = ", ".join(name for name, _ in failures)
        raise ProxyTeardownError(f"cleanup for job {job_id} incomplete: {failed_names}", failures=failures)

    logger.info("Cleanup for job %s removed: %s", job_id, ", ".join(removed_names) or "nothing")
    return removed_names

"""Application bootstrap wiring for startup validation and dependency assembly."""

from __future__ import annotations

from datetime import timedelta

import docker

from update_proxy.adapters import ImageAcquirer, JobControlClient
from update_proxy.config import RunnerSettings, config_load_settings
from update_proxy.domain import JobParameters
from update_proxy.jobs import UpdateJobOrchestrator, UpdateJobOrchestratorConfig
from update_proxy.proxy import CertificateAuthorityBuilder, ProxyBuilder


def bootstrap_create_docker_client(settings: RunnerSettings) -> docker.DockerClient:
    """Build the container runtime client from the process environment.

    Args:
        settings: Validated runtime settings.

    Returns:
        docker.DockerClient: Client bound to the local container runtime.

    Raises:
        docker.errors.DockerException: Raised when the runtime is unreachable.
    """

    return docker.from_env(timeout=int(settings.docker_timeout_seconds))


def bootstrap_build_job_parameters(settings: RunnerSettings) -> JobParameters | None:
    """Return remote job parameters, or None when no job id is configured.

    Missing tokens are carried as empty strings so the orchestrator can fail
    the job locally with a precise message.
    """

    if settings.job_id is None:
        return None
    return JobParameters(
        job_id=settings.job_id,
        job_token=settings.job_token or "",
        credentials_token=settings.credentials_token or "",
        job_control_api_url=settings.job_control_api_url or "",
    )


def bootstrap_create_update_orchestrator(
    settings: RunnerSettings | None = None,
    docker_client: docker.DockerClient | None = None,
) -> UpdateJobOrchestrator:
    """Build the update-job orchestrator with all runtime adapters.

    Args:
        settings: Optional pre-loaded settings; loaded from the environment when omitted.
        docker_client: Optional container runtime client; built from the environment when omitted.

    Returns:
        UpdateJobOrchestrator: Fully wired orchestrator instance.

    Raises:
        SettingsLoadError: Raised when startup configuration validation fails.
        docker.errors.DockerException: Raised when the container runtime is unreachable.
    """

    resolved_settings = settings or config_load_settings()
    resolved_docker_client = docker_client or bootstrap_create_docker_client(resolved_settings)

    def _job_control_client_factory(parameters: JobParameters) -> JobControlClient:
        return JobControlClient(
            parameters=parameters,
            connect_timeout_seconds=resolved_settings.http_connect_timeout_seconds,
            read_timeout_seconds=resolved_settings.http_read_timeout_seconds,
        )

    def _image_acquirer_factory(cached_mode: bool) -> ImageAcquirer:
        return ImageAcquirer(
            docker_client=resolved_docker_client,
            cached_mode=cached_mode,
            retry_attempts=resolved_settings.image_pull_retry_attempts,
            retry_delay_seconds=resolved_settings.image_pull_retry_delay_seconds,
        )

    def _proxy_builder_factory(cached_mode: bool) -> ProxyBuilder:
        return ProxyBuilder(
            docker_client=resolved_docker_client,
            proxy_image=resolved_settings.proxy_image,
            cached_mode=cached_mode,
            ca_builder=CertificateAuthorityBuilder(
                cached_mode=cached_mode,
                validity=timedelta(hours=resolved_settings.ca_validity_hours),
                minimum_remaining=timedelta(hours=resolved_settings.ca_minimum_remaining_hours),
            ),
            custom_ca_path=resolved_settings.custom_ca_path,
            readiness_timeout_seconds=resolved_settings.proxy_readiness_timeout_seconds,
            readiness_poll_interval_seconds=resolved_settings.proxy_readiness_poll_interval_seconds,
        )

    return UpdateJobOrchestrator(
        config=UpdateJobOrchestratorConfig(
            proxy_image=resolved_settings.proxy_image,
            working_directory=resolved_settings.working_directory,
            trust_store_password=resolved_settings.trust_store_password,
            output_env_file=resolved_settings.output_env_file,
            state_file=resolved_settings.state_file,
            github_server_url=resolved_settings.github_server_url,
            github_repository=resolved_settings.github_repository,
        ),
        job_parameters=bootstrap_build_job_parameters(resolved_settings),
        job_control_client_factory=_job_control_client_factory,
        image_acquirer_factory=_image_acquirer_factory,
        proxy_builder_factory=_proxy_builder_factory,
        local_credentials=resolved_settings.local_credentials,
    )

"""Job-layer orchestrator for one update job: job control, image, proxy and outputs."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from pathlib import Path
import traceback
from typing import Callable

import docker.errors

from update_proxy.adapters import (
    ImageAcquirerPort,
    ImageAcquisitionError,
    JobControlError,
    JobControlPort,
)
from update_proxy.domain import (
    CredentialSet,
    JobContext,
    JobErrorType,
    JobOutcome,
    JobParameters,
    credential_set_parse,
    domain_build_job_diagnostics_url,
    domain_build_stage_event,
)
from update_proxy.logging_config import logging_register_secret
from update_proxy.proxy import ProxyContainerError, ProxyInstance, ProxyTeardownError

from .interfaces import JobExecutionResult, JobOrchestratorPort, ProxyBuilderPort, ProxyOutputs
from .outputs import job_write_proxy_outputs

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpdateJobOrchestratorConfig:
    """Configuration values for update-job orchestration.

    Attributes:
        proxy_image: Proxy image reference.
        working_directory: Directory receiving CA and trust-store files.
        trust_store_password: Trust-store password.
        output_env_file: Optional env-style output file.
        state_file: Optional proxy state file for later cleanup.
        github_server_url: Server URL for job diagnostics links.
        github_repository: Repository slug for job diagnostics links.
        local_job_id: Job id used in local override mode.
    """

    proxy_image: str
    working_directory: Path = Path(".")
    trust_store_password: str = "changeit"
    output_env_file: Path | None = None
    state_file: Path | None = None
    github_server_url: str | None = None
    github_repository: str | None = None
    local_job_id: int = 0


class UpdateJobOrchestrator(JobOrchestratorPort):
    """Concrete orchestrator for the update-job proxy workflow.

    Failures before credentials are fetched fail the local process only: the
    job may never have been confirmed as processing, so nothing is reported.
    Once credentials are known, every failure goes through one
    report-then-finalize path so the job-control service gets a terminal status.
    """

    _JOB_NAME = "update_job_proxy"

    def __init__(
        self,
        config: UpdateJobOrchestratorConfig,
        job_parameters: JobParameters | None,
        job_control_client_factory: Callable[[JobParameters], JobControlPort],
        image_acquirer_factory: Callable[[bool], ImageAcquirerPort],
        proxy_builder_factory: Callable[[bool], ProxyBuilderPort],
        local_credentials: str | None = None,
    ):
        """Initialize update-job orchestrator dependencies.

        Args:
            config: Orchestration configuration.
            job_parameters: Remote job parameters, or None for local override / no-op runs.
            job_control_client_factory: Builds the job-control client from validated parameters.
            image_acquirer_factory: Builds an image acquirer for the resolved cache mode.
            proxy_builder_factory: Builds a proxy builder for the resolved cache mode.
            local_credentials: JSON credential list used when no job parameters are given.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when dependencies or config values are invalid.
        """

        if job_control_client_factory is None:
            raise ValueError("job_control_client_factory must not be None")
        if image_acquirer_factory is None:
            raise ValueError("image_acquirer_factory must not be None")
        if proxy_builder_factory is None:
            raise ValueError("proxy_builder_factory must not be None")
        if not config.proxy_image.strip():
            raise ValueError("config.proxy_image must not be blank")
        if not config.trust_store_password:
            raise ValueError("config.trust_store_password must not be blank")

        self._config = config
        self._job_parameters = job_parameters
        self._job_control_client_factory = job_control_client_factory
        self._image_acquirer_factory = image_acquirer_factory
        self._proxy_builder_factory = proxy_builder_factory
        self._local_credentials = local_credentials
        self._job_control_client: JobControlPort | None = None
        self._job_context: JobContext | None = None
        self._terminal_reported = False

    @property
    def job_context(self) -> JobContext | None:
        return self._job_context

    def job_supported_names(self) -> tuple[str, ...]:
        """Return supported job names.

        Returns:
            tuple[str, ...]: Supported job names.

        Raises:
            RuntimeError: This implementation does not raise runtime errors.
        """

        return (self._JOB_NAME,)

    def job_execute(self, job_name: str = _JOB_NAME) -> JobExecutionResult:
        """Run the job up to a started, reachable proxy with published outputs.

        Args:
            job_name: Name of job to execute.

        Returns:
            JobExecutionResult: Final execution status payload. On success the
                running proxy is included and the caller owns its teardown.

        Raises:
            ValueError: Raised when job name is unsupported.
        """

        normalized_job_name = job_name.strip()
        if normalized_job_name != self._JOB_NAME:
            raise ValueError(f"unsupported job_name={normalized_job_name}")

        timeline: list[dict[str, object]] = [domain_build_stage_event(stage="run", status="started")]

        if self._job_parameters is None and self._local_credentials is None:
            logger.info("finished: nothing to do")
            timeline.append(domain_build_stage_event(stage="run", status="skipped"))
            return JobExecutionResult(
                job_name=normalized_job_name,
                status="skipped",
                outcome=JobOutcome.not_applicable(),
                message="nothing to do",
                timeline=timeline,
            )

        timeline.append(domain_build_stage_event(stage="job_control", status="started"))
        if self._job_parameters is None:
            resolved = self._job_resolve_local_mode(timeline=timeline, job_name=normalized_job_name)
        else:
            resolved = self._job_resolve_remote_mode(
                parameters=self._job_parameters,
                timeline=timeline,
                job_name=normalized_job_name,
            )
        if isinstance(resolved, JobExecutionResult):
            return resolved

        job_context, credentials = resolved
        self._job_context = job_context
        timeline.append(
            domain_build_stage_event(
                stage="job_control",
                status="completed",
                details={"cached_mode": job_context.cached_mode, "credential_count": len(credentials)},
            )
        )

        proxy: ProxyInstance | None = None
        try:
            timeline.append(domain_build_stage_event(stage="image", status="started"))
            pull_result = self._image_acquirer_factory(job_context.cached_mode).image_pull(self._config.proxy_image)
            timeline.append(
                domain_build_stage_event(
                    stage="image",
                    status="completed",
                    details={"image_id": pull_result.image_id, "pulled": pull_result.pulled},
                )
            )

            timeline.append(domain_build_stage_event(stage="proxy", status="started"))
            proxy = self._proxy_builder_factory(job_context.cached_mode).proxy_build(job_context, credentials)
            proxy.proxy_start()
            endpoint = proxy.proxy_endpoint()
            timeline.append(
                domain_build_stage_event(
                    stage="proxy",
                    status="completed",
                    details={
                        "container_id": proxy.container_id,
                        "network_name": proxy.network_name,
                        "endpoint": endpoint.url,
                    },
                )
            )

            timeline.append(domain_build_stage_event(stage="outputs", status="started"))
            outputs = job_write_proxy_outputs(
                proxy=proxy,
                endpoint=endpoint,
                working_directory=self._config.working_directory,
                trust_store_password=self._config.trust_store_password,
                output_env_file=self._config.output_env_file,
                state_file=self._config.state_file,
            )
            timeline.append(domain_build_stage_event(stage="outputs", status="completed"))
        except Exception as error:  # every failure after credential retrieval is reported
            timeline.append(
                domain_build_stage_event(
                    stage="run",
                    status="failed",
                    details={
                        "error_type": type(error).__name__,
                        "error_message": str(error),
                        "traceback": traceback.format_exc(),
                    },
                )
            )
            if proxy is not None:
                self._job_teardown_proxy(proxy, timeline=timeline)
            return self._job_fail_reported(
                error_type=self._job_error_type_for_exception(error),
                message=self._job_failure_message_for_stage(timeline),
                error=error,
                timeline=timeline,
                job_name=normalized_job_name,
            )

        timeline.append(domain_build_stage_event(stage="run", status="success"))
        logger.info("Proxy ready at %s:%d on network %s", outputs.proxy_host, outputs.proxy_port, outputs.network_name)
        return JobExecutionResult(
            job_name=normalized_job_name,
            status="success",
            outcome=JobOutcome.processed_success(),
            message="proxy ready",
            outputs=outputs,
            proxy=proxy,
            timeline=timeline,
        )

    def job_record_update_run_failure(self, detail: str) -> JobOutcome:
        """Report a downstream update-run failure through the report-then-finalize path.

        Args:
            detail: Failure detail from the update run.

        Returns:
            JobOutcome: Reported failure outcome.

        Raises:
            RuntimeError: Raised when the job never reached credential retrieval,
                or already has a terminal status.
        """

        self._job_require_terminal_allowed()
        self._job_report_and_finalize(error_type=JobErrorType.UPDATE_RUN, detail=detail, timeline=[])
        return JobOutcome.processed_with_error(JobErrorType.UPDATE_RUN, detail)

    def job_mark_processed(self) -> JobOutcome:
        """Finalize a job whose downstream update run succeeded.

        Returns:
            JobOutcome: Success outcome.

        Raises:
            RuntimeError: Raised when the job never reached credential retrieval,
                or already has a terminal status.
            JobControlError: Raised when the finalize call fails.
        """

        self._job_require_terminal_allowed()
        self._terminal_reported = True
        if self._job_control_client is not None:
            try:
                self._job_control_client.job_control_mark_job_processed()
            finally:
                self._job_close_client()
        return JobOutcome.processed_success()

    def _job_resolve_remote_mode(
        self,
        parameters: JobParameters,
        timeline: list[dict[str, object]],
        job_name: str,
    ) -> tuple[JobContext, CredentialSet] | JobExecutionResult:
        """Fetch job details and credentials; failures here are never reported remotely.

        Returns:
            tuple[JobContext, CredentialSet] | JobExecutionResult: Resolved job, or
                the unreported failure result.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        if not parameters.job_token.strip():
            return self._job_fail_unreported("job token is not set", None, timeline, job_name)
        if not parameters.credentials_token.strip():
            return self._job_fail_unreported("credentials token is not set", None, timeline, job_name)

        logging_register_secret(parameters.job_token)
        logging_register_secret(parameters.credentials_token)
        diagnostics_url = domain_build_job_diagnostics_url(
            job_id=parameters.job_id,
            server_url=self._config.github_server_url,
            repository=self._config.github_repository,
        )

        client: JobControlPort | None = None
        try:
            client = self._job_control_client_factory(parameters)
            logger.info("Fetching job details")
            details = client.job_control_fetch_job_details()
            logger.info("Fetching job credentials")
            credentials = client.job_control_fetch_credentials()
        except (JobControlError, ValueError) as error:
            if client is not None:
                client.job_control_close()
            return self._job_fail_unreported(
                "job control service could not provide the job",
                error,
                timeline,
                job_name,
                diagnostics_url=diagnostics_url,
            )

        for secret in credentials.credential_set_secret_values():
            logging_register_secret(secret)
        self._job_control_client = client
        job_context = JobContext(
            job_id=parameters.job_id,
            job_token=parameters.job_token,
            job_control_api_url=parameters.job_control_api_url,
            cached_mode=details.details_cached_mode(),
            diagnostics_url=diagnostics_url,
            experiments=dict(details.experiments),
        )
        return job_context, credentials

    def _job_resolve_local_mode(
        self,
        timeline: list[dict[str, object]],
        job_name: str,
    ) -> tuple[JobContext, CredentialSet] | JobExecutionResult:
        """Build the job from the local credential override, always in cached mode."""

        try:
            credentials = credential_set_parse(json.loads(self._local_credentials or "[]"))
        except ValueError as error:
            # json and pydantic errors may echo secret input.
            return self._job_fail_unreported(
                f"local credentials are invalid ({type(error).__name__})",
                None,
                timeline,
                job_name,
            )

        for secret in credentials.credential_set_secret_values():
            logging_register_secret(secret)
        job_context = JobContext(
            job_id=self._config.local_job_id,
            job_token="",
            job_control_api_url="",
            cached_mode=True,
        )
        return job_context, credentials

    def _job_fail_unreported(
        self,
        message: str,
        error: Exception | None,
        timeline: list[dict[str, object]],
        job_name: str,
        diagnostics_url: str | None = None,
    ) -> JobExecutionResult:
        """Fail locally without contacting the job-control service."""

        full_message = self._job_compose_message(message, error, diagnostics_url)
        logger.error("finished: %s", full_message)
        timeline.append(
            domain_build_stage_event(
                stage="job_control",
                status="failed",
                details={"error_type": type(error).__name__ if error is not None else None, "error_message": message},
            )
        )
        timeline.append(domain_build_stage_event(stage="run", status="failed"))
        return JobExecutionResult(
            job_name=job_name,
            status="failed",
            outcome=JobOutcome.failed_unreported(full_message),
            message=full_message,
            timeline=timeline,
        )

    def _job_fail_reported(
        self,
        error_type: JobErrorType,
        message: str,
        error: Exception,
        timeline: list[dict[str, object]],
        job_name: str,
    ) -> JobExecutionResult:
        """Report the failure, finalize the job, and fail locally."""

        detail = str(error) or type(error).__name__
        self._job_report_and_finalize(error_type=error_type, detail=detail, timeline=timeline)
        diagnostics_url = self._job_context.diagnostics_url if self._job_context is not None else None
        full_message = self._job_compose_message(message, error, diagnostics_url)
        logger.error("finished: %s", full_message)
        return JobExecutionResult(
            job_name=job_name,
            status="failed",
            outcome=JobOutcome.processed_with_error(error_type, detail),
            message=full_message,
            timeline=timeline,
        )

    def _job_report_and_finalize(
        self,
        error_type: JobErrorType,
        detail: str,
        timeline: list[dict[str, object]],
    ) -> None:
        """Send the error report, then the finalize call, each attempted exactly once.

        A failed report does not skip finalization; the service must still
        receive a terminal status.
        """

        self._terminal_reported = True
        if self._job_control_client is None:
            return

        report_status = "completed"
        try:
            self._job_control_client.job_control_report_job_error(error_type, detail)
        except JobControlError as report_error:
            report_status = "failed"
            logger.error("Could not report job error: %s", report_error)
        try:
            self._job_control_client.job_control_mark_job_processed()
        except JobControlError as finalize_error:
            report_status = "failed"
            logger.error("Could not mark job as processed: %s", finalize_error)
        self._job_close_client()

        timeline.append(
            domain_build_stage_event(
                stage="report",
                status=report_status,
                details={"error_type": error_type.value},
            )
        )
        if report_status == "completed":
            logger.info("finished: error reported to job control service")

    def _job_close_client(self) -> None:
        """Release the job-control client once no further lifecycle call is allowed."""

        if self._job_control_client is not None:
            self._job_control_client.job_control_close()

    def _job_require_terminal_allowed(self) -> None:
        if self._job_context is None:
            raise RuntimeError("job has not reached credential retrieval")
        if self._terminal_reported:
            raise RuntimeError("job already has a terminal status")

    def _job_teardown_proxy(self, proxy: ProxyInstance, timeline: list[dict[str, object]]) -> None:
        try:
            proxy.shutdown()
        except ProxyTeardownError as teardown_error:
            logger.warning("Proxy teardown after failure was incomplete: %s", teardown_error)
            timeline.append(
                domain_build_stage_event(
                    stage="teardown",
                    status="failed",
                    details={"failures": [step for step, _ in teardown_error.failures]},
                )
            )
            return
        timeline.append(domain_build_stage_event(stage="teardown", status="completed"))

    def _job_error_type_for_exception(self, error: Exception) -> JobErrorType:
        """Map a post-credential failure to the reported error category.

        Args:
            error: Caught workflow exception.

        Returns:
            JobErrorType: Reported category.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        if isinstance(error, ImageAcquisitionError):
            return JobErrorType.IMAGE
        if isinstance(error, ProxyContainerError) and isinstance(error.__cause__, docker.errors.ImageNotFound):
            return JobErrorType.IMAGE
        return JobErrorType.UNKNOWN

    def _job_failure_message_for_stage(self, timeline: list[dict[str, object]]) -> str:
        """Return the summary message for the last stage that started."""

        started_stages = [str(event["stage"]) for event in timeline if event.get("status") == "started"]
        last_stage = started_stages[-1] if started_stages else "run"
        if last_stage == "image":
            return "Error fetching updater images"
        if last_stage == "proxy":
            return "Error starting the update proxy"
        return "Dependabot encountered an unexpected problem"

    def _job_compose_message(
        self,
        message: str,
        error: Exception | None,
        diagnostics_url: str | None,
    ) -> str:
        parts = [message]
        if error is not None:
            parts.append(f"{type(error).__name__}: {error}")
        if diagnostics_url:
            parts.append(
                f"For more information see: {diagnostics_url} (write access to the repository is required to view the log)"
            )
        return "\n\n".join(parts)

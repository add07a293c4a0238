"""Regression tests for update-job orchestration and report-then-finalize failure handling."""

from __future__ import annotations

from pathlib import Path

import docker.errors
import pytest

from update_proxy.adapters import (
    ImageNotFoundError,
    ImagePullResult,
    JobControlUnauthorizedError,
    JobControlUnreachableError,
)
from update_proxy.domain import (
    JobDetails,
    JobErrorType,
    JobOutcomeState,
    JobParameters,
    credential_set_parse,
    domain_timeline_stage_statuses,
)
from update_proxy.jobs import UpdateJobOrchestrator, UpdateJobOrchestratorConfig
import update_proxy.jobs.update_orchestrator as update_orchestrator_module
from update_proxy.proxy import (
    CertificateAuthorityBuilder,
    CertificateAuthorityError,
    ProxyContainerError,
    ProxyEndpoint,
    ProxyNetworkError,
    ProxyReadinessError,
)

_CREDENTIALS_PAYLOAD = [
    {"type": "git_source", "host": "github.com", "username": "x-access-token", "password": "git-secret-value"}
]


@pytest.fixture(scope="module")
def ca_cert_pem() -> str:
    return CertificateAuthorityBuilder().ca_generate().cert_pem


class _JobControlStub:
    """Job-control stub that records lifecycle calls in order.

    Attributes:
        calls: Ordered lifecycle call log.
    """

    def __init__(
        self,
        experiments: dict[str, object] | None = None,
        details_error: Exception | None = None,
        credentials_error: Exception | None = None,
    ):
        """Initialize job-control stub state.

        Args:
            experiments: Experiments returned with job details.
            details_error: Optional error raised by details retrieval.
            credentials_error: Optional error raised by credentials retrieval.

        Returns:
            None: Initializer does not return values.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.experiments = experiments or {}
        self.details_error = details_error
        self.credentials_error = credentials_error
        self.closed = False
        self.report_error: Exception | None = None
        self.calls: list[tuple[str, object]] = []

    def job_control_fetch_job_details(self) -> JobDetails:
        self.calls.append(("details", None))
        if self.details_error is not None:
            raise self.details_error
        return JobDetails(job_id=42, experiments=self.experiments, raw={})

    def job_control_fetch_credentials(self):
        self.calls.append(("credentials", None))
        if self.credentials_error is not None:
            raise self.credentials_error
        return credential_set_parse(_CREDENTIALS_PAYLOAD)

    def job_control_report_job_error(self, error_type: JobErrorType, detail: str) -> None:
        self.calls.append(("report", error_type))
        if self.report_error is not None:
            raise self.report_error

    def job_control_mark_job_processed(self) -> None:
        self.calls.append(("mark_processed", None))

    def job_control_close(self) -> None:
        self.closed = True


class _ImageAcquirerStub:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.pulled: list[str] = []

    def image_pull(self, image_reference: str) -> ImagePullResult:
        self.pulled.append(image_reference)
        if self.error is not None:
            raise self.error
        return ImagePullResult(image_reference=image_reference, image_id="sha256:proxy", pulled=True, attempts=1)


class _ProxyInstanceStub:
    """Proxy handle stub with scripted readiness."""

    def __init__(self, ca_cert_pem: str, readiness_error: Exception | None = None):
        self.ca_cert_pem = ca_cert_pem
        self.readiness_error = readiness_error
        self.container_id = "container-1"
        self.network_name = "dependabot-job-42-internal-network"
        self.external_network_name = "dependabot-job-42-external-network"
        self.calls: list[str] = []

    def proxy_start(self) -> None:
        self.calls.append("start")

    def proxy_endpoint(self) -> ProxyEndpoint:
        self.calls.append("endpoint")
        if self.readiness_error is not None:
            raise self.readiness_error
        return ProxyEndpoint(host="172.30.0.2", port=1080)

    def shutdown(self) -> None:
        self.calls.append("shutdown")


class _ProxyBuilderStub:
    def __init__(self, instance: _ProxyInstanceStub | None = None, error: Exception | None = None):
        self.instance = instance
        self.error = error
        self.build_calls: list[tuple[object, object]] = []

    def proxy_build(self, job_context, credentials):
        self.build_calls.append((job_context, credentials))
        if self.error is not None:
            raise self.error
        return self.instance


class _Harness:
    """Wires an orchestrator to stubs and records factory calls."""

    def __init__(
        self,
        tmp_path: Path,
        ca_cert_pem: str,
        job_control: _JobControlStub | None = None,
        image_acquirer: _ImageAcquirerStub | None = None,
        proxy_builder: _ProxyBuilderStub | None = None,
        job_parameters: JobParameters | None = None,
        local_credentials: str | None = None,
        use_remote: bool = True,
    ):
        """Initialize harness state.

        Args:
            tmp_path: Working directory for outputs.
            ca_cert_pem: Public CA certificate carried by the proxy stub.
            job_control: Optional job-control stub.
            image_acquirer: Optional image acquirer stub.
            proxy_builder: Optional proxy builder stub.
            job_parameters: Optional explicit job parameters.
            local_credentials: Optional local credential override.
            use_remote: Whether default remote job parameters are used.

        Returns:
            None: Initializer does not return values.

        Raises:
            RuntimeError: This harness does not raise runtime errors.
        """

        self.job_control = job_control or _JobControlStub()
        self.image_acquirer = image_acquirer or _ImageAcquirerStub()
        self.proxy_instance = _ProxyInstanceStub(ca_cert_pem)
        self.proxy_builder = proxy_builder or _ProxyBuilderStub(instance=self.proxy_instance)
        self.cached_modes: list[bool] = []
        self.client_parameters: list[JobParameters] = []
        if job_parameters is None and use_remote:
            job_parameters = JobParameters(
                job_id=42,
                job_token="job-token-value",
                credentials_token="credentials-token-value",
                job_control_api_url="https://job-control.example.test/api",
            )
        self.output_env_file = tmp_path / "outputs.env"
        self.orchestrator = UpdateJobOrchestrator(
            config=UpdateJobOrchestratorConfig(
                proxy_image="ghcr.io/example/update-proxy:latest",
                working_directory=tmp_path / "work",
                output_env_file=self.output_env_file,
                state_file=tmp_path / "proxy-state.json",
                github_server_url="https://github.example.test",
                github_repository="acme/widgets",
            ),
            job_parameters=job_parameters,
            job_control_client_factory=self._client_factory,
            image_acquirer_factory=self._image_factory,
            proxy_builder_factory=self._builder_factory,
            local_credentials=local_credentials,
        )

    def _client_factory(self, parameters: JobParameters) -> _JobControlStub:
        self.client_parameters.append(parameters)
        return self.job_control

    def _image_factory(self, cached_mode: bool) -> _ImageAcquirerStub:
        self.cached_modes.append(cached_mode)
        return self.image_acquirer

    def _builder_factory(self, cached_mode: bool) -> _ProxyBuilderStub:
        self.cached_modes.append(cached_mode)
        return self.proxy_builder


def test_jobs_update_success_publishes_outputs_without_finalizing(tmp_path: Path, ca_cert_pem: str) -> None:
    """Run the happy path and leave finalization to the downstream update run.

    Args:
        tmp_path: Pytest temporary directory.
        ca_cert_pem: Generated CA certificate.

    Returns:
        None: Assertions validate outputs, lifecycle calls and timeline.

    Raises:
        AssertionError: Raised when the happy path is incorrect.
    """

    harness = _Harness(tmp_path, ca_cert_pem, job_control=_JobControlStub(experiments={"proxy-cached": True}))

    result = harness.orchestrator.job_execute("update_job_proxy")

    assert result.status == "success"
    assert result.outcome.state == JobOutcomeState.PROCESSED_SUCCESS
    assert harness.job_control.calls == [("details", None), ("credentials", None)]
    assert harness.cached_modes == [True, True]
    assert harness.proxy_instance.calls == ["start", "endpoint"]
    assert result.proxy is harness.proxy_instance
    assert result.outputs is not None
    assert result.outputs.proxy_host == "172.30.0.2"
    assert (tmp_path / "work" / "cert.pem").read_text(encoding="ascii") == ca_cert_pem
    assert (tmp_path / "work" / "keystore.p12").stat().st_size > 0
    env_lines = harness.output_env_file.read_text(encoding="utf-8").splitlines()
    assert "PROXY_HOST=172.30.0.2" in env_lines
    assert "PROXY_NETWORK_NAME=dependabot-job-42-internal-network" in env_lines
    assert domain_timeline_stage_statuses(result.timeline, "run") == ["started", "success"]


def test_jobs_update_image_failure_reports_then_finalizes(tmp_path: Path, ca_cert_pem: str) -> None:
    """Report an image failure, then mark the job processed, then fail locally.

    Args:
        tmp_path: Pytest temporary directory.
        ca_cert_pem: Generated CA certificate.

    Returns:
        None: Assertions validate call order, outcome and message.

    Raises:
        AssertionError: Raised when report-then-finalize order is broken.
    """

    harness = _Harness(
        tmp_path,
        ca_cert_pem,
        image_acquirer=_ImageAcquirerStub(
            error=ImageNotFoundError("manifest unknown", image_reference="ghcr.io/example/update-proxy:latest")
        ),
    )

    result = harness.orchestrator.job_execute()

    assert result.status == "failed"
    assert result.outcome.state == JobOutcomeState.PROCESSED_WITH_ERROR
    assert result.outcome.error_type == JobErrorType.IMAGE
    assert harness.job_control.calls[-2:] == [("report", JobErrorType.IMAGE), ("mark_processed", None)]
    assert harness.proxy_builder.build_calls == []
    assert harness.job_control.closed is True
    assert "Error fetching updater images" in result.message
    assert "https://github.example.test/acme/widgets/network/updates/42" in result.message


def test_jobs_update_details_failure_is_not_reported(tmp_path: Path, ca_cert_pem: str) -> None:
    """Fail locally without remote calls when job details cannot be fetched.

    Args:
        tmp_path: Pytest temporary directory.
        ca_cert_pem: Generated CA certificate.

    Returns:
        None: Assertions validate the unreported failure path.

    Raises:
        AssertionError: Raised when a report is sent for an unconfirmed job.
    """

    harness = _Harness(
        tmp_path,
        ca_cert_pem,
        job_control=_JobControlStub(details_error=JobControlUnreachableError("HTTP 503", status_code=503)),
    )

    result = harness.orchestrator.job_execute()

    assert result.status == "failed"
    assert result.outcome.state == JobOutcomeState.FAILED_UNREPORTED
    assert harness.job_control.calls == [("details", None)]
    assert harness.image_acquirer.pulled == []
    assert harness.job_control.closed is True
    with pytest.raises(RuntimeError, match="credential retrieval"):
        harness.orchestrator.job_mark_processed()


def test_jobs_update_readiness_failure_tears_down_and_reports_unknown(tmp_path: Path, ca_cert_pem: str) -> None:
    """Tear down a started proxy that never becomes ready, then report and finalize.

    Args:
        tmp_path: Pytest temporary directory.
        ca_cert_pem: Generated CA certificate.

    Returns:
        None: Assertions validate teardown and reported category.

    Raises:
        AssertionError: Raised when the proxy leaks or the category is wrong.
    """

    harness = _Harness(tmp_path, ca_cert_pem)
    harness.proxy_instance.readiness_error = ProxyReadinessError("proxy did not accept connections")

    result = harness.orchestrator.job_execute()

    assert harness.proxy_instance.calls == ["start", "endpoint", "shutdown"]
    assert result.outcome.error_type == JobErrorType.UNKNOWN
    assert harness.job_control.calls[-2:] == [("report", JobErrorType.UNKNOWN), ("mark_processed", None)]
    assert "Error starting the update proxy" in result.message
    assert domain_timeline_stage_statuses(result.timeline, "teardown") == ["completed"]


def test_jobs_update_missing_proxy_image_is_reported_as_image_error(tmp_path: Path, ca_cert_pem: str) -> None:
    container_error = ProxyContainerError("proxy container could not be created")
    container_error.__cause__ = docker.errors.ImageNotFound("No such image")
    harness = _Harness(tmp_path, ca_cert_pem, proxy_builder=_ProxyBuilderStub(error=container_error))

    result = harness.orchestrator.job_execute()

    assert result.outcome.error_type == JobErrorType.IMAGE


def test_jobs_update_failed_report_still_finalizes(tmp_path: Path, ca_cert_pem: str) -> None:
    """Attempt finalization even when the error report itself fails.

    Args:
        tmp_path: Pytest temporary directory.
        ca_cert_pem: Generated CA certificate.

    Returns:
        None: Assertions validate the finalize attempt.

    Raises:
        AssertionError: Raised when a failed report skips finalization.
    """

    harness = _Harness(tmp_path, ca_cert_pem, image_acquirer=_ImageAcquirerStub(error=RuntimeError("boom")))
    harness.job_control.report_error = JobControlUnreachableError("HTTP 500", status_code=500)

    result = harness.orchestrator.job_execute()

    assert result.status == "failed"
    assert harness.job_control.calls[-2:] == [("report", JobErrorType.UNKNOWN), ("mark_processed", None)]
    assert domain_timeline_stage_statuses(result.timeline, "report") == ["failed"]


def test_jobs_update_without_job_or_local_credentials_is_a_no_op(tmp_path: Path, ca_cert_pem: str) -> None:
    harness = _Harness(tmp_path, ca_cert_pem, use_remote=False)

    result = harness.orchestrator.job_execute()

    assert result.status == "skipped"
    assert result.outcome.state == JobOutcomeState.NOT_APPLICABLE
    assert harness.client_parameters == []
    assert harness.image_acquirer.pulled == []


def test_jobs_update_local_credentials_run_cached_without_job_control(tmp_path: Path, ca_cert_pem: str) -> None:
    """Use local credentials in cached mode with no job-control client.

    Args:
        tmp_path: Pytest temporary directory.
        ca_cert_pem: Generated CA certificate.

    Returns:
        None: Assertions validate local override behavior.

    Raises:
        AssertionError: Raised when local mode contacts the job-control service.
    """

    harness = _Harness(
        tmp_path,
        ca_cert_pem,
        use_remote=False,
        local_credentials='[{"type": "rubygems_server", "host": "gems.example.com", "token": "gem-token"}]',
    )

    result = harness.orchestrator.job_execute()

    assert result.status == "success"
    assert harness.client_parameters == []
    assert harness.cached_modes == [True, True]
    job_context, credentials = harness.proxy_builder.build_calls[0]
    assert job_context.cached_mode is True
    assert [credential.type for credential in credentials] == ["rubygems_server"]


def test_jobs_update_invalid_local_credentials_fail_without_echoing_input(tmp_path: Path, ca_cert_pem: str) -> None:
    harness = _Harness(
        tmp_path,
        ca_cert_pem,
        use_remote=False,
        local_credentials='[{"type": "npm_registry", "token": "local-npm-secret"}]',
    )

    result = harness.orchestrator.job_execute()

    assert result.outcome.state == JobOutcomeState.FAILED_UNREPORTED
    assert "local-npm-secret" not in result.message


def test_jobs_update_missing_job_token_fails_before_job_control(tmp_path: Path, ca_cert_pem: str) -> None:
    harness = _Harness(
        tmp_path,
        ca_cert_pem,
        job_parameters=JobParameters(
            job_id=42,
            job_token="",
            credentials_token="credentials-token-value",
            job_control_api_url="https://job-control.example.test/api",
        ),
    )

    result = harness.orchestrator.job_execute()

    assert result.outcome.state == JobOutcomeState.FAILED_UNREPORTED
    assert "job token is not set" in result.message
    assert harness.client_parameters == []


def test_jobs_update_downstream_failure_reports_update_run_once(tmp_path: Path, ca_cert_pem: str) -> None:
    """Report a downstream update-run failure once, after a successful proxy run.

    Args:
        tmp_path: Pytest temporary directory.
        ca_cert_pem: Generated CA certificate.

    Returns:
        None: Assertions validate downstream reporting and the terminal guard.

    Raises:
        AssertionError: Raised when a job can be finalized twice.
    """

    harness = _Harness(tmp_path, ca_cert_pem)
    harness.orchestrator.job_execute()

    outcome = harness.orchestrator.job_record_update_run_failure("updater exited with status 1")

    assert outcome.error_type == JobErrorType.UPDATE_RUN
    assert harness.job_control.calls[-2:] == [("report", JobErrorType.UPDATE_RUN), ("mark_processed", None)]
    with pytest.raises(RuntimeError, match="terminal status"):
        harness.orchestrator.job_mark_processed()


def test_jobs_update_rejects_unsupported_job_name(tmp_path: Path, ca_cert_pem: str) -> None:
    harness = _Harness(tmp_path, ca_cert_pem)

    assert harness.orchestrator.job_supported_names() == ("update_job_proxy",)
    with pytest.raises(ValueError, match="unsupported job_name"):
        harness.orchestrator.job_execute("ingestion_run")


def test_jobs_update_unauthorized_details_fail_without_report(tmp_path: Path, ca_cert_pem: str) -> None:
    """Fail locally when the job token is rejected while fetching details.

    Args:
        tmp_path: Pytest temporary directory.
        ca_cert_pem: Generated CA certificate.

    Returns:
        None: Assertions validate the unreported failure and client release.

    Raises:
        AssertionError: Raised when a rejected job is reported or finalized.
    """

    harness = _Harness(
        tmp_path,
        ca_cert_pem,
        job_control=_JobControlStub(details_error=JobControlUnauthorizedError("HTTP 401", status_code=401)),
    )

    result = harness.orchestrator.job_execute()

    assert result.outcome.state == JobOutcomeState.FAILED_UNREPORTED
    assert harness.job_control.calls == [("details", None)]
    assert harness.job_control.closed is True
    assert "JobControlUnauthorizedError" in result.message
    assert "https://github.example.test/acme/widgets/network/updates/42" in result.message


def test_jobs_update_credentials_failure_is_not_reported(tmp_path: Path, ca_cert_pem: str) -> None:
    harness = _Harness(
        tmp_path,
        ca_cert_pem,
        job_control=_JobControlStub(credentials_error=JobControlUnreachableError("HTTP 502", status_code=502)),
    )

    result = harness.orchestrator.job_execute()

    assert result.status == "failed"
    assert result.outcome.state == JobOutcomeState.FAILED_UNREPORTED
    assert harness.job_control.calls == [("details", None), ("credentials", None)]
    assert not any(call_name in {"report", "mark_processed"} for call_name, _ in harness.job_control.calls)
    assert harness.image_acquirer.pulled == []
    assert harness.job_control.closed is True


@pytest.mark.parametrize(
    "build_error",
    [
        ProxyNetworkError("network dependabot-job-42-internal-network could not be created"),
        CertificateAuthorityError("certificate authority generation failed"),
    ],
)
def test_jobs_update_proxy_build_failure_reports_unknown_then_finalizes(
    tmp_path: Path,
    ca_cert_pem: str,
    build_error: Exception,
) -> None:
    """Report network and CA build failures as unknown errors before finalizing.

    Args:
        tmp_path: Pytest temporary directory.
        ca_cert_pem: Generated CA certificate.
        build_error: Failure raised by the proxy builder.

    Returns:
        None: Assertions validate category, call order and message.

    Raises:
        AssertionError: Raised when build failures are misreported.
    """

    harness = _Harness(tmp_path, ca_cert_pem, proxy_builder=_ProxyBuilderStub(error=build_error))

    result = harness.orchestrator.job_execute()

    assert result.outcome.state == JobOutcomeState.PROCESSED_WITH_ERROR
    assert result.outcome.error_type == JobErrorType.UNKNOWN
    assert harness.job_control.calls == [
        ("details", None),
        ("credentials", None),
        ("report", JobErrorType.UNKNOWN),
        ("mark_processed", None),
    ]
    assert harness.proxy_instance.calls == []
    assert "Error starting the update proxy" in result.message
    assert harness.job_control.closed is True


def test_jobs_update_output_write_failure_tears_down_and_reports_unknown(
    tmp_path: Path,
    ca_cert_pem: str,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Tear down the running proxy when outputs cannot be written, then report and finalize.

    Args:
        tmp_path: Pytest temporary directory.
        ca_cert_pem: Generated CA certificate.
        monkeypatch: Pytest monkeypatch fixture.

    Returns:
        None: Assertions validate teardown, category and call order.

    Raises:
        AssertionError: Raised when an output failure leaks the proxy or skips reporting.
    """

    def _fail_outputs(**kwargs: object) -> None:
        raise OSError("No space left on device")

    monkeypatch.setattr(update_orchestrator_module, "job_write_proxy_outputs", _fail_outputs)
    harness = _Harness(tmp_path, ca_cert_pem)

    result = harness.orchestrator.job_execute()

    assert harness.proxy_instance.calls == ["start", "endpoint", "shutdown"]
    assert result.outcome.error_type == JobErrorType.UNKNOWN
    assert harness.job_control.calls[-2:] == [("report", JobErrorType.UNKNOWN), ("mark_processed", None)]
    assert "Dependabot encountered an unexpected problem" in result.message
    assert domain_timeline_stage_statuses(result.timeline, "outputs") == ["started"]


def test_jobs_update_downstream_success_finalizes_and_releases_client(tmp_path: Path, ca_cert_pem: str) -> None:
    harness = _Harness(tmp_path, ca_cert_pem)
    harness.orchestrator.job_execute()

    assert harness.job_control.closed is False

    harness.orchestrator.job_mark_processed()

    assert harness.job_control.calls[-1] == ("mark_processed", None)
    assert harness.job_control.closed is True

"""Job-control service client implementing the job lifecycle protocol."""

from __future__ import annotations

import logging
from typing import Any, Final

import httpx

from update_proxy.domain import (
    CredentialSet,
    JobDetails,
    JobErrorType,
    JobParameters,
    credential_set_parse,
)

from .interfaces import JobControlPort
from .job_control_errors import (
    JobControlLifecycleError,
    JobControlResponseError,
    JobControlTimeoutError,
    JobControlUnauthorizedError,
    JobControlUnreachableError,
)

logger = logging.getLogger(__name__)


class JobControlClient(JobControlPort):
    """Client for the job-control `details`, `credentials`, error-report and finalize calls.

    Every call is attempted exactly once with explicit connect and read timeouts.
    The client also guards the terminal half of the protocol: an error report
    may only precede the finalize call, and each may happen at most once.
    """

    _USER_AGENT: Final[str] = "update-proxy/1.0 (Python/httpx)"
    _UNAUTHORIZED_STATUS_CODES: Final[frozenset[int]] = frozenset({401, 403})

    def __init__(
        self,
        parameters: JobParameters,
        connect_timeout_seconds: float = 10.0,
        read_timeout_seconds: float = 30.0,
        http_client: httpx.Client | None = None,
    ):
        """Initialize job-control client.

        Args:
            parameters: Job identity and tokens.
            connect_timeout_seconds: HTTP connect timeout.
            read_timeout_seconds: HTTP read/write/pool timeout.
            http_client: Optional preconfigured client, used by tests to inject a transport.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when required parameters are invalid.
        """

        normalized_base_url = parameters.job_control_api_url.strip()
        if not normalized_base_url:
            raise ValueError("job_control_api_url must not be blank")
        if not parameters.job_token.strip():
            raise ValueError("job_token must not be blank")
        if not parameters.credentials_token.strip():
            raise ValueError("credentials_token must not be blank")
        if connect_timeout_seconds <= 0:
            raise ValueError("connect_timeout_seconds must be > 0")
        if read_timeout_seconds <= 0:
            raise ValueError("read_timeout_seconds must be > 0")

        self._parameters = parameters
        self._base_url = normalized_base_url.rstrip("/")
        self._http_client = http_client or httpx.Client(
            timeout=httpx.Timeout(read_timeout_seconds, connect=connect_timeout_seconds),
            headers={"User-Agent": self._USER_AGENT},
        )
        self._error_reported = False
        self._processed = False

    @property
    def job_id(self) -> int:
        return self._parameters.job_id

    def job_control_fetch_job_details(self) -> JobDetails:
        """Fetch job metadata, experiments included.

        Returns:
            JobDetails: Decoded job metadata.

        Raises:
            JobControlUnreachableError: Raised for transport failures and non-success status.
            JobControlUnauthorizedError: Raised when the job token is rejected.
            JobControlResponseError: Raised when the body is not a JSON object.
        """

        payload = self._job_control_request_json(
            method="GET",
            path="details",
            token=self._parameters.job_token,
            context_label="fetch job details",
        )
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            payload = payload["data"]
        if not isinstance(payload, dict):
            raise JobControlResponseError("job details response must be a JSON object")

        experiments = payload.get("experiments") or {}
        if not isinstance(experiments, dict):
            raise JobControlResponseError("job details experiments must be a JSON object")

        raw_job_id = payload.get("jobId", payload.get("id"))
        try:
            job_id = int(raw_job_id) if raw_job_id is not None else None
        except (TypeError, ValueError) as error:
            raise JobControlResponseError(f"job details carries invalid job id: {raw_job_id!r}") from error

        return JobDetails(job_id=job_id, experiments=dict(experiments), raw=payload)

    def job_control_fetch_credentials(self) -> CredentialSet:
        """Fetch the registry credentials for the job.

        Returns:
            CredentialSet: Validated credential variants.

        Raises:
            JobControlUnreachableError: Raised for transport failures and non-success status.
            JobControlUnauthorizedError: Raised when the credentials token is rejected.
            JobControlResponseError: Raised when the credential list is malformed.
        """

        payload = self._job_control_request_json(
            method="GET",
            path="credentials",
            token=self._parameters.credentials_token,
            context_label="fetch credentials",
        )
        if isinstance(payload, dict) and "data" in payload:
            payload = payload["data"]
        try:
            return credential_set_parse(payload)
        except ValueError as error:
            # pydantic errors echo input values; keep secrets out of the message.
            raise JobControlResponseError("credentials response failed validation") from error

    def job_control_report_job_error(self, error_type: JobErrorType, detail: str) -> None:
        """Record a structured job failure with the job-control service.

        Args:
            error_type: Closed error category.
            detail: Free-form failure detail.

        Returns:
            None: Side effect only.

        Raises:
            JobControlLifecycleError: Raised when called twice or after finalize.
            JobControlUnreachableError: Raised for transport failures and non-success status.
            JobControlUnauthorizedError: Raised when the job token is rejected.
        """

        if self._processed:
            raise JobControlLifecycleError("job error cannot be reported after the job is marked processed")
        if self._error_reported:
            raise JobControlLifecycleError("job error was already reported")

        self._error_reported = True
        self._job_control_request_json(
            method="POST",
            path="record_update_job_error",
            token=self._parameters.job_token,
            context_label="report job error",
            body={
                "data": {
                    "error-type": JobErrorType(error_type).value,
                    "error-details": {"action-error": detail},
                }
            },
        )
        logger.info("Reported %s error for job %s", JobErrorType(error_type).value, self.job_id)

    def job_control_mark_job_processed(self) -> None:
        """Finalize the job with the job-control service.

        Returns:
            None: Side effect only.

        Raises:
            JobControlLifecycleError: Raised when called more than once.
            JobControlUnreachableError: Raised for transport failures and non-success status.
            JobControlUnauthorizedError: Raised when the job token is rejected.
        """

        if self._processed:
            raise JobControlLifecycleError("job was already marked processed")

        self._processed = True
        self._job_control_request_json(
            method="PATCH",
            path="mark_as_processed",
            token=self._parameters.job_token,
            context_label="mark job processed",
            body={"data": {}},
        )
        logger.info("Marked job %s as processed", self.job_id)

    def job_control_close(self) -> None:
        """Release pooled HTTP connections."""

        self._http_client.close()

    def _job_control_request_json(
        self,
        method: str,
        path: str,
        token: str,
        context_label: str,
        body: dict[str, Any] | None = None,
    ) -> Any:
        """Execute one authenticated HTTP call and decode its JSON body.

        Args:
            method: HTTP method.
            path: Path segment below `/update_jobs/{job_id}/`.
            token: Token placed in the `Authorization` header.
            context_label: Operation label for error messages.
            body: Optional JSON request body.

        Returns:
            Any: Decoded JSON body, or None for empty responses.

        Raises:
            JobControlTimeoutError: Raised on connect/read timeout.
            JobControlUnreachableError: Raised for transport failures and non-success status.
            JobControlUnauthorizedError: Raised for 401/403 responses.
            JobControlResponseError: Raised when a non-empty body is not JSON.
        """

        url = f"{self._base_url}/update_jobs/{self._parameters.job_id}/{path}"
        try:
            response = self._http_client.request(
                method,
                url,
                json=body,
                headers={"Authorization": token},
            )
        except httpx.TimeoutException as error:
            raise JobControlTimeoutError(f"job-control {context_label} timed out") from error
        except httpx.TransportError as error:
            raise JobControlUnreachableError(f"job-control {context_label} failed: {type(error).__name__}") from error

        if response.status_code in self._UNAUTHORIZED_STATUS_CODES:
            raise JobControlUnauthorizedError(
                f"job-control {context_label} was rejected with HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if not response.is_success:
            raise JobControlUnreachableError(
                f"job-control {context_label} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as error:
            raise JobControlResponseError(f"job-control {context_label} returned invalid JSON") from error

"""Typed domain models shared across runtime layers.

This module provides the job identity, job-control error taxonomy and terminal
outcome contracts passed between the job-control, image, proxy and job layers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Final, Mapping

CACHED_MODE_EXPERIMENT: Final[str] = "proxy-cached"


class JobErrorType(str, Enum):
    """Error categories accepted by the job-control error-report endpoint."""

    UNKNOWN = "actions_workflow_unknown"
    IMAGE = "actions_workflow_image"
    UPDATE_RUN = "actions_workflow_updater"


@dataclass(frozen=True)
class JobParameters:
    """Inputs identifying one job against the job-control service.

    Attributes:
        job_id: Job identifier, used for diagnostics, URLs and resource names.
        job_token: Token authenticating orchestrator calls to the job-control service.
        credentials_token: Token authenticating credential retrieval.
        job_control_api_url: Base URL of the job-control service.
    """

    job_id: int
    job_token: str = field(repr=False)
    credentials_token: str = field(repr=False)
    job_control_api_url: str


@dataclass(frozen=True)
class JobDetails:
    """Job metadata returned by the job-control details endpoint.

    Attributes:
        job_id: Job identifier echoed by the service, when present.
        experiments: Experiment flags enabled for the job.
        raw: Full decoded response body.
    """

    job_id: int | None
    experiments: Mapping[str, Any]
    raw: Mapping[str, Any]

    def details_cached_mode(self) -> bool:
        """Return whether the job opted into cached image and CA reuse.

        Returns:
            bool: True when the `proxy-cached` experiment key is present.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        return CACHED_MODE_EXPERIMENT in self.experiments


@dataclass(frozen=True)
class JobContext:
    """Immutable job context threaded through every stage after job-control retrieval.

    Attributes:
        job_id: Job identifier.
        job_token: Token forwarded to the proxy container.
        job_control_api_url: Base URL forwarded to the proxy container.
        cached_mode: Whether cached image and CA reuse is enabled.
        diagnostics_url: Link to the job page for failure messages, when derivable.
        experiments: Experiment flags enabled for the job.
    """

    job_id: int
    job_token: str = field(repr=False)
    job_control_api_url: str
    cached_mode: bool
    diagnostics_url: str | None = None
    experiments: Mapping[str, Any] = field(default_factory=dict)


class JobOutcomeState(str, Enum):
    """Terminal states of one job invocation."""

    PROCESSED_SUCCESS = "processed_success"
    PROCESSED_WITH_ERROR = "processed_with_error"
    FAILED_UNREPORTED = "failed_unreported"
    NOT_APPLICABLE = "not_applicable"


@dataclass(frozen=True)
class JobOutcome:
    """Terminal outcome of one job invocation.

    Attributes:
        state: Terminal state marker.
        error_type: Reported error category for `processed_with_error`.
        detail: Free-form failure detail.
    """

    state: JobOutcomeState
    error_type: JobErrorType | None = None
    detail: str | None = None

    @classmethod
    def processed_success(cls) -> JobOutcome:
        return cls(state=JobOutcomeState.PROCESSED_SUCCESS)

    @classmethod
    def processed_with_error(cls, error_type: JobErrorType, detail: str) -> JobOutcome:
        return cls(state=JobOutcomeState.PROCESSED_WITH_ERROR, error_type=error_type, detail=detail)

    @classmethod
    def failed_unreported(cls, detail: str) -> JobOutcome:
        return cls(state=JobOutcomeState.FAILED_UNREPORTED, detail=detail)

    @classmethod
    def not_applicable(cls) -> JobOutcome:
        return cls(state=JobOutcomeState.NOT_APPLICABLE)

    def outcome_is_failure(self) -> bool:
        """Return whether the outcome must fail the local process.

        Returns:
            bool: True for reported and unreported failures.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        return self.state in {JobOutcomeState.PROCESSED_WITH_ERROR, JobOutcomeState.FAILED_UNREPORTED}


def domain_build_job_diagnostics_url(
    job_id: int | None,
    server_url: str | None,
    repository: str | None,
) -> str | None:
    """Build the job page link shown in failure messages.

    Args:
        job_id: Job identifier.
        server_url: Server base URL.
        repository: Repository slug (`owner/name`).

    Returns:
        str | None: Joined link, or None when no job id is known.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    if job_id is None:
        return None
    url_parts = [server_url.rstrip("/") if server_url else None, repository, "network/updates", str(job_id)]
    return "/".join(part for part in url_parts if part)

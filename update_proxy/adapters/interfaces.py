"""Typed interfaces for adapter-layer responsibilities."""

from dataclasses import dataclass
from typing import Protocol

from update_proxy.domain import CredentialSet, JobDetails, JobErrorType


@dataclass(frozen=True)
class ImagePullResult:
    """Result contract for image acquisition.

    Attributes:
        image_reference: Normalized image reference.
        image_id: Local image id after acquisition.
        pulled: Whether a network pull happened.
        attempts: Number of pull attempts made, zero for a cache hit.
    """

    image_reference: str
    image_id: str
    pulled: bool
    attempts: int


class JobControlPort(Protocol):
    """Port definition for the remote job-control lifecycle protocol."""

    def job_control_fetch_job_details(self) -> JobDetails:
        """Fetch job metadata including experiment flags.

        Returns:
            JobDetails: Decoded job metadata.

        Raises:
            ConnectionError: Raised when the service is unreachable.
            PermissionError: Raised when the job token is rejected.
        """

    def job_control_fetch_credentials(self) -> CredentialSet:
        """Fetch registry credentials for the job.

        Returns:
            CredentialSet: Validated credential set.

        Raises:
            ConnectionError: Raised when the service is unreachable.
            PermissionError: Raised when the credentials token is rejected.
        """

    def job_control_report_job_error(self, error_type: JobErrorType, detail: str) -> None:
        """Record a structured job failure; must precede `job_control_mark_job_processed`."""

    def job_control_mark_job_processed(self) -> None:
        """Finalize the job; the last lifecycle call once credentials were fetched."""

    def job_control_close(self) -> None:
        """Release transport resources; no lifecycle call follows."""


class ImageAcquirerPort(Protocol):
    """Port definition for making container images available locally."""

    def image_pull(self, image_reference: str) -> ImagePullResult:
        """Ensure one image is present locally.

        Args:
            image_reference: Full image reference.

        Returns:
            ImagePullResult: Acquisition result.

        Raises:
            ImageAcquisitionError: Raised when the image cannot be acquired.
        """

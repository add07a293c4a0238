"""Adapter layer package for job-control and container-image boundaries."""

from .image_acquirer import ImageAcquirer
from .image_errors import (
	ImageAcquisitionError,
	ImageAuthorizationError,
	ImageNotFoundError,
	ImageReferenceError,
	ImageTransientError,
)
from .interfaces import ImageAcquirerPort, ImagePullResult, JobControlPort
from .job_control_client import JobControlClient
from .job_control_errors import (
	JobControlError,
	JobControlLifecycleError,
	JobControlResponseError,
	JobControlTimeoutError,
	JobControlUnauthorizedError,
	JobControlUnreachableError,
)

__all__ = [
	"ImageAcquirer",
	"ImageAcquirerPort",
	"ImageAcquisitionError",
	"ImageAuthorizationError",
	"ImageNotFoundError",
	"ImagePullResult",
	"ImageReferenceError",
	"ImageTransientError",
	"JobControlClient",
	"JobControlError",
	"JobControlLifecycleError",
	"JobControlPort",
	"JobControlResponseError",
	"JobControlTimeoutError",
	"JobControlUnauthorizedError",
	"JobControlUnreachableError",
]

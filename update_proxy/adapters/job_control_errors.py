"""Project-native typed exceptions for job-control service failures."""

from __future__ import annotations


class JobControlError(Exception):
    """Base exception for job-control client failures.

    Attributes:
        status_code: Optional HTTP status returned by the service.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class JobControlUnreachableError(JobControlError, ConnectionError):
    """Transport failure or non-success status from the job-control service."""


class JobControlTimeoutError(JobControlUnreachableError, TimeoutError):
    """Connect or read timeout while talking to the job-control service."""


class JobControlUnauthorizedError(JobControlError, PermissionError):
    """Job token or credentials token rejected by the job-control service."""


class JobControlResponseError(JobControlError, ValueError):
    """Response payload does not match the job-control contract."""


class JobControlLifecycleError(JobControlError, RuntimeError):
    """Lifecycle call issued out of order or more than once."""

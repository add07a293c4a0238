"""Project-native typed exceptions for container image acquisition failures."""

from __future__ import annotations


class ImageAcquisitionError(Exception):
    """Base exception for image pull failures.

    Attributes:
        image_reference: Image reference that could not be acquired.
        attempts: Number of pull attempts made.
    """

    def __init__(self, message: str, image_reference: str, attempts: int = 0):
        super().__init__(message)
        self.image_reference = image_reference
        self.attempts = attempts


class ImageReferenceError(ImageAcquisitionError, ValueError):
    """Image reference is blank or rejected by the runtime as malformed."""


class ImageNotFoundError(ImageAcquisitionError, LookupError):
    """Registry does not know the requested repository or tag."""


class ImageAuthorizationError(ImageAcquisitionError, PermissionError):
    """Registry rejected the pull for lack of access."""


class ImageTransientError(ImageAcquisitionError, ConnectionError):
    """Registry or runtime stayed unreachable after the bounded retry."""

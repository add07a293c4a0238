"""Container image acquisition with cached-mode short-circuit and bounded retry."""

from __future__ import annotations

import logging
import re
import time
from typing import Final

import docker
import docker.errors
import requests.exceptions

from .image_errors import (
    ImageAcquisitionError,
    ImageAuthorizationError,
    ImageNotFoundError,
    ImageReferenceError,
    ImageTransientError,
)
from .interfaces import ImageAcquirerPort, ImagePullResult

logger = logging.getLogger(__name__)


class ImageAcquirer(ImageAcquirerPort):
    """Pull images through the container runtime, reusing local images in cached mode.

    The runtime's pull is atomic: a failed pull never leaves a usable tag, so
    errors are only classified and re-raised, never swallowed.
    """

    _REFERENCE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-z0-9][A-Za-z0-9._\-/:@]*$")
    _AUTHORIZATION_MARKERS: Final[tuple[str, ...]] = ("unauthorized", "denied", "authentication required")

    def __init__(
        self,
        docker_client: docker.DockerClient,
        cached_mode: bool = False,
        retry_attempts: int = 1,
        retry_delay_seconds: float = 5.0,
    ):
        """Initialize image acquirer.

        Args:
            docker_client: Container runtime client; its timeout bounds each pull.
            cached_mode: Whether a locally present image satisfies the pull.
            retry_attempts: Extra attempts allowed for transient failures.
            retry_delay_seconds: Fixed delay before each retry.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when retry settings are invalid.
        """

        if docker_client is None:
            raise ValueError("docker_client must not be None")
        if retry_attempts < 0:
            raise ValueError("retry_attempts must be >= 0")
        if retry_delay_seconds < 0:
            raise ValueError("retry_delay_seconds must be >= 0")

        self._docker_client = docker_client
        self._cached_mode = cached_mode
        self._retry_attempts = retry_attempts
        self._retry_delay_seconds = retry_delay_seconds

    def image_pull(self, image_reference: str) -> ImagePullResult:
        """Ensure an image is present locally.

        Args:
            image_reference: Full image reference (`registry/repo:tag` or digest form).

        Returns:
            ImagePullResult: Local image id and whether a network pull happened.

        Raises:
            ImageReferenceError: Raised for blank or malformed references.
            ImageNotFoundError: Raised when the registry does not know the image.
            ImageAuthorizationError: Raised when the registry rejects access.
            ImageTransientError: Raised when transient failures outlast the retry bound.
            ImageAcquisitionError: Raised for other runtime pull failures.
        """

        normalized_reference = image_reference.strip()
        if not normalized_reference or not self._REFERENCE_PATTERN.match(normalized_reference):
            raise ImageReferenceError(
                f"invalid image reference: {image_reference!r}",
                image_reference=image_reference,
            )

        if self._cached_mode:
            local_image_id = self._image_find_local(normalized_reference)
            if local_image_id is not None:
                logger.info("Using cached image %s (%s)", normalized_reference, local_image_id)
                return ImagePullResult(
                    image_reference=normalized_reference,
                    image_id=local_image_id,
                    pulled=False,
                    attempts=0,
                )

        max_attempts = self._retry_attempts + 1
        for attempt_number in range(1, max_attempts + 1):
            try:
                logger.info("Pulling image %s (attempt %d/%d)", normalized_reference, attempt_number, max_attempts)
                image = self._docker_client.images.pull(normalized_reference)
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as error:
                classified_error: ImageAcquisitionError = ImageTransientError(
                    f"image pull for {normalized_reference} could not reach the runtime or registry: {error}",
                    image_reference=normalized_reference,
                    attempts=attempt_number,
                )
                cause: Exception = error
            except docker.errors.APIError as error:
                classified_error = self._image_classify_api_error(error, normalized_reference, attempt_number)
                cause = error
            except docker.errors.DockerException as error:
                raise ImageReferenceError(
                    f"image pull for {normalized_reference} was rejected: {error}",
                    image_reference=normalized_reference,
                    attempts=attempt_number,
                ) from error
            else:
                return ImagePullResult(
                    image_reference=normalized_reference,
                    image_id=str(image.id),
                    pulled=True,
                    attempts=attempt_number,
                )

            if not isinstance(classified_error, ImageTransientError) or attempt_number >= max_attempts:
                raise classified_error from cause

            logger.warning(
                "Transient failure pulling %s, retrying in %.1fs: %s",
                normalized_reference,
                self._retry_delay_seconds,
                classified_error,
            )
            if self._retry_delay_seconds > 0:
                time.sleep(self._retry_delay_seconds)

        raise ImageAcquisitionError(
            f"image pull for {normalized_reference} did not complete",
            image_reference=normalized_reference,
            attempts=max_attempts,
        )

    def _image_find_local(self, image_reference: str) -> str | None:
        """Return the local image id for a reference, or None when absent.

        Args:
            image_reference: Normalized image reference.

        Returns:
            str | None: Local image id when present.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        try:
            return str(self._docker_client.images.get(image_reference).id)
        except docker.errors.ImageNotFound:
            return None
        except docker.errors.APIError as error:
            logger.warning("Local lookup for %s failed, falling back to pull: %s", image_reference, error)
            return None

    def _image_classify_api_error(
        self,
        error: docker.errors.APIError,
        image_reference: str,
        attempt_number: int,
    ) -> ImageAcquisitionError:
        """Map a runtime API error to the typed acquisition taxonomy.

        Args:
            error: Runtime API error.
            image_reference: Normalized image reference.
            attempt_number: One-based attempt number.

        Returns:
            ImageAcquisitionError: Typed error; only `ImageTransientError` is retried.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        explanation = str(error.explanation or error)
        message = f"image pull for {image_reference} failed: {explanation}"
        lowered_explanation = explanation.lower()
        status_code = error.status_code

        if status_code in (401, 403) or any(marker in lowered_explanation for marker in self._AUTHORIZATION_MARKERS):
            return ImageAuthorizationError(message, image_reference=image_reference, attempts=attempt_number)
        if isinstance(error, docker.errors.NotFound) or status_code == 404:
            return ImageNotFoundError(message, image_reference=image_reference, attempts=attempt_number)
        if status_code is not None and 400 <= status_code < 500:
            return ImageReferenceError(message, image_reference=image_reference, attempts=attempt_number)
        if status_code is None or status_code >= 500:
            return ImageTransientError(message, image_reference=image_reference, attempts=attempt_number)
        return ImageAcquisitionError(message, image_reference=image_reference, attempts=attempt_number)

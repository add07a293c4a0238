"""Project-native typed exceptions for proxy construction and lifecycle failures."""

from __future__ import annotations


class ProxyError(Exception):
    """Base exception for proxy-layer failures."""


class ProxyConstructionError(ProxyError, RuntimeError):
    """Proxy could not be built: certificate authority, network or container failure."""


class CertificateAuthorityError(ProxyConstructionError):
    """Certificate authority generation or export failed."""


class ProxyNetworkError(ProxyConstructionError):
    """Job network could not be created, including after stale-network removal."""


class ProxyContainerError(ProxyConstructionError):
    """Proxy container could not be created, seeded or started."""


class ProxyReadinessError(ProxyConstructionError, TimeoutError):
    """Proxy did not accept connections within the bounded readiness window."""


class ProxyTeardownError(ProxyError, RuntimeError):
    """One or more teardown steps failed.

    Attributes:
        failures: Step label and error message for each failed step.
    """

    def __init__(self, message: str, failures: list[tuple[str, str]]):
        super().__init__(message)
        self.failures = failures

"""Typed interfaces for job-layer orchestration responsibilities."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from update_proxy.domain import CredentialSet, JobContext, JobOutcome
from update_proxy.proxy import ProxyInstance


@dataclass(frozen=True)
class ProxyOutputs:
    """Published proxy contract handed to downstream tooling.

    Attributes:
        proxy_host: Proxy address on the isolated job network.
        proxy_port: Proxy listening port.
        ca_cert_path: PEM file holding the proxy CA certificate.
        trust_store_path: PKCS#12 trust store holding the proxy CA certificate.
        network_name: Isolated job network name.
        container_id: Proxy container id, for teardown.
    """

    proxy_host: str
    proxy_port: int
    ca_cert_path: Path
    trust_store_path: Path
    network_name: str
    container_id: str

    def outputs_as_environment(self) -> dict[str, str]:
        """Return env-style key/value outputs."""

        return {
            "PROXY_HOST": self.proxy_host,
            "PROXY_PORT": str(self.proxy_port),
            "PROXY_CA_CERT": str(self.ca_cert_path),
            "PROXY_TRUST_STORE": str(self.trust_store_path),
            "PROXY_NETWORK_NAME": self.network_name,
        }


@dataclass(frozen=True)
class JobExecutionResult:
    """Result contract for one job invocation.

    Attributes:
        job_name: Job identifier.
        status: Final execution state (`success`, `failed`, `skipped`).
        outcome: Terminal job outcome.
        message: Human-readable summary, diagnostics link included on failure.
        outputs: Published proxy contract on success.
        proxy: Running proxy handle on success; the caller owns its teardown.
        timeline: Structured stage events.
    """

    job_name: str
    status: str
    outcome: JobOutcome
    message: str = ""
    outputs: ProxyOutputs | None = None
    proxy: ProxyInstance | None = None
    timeline: list[dict[str, object]] = field(default_factory=list)


class ProxyBuilderPort(Protocol):
    """Port definition for building a created, not yet started proxy."""

    def proxy_build(self, job_context: JobContext, credentials: CredentialSet) -> ProxyInstance:
        """Build the proxy for one job.

        Raises:
            ProxyConstructionError: Raised when any construction step fails.
        """


class JobOrchestratorPort(Protocol):
    """Port definition for orchestrating one update job."""

    def job_supported_names(self) -> tuple[str, ...]:
        """Return the set of workflow names this orchestrator can execute."""

    def job_execute(self, job_name: str) -> JobExecutionResult:
        """Execute one named workflow in the job layer.

        Args:
            job_name: Workflow name.

        Returns:
            JobExecutionResult: Final execution status payload.

        Raises:
            ValueError: Raised when the job name is unsupported.
        """

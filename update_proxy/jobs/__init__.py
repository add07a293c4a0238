"""Job layer package for update-job orchestration boundaries."""

from .interfaces import JobExecutionResult, JobOrchestratorPort, ProxyBuilderPort, ProxyOutputs
from .outputs import CA_CERT_FILE_NAME, TRUST_STORE_FILE_NAME, job_append_env_file, job_write_proxy_outputs
from .update_orchestrator import UpdateJobOrchestrator, UpdateJobOrchestratorConfig

__all__ = [
	"CA_CERT_FILE_NAME",
	"JobExecutionResult",
	"JobOrchestratorPort",
	"ProxyBuilderPort",
	"ProxyOutputs",
	"TRUST_STORE_FILE_NAME",
	"UpdateJobOrchestrator",
	"UpdateJobOrchestratorConfig",
	"job_append_env_file",
	"job_write_proxy_outputs",
]

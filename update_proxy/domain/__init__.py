"""Domain models used across application layer boundaries."""

from .credentials import Credential, CredentialSet, credential_set_parse
from .models import (
	CACHED_MODE_EXPERIMENT,
	JobContext,
	JobDetails,
	JobErrorType,
	JobOutcome,
	JobOutcomeState,
	JobParameters,
	domain_build_job_diagnostics_url,
)
from .timeline import domain_build_stage_event, domain_timeline_stage_statuses

__all__ = [
	"CACHED_MODE_EXPERIMENT",
	"Credential",
	"CredentialSet",
	"JobContext",
	"JobDetails",
	"JobErrorType",
	"JobOutcome",
	"JobOutcomeState",
	"JobParameters",
	"credential_set_parse",
	"domain_build_job_diagnostics_url",
	"domain_build_stage_event",
	"domain_timeline_stage_statuses",
]

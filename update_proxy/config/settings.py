"""Typed runtime settings with dotenv support and startup validation."""

from pathlib import Path

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SettingsLoadError(RuntimeError):
    """Raised when runtime settings cannot be loaded or validated."""


class RunnerSettings(BaseSettings):
    """Runtime settings for one update-job proxy run.

    Environment variable names map directly to field names in uppercase.
    Example: `job_token` reads from `JOB_TOKEN`.

    Attributes:
        job_id: Job identifier issued by the job-control service.
        job_token: Token authenticating job-control calls.
        credentials_token: Token authenticating credential retrieval.
        job_control_api_url: Base URL of the job-control service.
        local_credentials: JSON credential list used when no job-control service is configured.
        proxy_image: Proxy container image reference.
        http_connect_timeout_seconds: Connect timeout for job-control HTTP calls.
        http_read_timeout_seconds: Read timeout for job-control HTTP calls.
        docker_timeout_seconds: Timeout for container runtime API calls, image pulls included.
        image_pull_retry_attempts: Retries allowed for transient image pull failures.
        image_pull_retry_delay_seconds: Fixed delay before an image pull retry.
        proxy_readiness_timeout_seconds: Bounded wait for the proxy to accept connections.
        proxy_readiness_poll_interval_seconds: Delay between readiness probes.
        ca_validity_hours: Validity window of a generated certificate authority.
        ca_minimum_remaining_hours: Remaining validity required to reuse a cached certificate authority.
        custom_ca_path: Optional extra CA certificate trusted by the proxy.
        working_directory: Directory receiving the certificate and trust-store files.
        trust_store_password: Password protecting the PKCS#12 trust store.
        output_env_file: Optional env-style file receiving exported proxy variables.
        state_file: Optional file receiving proxy resource handles for later cleanup.
        github_server_url: Server URL used to build job diagnostics links.
        github_repository: Repository slug used to build job diagnostics links.
        log_level: Root log level.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    job_id: int | None = Field(default=None, ge=0)
    job_token: str | None = Field(default=None)
    credentials_token: str | None = Field(default=None)
    job_control_api_url: str | None = Field(default=None)
    local_credentials: str | None = Field(default=None)
    proxy_image: str = Field(default="ghcr.io/github/dependabot-update-job-proxy/dependabot-update-job-proxy:latest")
    http_connect_timeout_seconds: float = Field(default=10.0, gt=0)
    http_read_timeout_seconds: float = Field(default=30.0, gt=0)
    docker_timeout_seconds: float = Field(default=300.0, gt=0)
    image_pull_retry_attempts: int = Field(default=1, ge=0, le=3)
    image_pull_retry_delay_seconds: float = Field(default=5.0, ge=0)
    proxy_readiness_timeout_seconds: float = Field(default=60.0, gt=0)
    proxy_readiness_poll_interval_seconds: float = Field(default=0.5, gt=0)
    ca_validity_hours: int = Field(default=168, ge=1)
    ca_minimum_remaining_hours: int = Field(default=12, ge=0)
    custom_ca_path: Path | None = Field(default=None)
    working_directory: Path = Field(default=Path("."))
    trust_store_password: str = Field(default="changeit", min_length=1)
    output_env_file: Path | None = Field(default=None)
    state_file: Path | None = Field(default=None)
    github_server_url: str | None = Field(default=None)
    github_repository: str | None = Field(default=None)
    log_level: str = Field(default="INFO")

    @field_validator(
        "job_token",
        "credentials_token",
        "job_control_api_url",
        "local_credentials",
        "github_server_url",
        "github_repository",
    )
    @classmethod
    def _normalize_optional_string(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped_value = value.strip()
        return stripped_value or None

    @field_validator("proxy_image", "trust_store_password")
    @classmethod
    def _validate_non_empty_string(cls, value: str) -> str:
        stripped_value = value.strip()
        if not stripped_value:
            raise ValueError("value must not be blank")
        return stripped_value

    @field_validator("ca_minimum_remaining_hours")
    @classmethod
    def _validate_ca_window_bounds(cls, value: int, info) -> int:
        validity_hours = int(info.data.get("ca_validity_hours", 168))
        if value >= validity_hours:
            raise ValueError("ca_minimum_remaining_hours must be lower than ca_validity_hours")
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized_value = value.strip().upper()
        if normalized_value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("log_level must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL")
        return normalized_value


def config_load_settings(**overrides: object) -> RunnerSettings:
    """Load and validate runtime settings from environment and dotenv.

    Args:
        overrides: Explicit values that take precedence over environment values.
            `None` values are ignored so unset CLI options fall through.

    Returns:
        RunnerSettings: Validated runtime settings object.

    Raises:
        SettingsLoadError: Raised when settings are missing or invalid.
    """

    explicit_values = {name: value for name, value in overrides.items() if value is not None}
    try:
        return RunnerSettings(**explicit_values)
    except ValidationError as error:
        raise SettingsLoadError(
            f"Startup configuration validation failed. Update .env or environment variables. Details: {error}"
        ) from error

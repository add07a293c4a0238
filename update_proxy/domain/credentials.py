"""Registry credential variants validated at parse time.

Each credential type carries only the fields its auth scheme needs. The
`type` key selects the variant; unknown types and missing fields are rejected
when the payload is parsed, not when the proxy later reads it.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Annotated, Any, Iterator, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr, TypeAdapter, model_validator

logger = logging.getLogger(__name__)


class _CredentialBase(BaseModel):
    """Shared behavior for every credential variant."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    def credential_target(self) -> str:
        """Return the host, registry or URL this credential authenticates against."""

        raise NotImplementedError

    def credential_secret_values(self) -> list[str]:
        """Return raw secret values for log redaction."""

        secrets: list[str] = []
        for field_name in type(self).model_fields:
            value = getattr(self, field_name)
            if isinstance(value, SecretStr) and value.get_secret_value():
                secrets.append(value.get_secret_value())
        return secrets

    def credential_proxy_payload(self) -> dict[str, Any]:
        """Return the wire representation consumed by the proxy, secrets revealed.

        Returns:
            dict[str, Any]: Field values keyed by their wire names, unset fields omitted.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        payload: dict[str, Any] = {}
        for field_name, field_info in type(self).model_fields.items():
            value = getattr(self, field_name)
            if value is None:
                continue
            if isinstance(value, SecretStr):
                value = value.get_secret_value()
            payload[field_info.alias or field_name] = value
        return payload


class GitSourceCredential(_CredentialBase):
    type: Literal["git_source"]
    host: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: SecretStr

    def credential_target(self) -> str:
        return self.host


class NpmRegistryCredential(_CredentialBase):
    type: Literal["npm_registry"]
    registry: str = Field(min_length=1)
    token: SecretStr
    replaces_base: bool | None = Field(default=None, alias="replaces-base")

    def credential_target(self) -> str:
        return self.registry


class DockerRegistryCredential(_CredentialBase):
    type: Literal["docker_registry"]
    registry: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: SecretStr
    replaces_base: bool | None = Field(default=None, alias="replaces-base")

    def credential_target(self) -> str:
        return self.registry


class MavenRepositoryCredential(_CredentialBase):
    type: Literal["maven_repository"]
    url: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: SecretStr
    replaces_base: bool | None = Field(default=None, alias="replaces-base")

    def credential_target(self) -> str:
        return self.url


class PythonIndexCredential(_CredentialBase):
    """Python package index; authenticates with a token or a username/password pair."""

    type: Literal["python_index"]
    index_url: str = Field(min_length=1, alias="index-url")
    token: SecretStr | None = None
    username: str | None = None
    password: SecretStr | None = None
    replaces_base: bool | None = Field(default=None, alias="replaces-base")

    @model_validator(mode="after")
    def _validate_auth_fields(self) -> PythonIndexCredential:
        if self.token is None and (self.username is None or self.password is None):
            raise ValueError("python_index requires token or username and password")
        return self

    def credential_target(self) -> str:
        return self.index_url


class RubygemsServerCredential(_CredentialBase):
    type: Literal["rubygems_server"]
    host: str = Field(min_length=1)
    token: SecretStr
    replaces_base: bool | None = Field(default=None, alias="replaces-base")

    def credential_target(self) -> str:
        return self.host


class ComposerRepositoryCredential(_CredentialBase):
    type: Literal["composer_repository"]
    registry: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: SecretStr

    def credential_target(self) -> str:
        return self.registry


class NugetFeedCredential(_CredentialBase):
    type: Literal["nuget_feed"]
    url: str = Field(min_length=1)
    token: SecretStr

    def credential_target(self) -> str:
        return self.url


class HexOrganizationCredential(_CredentialBase):
    type: Literal["hex_organization"]
    organization: str = Field(min_length=1)
    key: SecretStr

    def credential_target(self) -> str:
        return self.organization


class TerraformRegistryCredential(_CredentialBase):
    type: Literal["terraform_registry"]
    host: str = Field(min_length=1)
    token: SecretStr

    def credential_target(self) -> str:
        return self.host


class CargoRegistryCredential(_CredentialBase):
    type: Literal["cargo_registry"]
    registry: str = Field(min_length=1)
    token: SecretStr

    def credential_target(self) -> str:
        return self.registry


class GoproxyServerCredential(_CredentialBase):
    type: Literal["goproxy_server"]
    url: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: SecretStr

    def credential_target(self) -> str:
        return self.url


Credential = Annotated[
    Union[
        GitSourceCredential,
        NpmRegistryCredential,
        DockerRegistryCredential,
        MavenRepositoryCredential,
        PythonIndexCredential,
        RubygemsServerCredential,
        ComposerRepositoryCredential,
        NugetFeedCredential,
        HexOrganizationCredential,
        TerraformRegistryCredential,
        CargoRegistryCredential,
        GoproxyServerCredential,
    ],
    Field(discriminator="type"),
]

_CREDENTIAL_LIST_ADAPTER: TypeAdapter[list[Credential]] = TypeAdapter(list[Credential])


@dataclass(frozen=True)
class CredentialSet:
    """Ordered credential collection, unique by type and target.

    Attributes:
        credentials: Parsed credential variants in service order.
    """

    credentials: tuple[Credential, ...] = ()

    def __iter__(self) -> Iterator[Credential]:
        return iter(self.credentials)

    def __len__(self) -> int:
        return len(self.credentials)

    def __repr__(self) -> str:
        return f"CredentialSet(count={len(self.credentials)})"

    def credential_set_proxy_payload(self) -> list[dict[str, Any]]:
        """Return the credential list in the proxy configuration wire format."""

        return [credential.credential_proxy_payload() for credential in self.credentials]

    def credential_set_secret_values(self) -> list[str]:
        """Return every raw secret value carried by the set."""

        return [secret for credential in self.credentials for secret in credential.credential_secret_values()]


def credential_set_parse(payload: object) -> CredentialSet:
    """Parse a decoded credential list into validated credential variants.

    Duplicate `(type, target)` entries keep the first occurrence.

    Args:
        payload: Decoded JSON value, expected to be a list of credential objects.

    Returns:
        CredentialSet: Validated, de-duplicated credential set.

    Raises:
        ValueError: Raised when the payload is not a list or any entry is invalid.
    """

    if not isinstance(payload, list):
        raise ValueError("credentials payload must be a JSON list")

    parsed_credentials = _CREDENTIAL_LIST_ADAPTER.validate_python(payload)
    unique_credentials: list[Credential] = []
    seen_keys: set[tuple[str, str]] = set()
    for credential in parsed_credentials:
        credential_key = (credential.type, credential.credential_target())
        if credential_key in seen_keys:
            logger.warning("Dropping duplicate %s credential for %s", credential.type, credential.credential_target())
            continue
        seen_keys.add(credential_key)
        unique_credentials.append(credential)
    return CredentialSet(credentials=tuple(unique_credentials))

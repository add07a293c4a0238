"""Regression tests for credential variant parsing and proxy payload rendering."""

from __future__ import annotations

import pytest

from update_proxy.domain import CredentialSet, credential_set_parse


def test_domain_credentials_parse_selects_variant_by_type() -> None:
    """Parse mixed credential types into their typed variants.

    Returns:
        None: Assertions validate variant selection and field mapping.

    Raises:
        AssertionError: Raised when a variant is selected incorrectly.
    """

    credential_set = credential_set_parse(
        [
            {"type": "git_source", "host": "github.com", "username": "x-access-token", "password": "git-secret"},
            {"type": "python_index", "index-url": "https://pypi.example.com/simple", "token": "py-token"},
            {"type": "npm_registry", "registry": "npm.example.com", "token": "npm-token", "replaces-base": True},
        ]
    )

    credentials = list(credential_set)
    assert len(credential_set) == 3
    assert [credential.type for credential in credentials] == ["git_source", "python_index", "npm_registry"]
    assert credentials[1].credential_target() == "https://pypi.example.com/simple"
    assert credentials[2].replaces_base is True


def test_domain_credentials_parse_rejects_unknown_type() -> None:
    """Reject credential entries whose type has no variant.

    Returns:
        None: Assertions validate rejection behavior.

    Raises:
        AssertionError: Raised when unknown types are accepted.
    """

    with pytest.raises(ValueError):
        credential_set_parse([{"type": "carrier_pigeon", "host": "example.com"}])


def test_domain_credentials_parse_rejects_missing_required_field() -> None:
    """Reject variants that lack a field their auth scheme requires.

    Returns:
        None: Assertions validate field requirements.

    Raises:
        AssertionError: Raised when incomplete entries are accepted.
    """

    with pytest.raises(ValueError):
        credential_set_parse([{"type": "docker_registry", "registry": "registry.example.com", "username": "bot"}])
    with pytest.raises(ValueError, match="token or username and password"):
        credential_set_parse([{"type": "python_index", "index-url": "https://pypi.example.com", "username": "bot"}])


def test_domain_credentials_parse_rejects_non_list_payload() -> None:
    with pytest.raises(ValueError, match="must be a JSON list"):
        credential_set_parse({"type": "git_source"})


def test_domain_credentials_parse_keeps_first_duplicate_by_type_and_target() -> None:
    """Drop later credentials that repeat an earlier type and target.

    Returns:
        None: Assertions validate de-duplication order.

    Raises:
        AssertionError: Raised when duplicates survive or order changes.
    """

    credential_set = credential_set_parse(
        [
            {"type": "nuget_feed", "url": "https://nuget.example.com/v3/index.json", "token": "first-token"},
            {"type": "nuget_feed", "url": "https://nuget.example.com/v3/index.json", "token": "second-token"},
            {"type": "terraform_registry", "host": "https://nuget.example.com/v3/index.json", "token": "tf-token"},
        ]
    )

    assert len(credential_set) == 2
    assert credential_set.credential_set_secret_values() == ["first-token", "tf-token"]


def test_domain_credentials_proxy_payload_reveals_secrets_with_wire_names() -> None:
    """Render the proxy wire format with aliases and revealed secrets.

    Returns:
        None: Assertions validate wire names and omitted unset fields.

    Raises:
        AssertionError: Raised when the wire payload is malformed.
    """

    credential_set = credential_set_parse(
        [{"type": "python_index", "index-url": "https://pypi.example.com/simple", "token": "py-token"}]
    )

    assert credential_set.credential_set_proxy_payload() == [
        {"type": "python_index", "index-url": "https://pypi.example.com/simple", "token": "py-token"}
    ]


def test_domain_credentials_repr_never_shows_secret_values() -> None:
    """Keep secret values out of string representations.

    Returns:
        None: Assertions validate redacted representations.

    Raises:
        AssertionError: Raised when a secret leaks into repr output.
    """

    credential_set = credential_set_parse(
        [{"type": "hex_organization", "organization": "acme", "key": "hex-secret-key"}]
    )

    assert "hex-secret-key" not in repr(credential_set)
    assert "hex-secret-key" not in repr(list(credential_set)[0])
    assert repr(CredentialSet()) == "CredentialSet(count=0)"

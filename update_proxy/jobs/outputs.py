"""Filesystem publication of the proxy endpoint, CA certificate and trust store."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Final

from update_proxy.proxy import (
    ProxyEndpoint,
    ProxyInstance,
    ca_export_pem,
    ca_export_trust_store,
    ca_load_pem_certificate,
)

from .interfaces import ProxyOutputs

logger = logging.getLogger(__name__)

CA_CERT_FILE_NAME: Final[str] = "cert.pem"
TRUST_STORE_FILE_NAME: Final[str] = "keystore.p12"


def job_write_proxy_outputs(
    proxy: ProxyInstance,
    endpoint: ProxyEndpoint,
    working_directory: Path,
    trust_store_password: str,
    output_env_file: Path | None = None,
    state_file: Path | None = None,
) -> ProxyOutputs:
    """Write the public CA files and connection metadata for downstream tooling.

    Only public material is written: the CA certificate as PEM and as a
    password-protected PKCS#12 trust store, env-style outputs, and the proxy
    resource handles needed for later teardown. Credentials are never written.

    Args:
        proxy: Started proxy instance.
        endpoint: Reachable proxy endpoint.
        working_directory: Directory receiving `cert.pem` and `keystore.p12`.
        trust_store_password: Trust-store password.
        output_env_file: Optional env-style file; outputs are appended as `KEY=value` lines.
        state_file: Optional JSON file receiving container and network handles.

    Returns:
        ProxyOutputs: Published proxy contract.

    Raises:
        CertificateAuthorityError: Raised when the certificate cannot be exported.
        OSError: Raised when a file cannot be written.
    """

    resolved_directory = working_directory.resolve()
    resolved_directory.mkdir(parents=True, exist_ok=True)

    certificate = ca_load_pem_certificate(proxy.ca_cert_pem)
    ca_cert_path = resolved_directory / CA_CERT_FILE_NAME
    trust_store_path = resolved_directory / TRUST_STORE_FILE_NAME
    ca_cert_path.write_text(ca_export_pem(certificate), encoding="ascii")
    trust_store_path.write_bytes(ca_export_trust_store(certificate, trust_store_password))

    outputs = ProxyOutputs(
        proxy_host=endpoint.host,
        proxy_port=endpoint.port,
        ca_cert_path=ca_cert_path,
        trust_store_path=trust_store_path,
        network_name=proxy.network_name,
        container_id=proxy.container_id,
    )

    if output_env_file is not None:
        job_append_env_file(output_env_file, outputs.outputs_as_environment())
    if state_file is not None:
        state_payload = {
            "PROXY_CONTAINER_ID": proxy.container_id,
            "PROXY_NETWORK_NAME": proxy.network_name,
            "PROXY_EXTERNAL_NETWORK_NAME": proxy.external_network_name,
        }
        state_file.parent.mkdir(parents=True, exist_ok=True)
        state_file.write_text(json.dumps(state_payload, indent=2, sort_keys=True), encoding="utf-8")

    logger.info("Proxy outputs written to %s", resolved_directory)
    return outputs


def job_append_env_file(env_file: Path, values: dict[str, str]) -> None:
    """Append `KEY=value` lines to an env-style file.

    Raises:
        ValueError: Raised when a value contains a newline.
        OSError: Raised when the file cannot be written.
    """

    lines: list[str] = []
    for key, value in values.items():
        if "\n" in value or "\r" in value:
            raise ValueError(f"output {key} must be a single line")
        lines.append(f"{key}={value}\n")

    env_file.parent.mkdir(parents=True, exist_ok=True)
    with env_file.open("a", encoding="utf-8") as handle:
        handle.writelines(lines)

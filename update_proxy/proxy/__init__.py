"""Proxy layer package: certificate authority, proxy construction and teardown."""

from .certificate_authority import (
	CertificateAuthority,
	CertificateAuthorityBuilder,
	ca_export_pem,
	ca_export_trust_store,
	ca_load_pem_certificate,
	ca_load_trust_store_certificates,
)
from .cleanup import proxy_cleanup_job_resources
from .proxy_builder import ProxyBuilder, ProxyBuildState, proxy_container_name, proxy_network_name
from .proxy_errors import (
	CertificateAuthorityError,
	ProxyConstructionError,
	ProxyContainerError,
	ProxyError,
	ProxyNetworkError,
	ProxyReadinessError,
	ProxyTeardownError,
)
from .proxy_instance import ProxyEndpoint, ProxyInstance, proxy_tcp_probe

__all__ = [
	"CertificateAuthority",
	"CertificateAuthorityBuilder",
	"CertificateAuthorityError",
	"ProxyBuildState",
	"ProxyBuilder",
	"ProxyConstructionError",
	"ProxyContainerError",
	"ProxyEndpoint",
	"ProxyError",
	"ProxyInstance",
	"ProxyNetworkError",
	"ProxyReadinessError",
	"ProxyTeardownError",
	"ca_export_pem",
	"ca_export_trust_store",
	"ca_load_pem_certificate",
	"ca_load_trust_store_certificates",
	"proxy_cleanup_job_resources",
	"proxy_container_name",
	"proxy_network_name",
	"proxy_tcp_probe",
]

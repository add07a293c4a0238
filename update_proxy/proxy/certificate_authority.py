"""Per-job certificate authority generation and trust-store export."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Callable, Final

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from .proxy_errors import CertificateAuthorityError

logger = logging.getLogger(__name__)

CA_SUBJECT: Final[x509.Name] = x509.Name(
    [
        x509.NameAttribute(NameOID.COMMON_NAME, "Dependabot Internal CA"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "GitHub Inc."),
        x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, "Dependabot"),
        x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
        x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, "California"),
        x509.NameAttribute(NameOID.LOCALITY_NAME, "San Francisco"),
    ]
)
TRUST_STORE_FRIENDLY_NAME: Final[bytes] = b"mykey"
TRUST_STORE_KDF_ROUNDS: Final[int] = 10000


@dataclass(frozen=True)
class CertificateAuthority:
    """CA keypair and self-signed certificate for one proxy.

    Attributes:
        private_key: CA signing key; only ever handed to the proxy container.
        certificate: Self-signed CA certificate.
    """

    private_key: rsa.RSAPrivateKey
    certificate: x509.Certificate

    def __repr__(self) -> str:
        return f"CertificateAuthority(serial={self.certificate.serial_number}, not_valid_after={self.not_valid_after})"

    @property
    def cert_pem(self) -> str:
        return self.certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")

    @property
    def key_pem(self) -> str:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")

    @property
    def not_valid_after(self) -> datetime:
        return self.certificate.not_valid_after_utc

    def ca_is_valid_for(self, remaining: timedelta, now: datetime | None = None) -> bool:
        """Return whether the certificate stays valid for at least `remaining` from `now`.

        Args:
            remaining: Required remaining validity.
            now: Reference time, defaults to the current UTC time.

        Returns:
            bool: True when the certificate covers the whole window.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        reference_time = now or datetime.now(timezone.utc)
        if reference_time < self.certificate.not_valid_before_utc:
            return False
        return self.not_valid_after - reference_time >= remaining


class CertificateAuthorityBuilder:
    """Build CA material for the intercepting proxy.

    A fresh CA is generated per job. In cached mode, a previously built CA that
    is still valid for `minimum_remaining` is returned instead; this trades
    per-job key isolation for startup latency and is opt-in only.
    """

    _CLOCK_SKEW_ALLOWANCE: Final[timedelta] = timedelta(minutes=5)

    def __init__(
        self,
        cached_mode: bool = False,
        validity: timedelta = timedelta(hours=168),
        minimum_remaining: timedelta = timedelta(hours=12),
        key_size: int = 2048,
        cached_authority: CertificateAuthority | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize certificate authority builder.

        Args:
            cached_mode: Whether a prior valid CA may be reused.
            validity: Validity window of generated certificates.
            minimum_remaining: Remaining validity needed to reuse a cached CA.
            key_size: RSA modulus size.
            cached_authority: Previously built CA offered for reuse in cached mode.
            clock: Optional UTC clock provider.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when validity bounds or key size are invalid.
        """

        if validity <= timedelta(0):
            raise ValueError("validity must be positive")
        if minimum_remaining < timedelta(0):
            raise ValueError("minimum_remaining must be >= 0")
        if minimum_remaining >= validity:
            raise ValueError("minimum_remaining must be lower than validity")
        if key_size < 2048:
            raise ValueError("key_size must be >= 2048")

        self._cached_mode = cached_mode
        self._validity = validity
        self._minimum_remaining = minimum_remaining
        self._key_size = key_size
        self._cached_authority = cached_authority
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def ca_generate(self) -> CertificateAuthority:
        """Return CA material for one proxy.

        Returns:
            CertificateAuthority: Fresh CA, or the cached CA in cached mode when still valid.

        Raises:
            CertificateAuthorityError: Raised when key or certificate generation fails.
        """

        now = self._clock()
        if self._cached_mode and self._cached_authority is not None:
            if self._cached_authority.ca_is_valid_for(self._minimum_remaining, now=now):
                logger.info("Reusing cached certificate authority valid until %s", self._cached_authority.not_valid_after)
                return self._cached_authority
            logger.info("Cached certificate authority expires too soon, generating a new one")

        try:
            private_key = rsa.generate_private_key(public_exponent=65537, key_size=self._key_size)
            public_key = private_key.public_key()
            certificate = (
                x509.CertificateBuilder()
                .subject_name(CA_SUBJECT)
                .issuer_name(CA_SUBJECT)
                .public_key(public_key)
                .serial_number(x509.random_serial_number())
                .not_valid_before(now - self._CLOCK_SKEW_ALLOWANCE)
                .not_valid_after(now + self._validity)
                .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        content_commitment=False,
                        key_encipherment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        key_cert_sign=True,
                        crl_sign=True,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
                .sign(private_key, hashes.SHA256())
            )
        except (ValueError, TypeError, UnsupportedAlgorithm) as error:
            raise CertificateAuthorityError(f"certificate authority generation failed: {error}") from error

        authority = CertificateAuthority(private_key=private_key, certificate=certificate)
        if self._cached_mode:
            self._cached_authority = authority
        return authority

    def ca_export_pem(self, certificate: x509.Certificate) -> str:
        return ca_export_pem(certificate)

    def ca_export_trust_store(self, certificate: x509.Certificate, password: str) -> bytes:
        return ca_export_trust_store(certificate, password)


def ca_export_pem(certificate: x509.Certificate) -> str:
    """Return the public certificate in PEM form.

    Args:
        certificate: Certificate to export.

    Returns:
        str: PEM text.

    Raises:
        CertificateAuthorityError: Raised when encoding fails.
    """

    try:
        return certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")
    except (ValueError, TypeError) as error:
        raise CertificateAuthorityError(f"certificate PEM export failed: {error}") from error


def ca_export_trust_store(certificate: x509.Certificate, password: str) -> bytes:
    """Wrap the public certificate in a password-protected PKCS#12 trust store.

    The certificate bag carries the JDK trusted-certificate attribute, so JVM
    keystore readers list it as a trusted entry. The bags use PBES1 SHA1/3DES
    with 10000 KDF rounds and the archive has a SHA1 MAC at the library's
    default iteration count. No private key is included.

    Args:
        certificate: CA certificate to carry.
        password: Trust-store password.

    Returns:
        bytes: DER-encoded PKCS#12 archive.

    Raises:
        ValueError: Raised when password is blank.
        CertificateAuthorityError: Raised when serialization fails.
    """

    if not password:
        raise ValueError("password must not be blank")

    try:
        encryption = (
            serialization.PrivateFormat.PKCS12.encryption_builder()
            .kdf_rounds(TRUST_STORE_KDF_ROUNDS)
            .key_cert_algorithm(pkcs12.PBES.PBESv1SHA1And3KeyTripleDESCBC)
            .hmac_hash(hashes.SHA1())
            .build(password.encode("utf-8"))
        )
        return pkcs12.serialize_java_truststore(
            [pkcs12.PKCS12Certificate(certificate, TRUST_STORE_FRIENDLY_NAME)],
            encryption,
        )
    except (ValueError, TypeError, UnsupportedAlgorithm) as error:
        raise CertificateAuthorityError(f"trust store export failed: {error}") from error


def ca_load_pem_certificate(certificate_pem: str) -> x509.Certificate:
    """Parse a PEM certificate.

    Raises:
        CertificateAuthorityError: Raised when the PEM text is not a certificate.
    """

    try:
        return x509.load_pem_x509_certificate(certificate_pem.encode("ascii"))
    except (ValueError, TypeError, UnicodeEncodeError) as error:
        raise CertificateAuthorityError(f"CA certificate PEM could not be parsed: {error}") from error


def ca_load_trust_store_certificates(trust_store: bytes, password: str) -> list[x509.Certificate]:
    """Open a PKCS#12 trust store and return every certificate it carries.

    Args:
        trust_store: DER-encoded PKCS#12 archive.
        password: Trust-store password.

    Returns:
        list[x509.Certificate]: Contained certificates.

    Raises:
        CertificateAuthorityError: Raised when the archive cannot be opened with `password`.
    """

    try:
        archive = pkcs12.load_pkcs12(trust_store, password.encode("utf-8"))
    except (ValueError, TypeError, UnsupportedAlgorithm) as error:
        raise CertificateAuthorityError(f"trust store could not be opened: {error}") from error

    certificates = [archive.cert.certificate] if archive.cert is not None else []
    certificates.extend(additional.certificate for additional in archive.additional_certs)
    return certificates

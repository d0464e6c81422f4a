"""
HTTP Logger Certificate Provider
================================
Local root authority plus per-host leaf certificates used to terminate TLS
for intercepted CONNECT tunnels.

The root authority is generated once per server lifetime (optionally
persisted so browsers only need to trust it once) and is immutable after
creation. Leaf certificates are minted per connection; a per-host cache can
be switched on with ``CertificateProvider(cache_leaf_certificates=True)``.
"""

from __future__ import annotations

import ipaddress
import logging
import os
import ssl
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

logger = logging.getLogger(__name__)

CA_COMMON_NAME = "HTTP Logger Root CA"
CA_ORGANIZATION = "http-logger.net"
CA_DAYS = 3650
LEAF_DAYS = 365
KEY_SIZE = 2048

CA_KEY_FILE = "ca_key.pem"
CA_CERT_FILE = "ca_cert.pem"


def _new_key(key_size: int = KEY_SIZE) -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def _key_pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    )


# ── Data Models ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CertificateAuthority:
    """The proxy's signing key and self-signed root certificate (read-only)."""
    key: rsa.RSAPrivateKey
    certificate: x509.Certificate
    certificate_path: Optional[Path] = None

    @property
    def certificate_pem(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.PEM)

    @property
    def fingerprint(self) -> str:
        return self.certificate.fingerprint(hashes.SHA256()).hex(":").upper()


@dataclass(frozen=True)
class LeafCertificate:
    """A certificate/key pair impersonating one host."""
    host: str
    key: rsa.RSAPrivateKey
    certificate: x509.Certificate
    issuer: x509.Certificate

    @property
    def chain_pem(self) -> bytes:
        return (self.certificate.public_bytes(serialization.Encoding.PEM)
                + self.issuer.public_bytes(serialization.Encoding.PEM))

    def server_context(self) -> ssl.SSLContext:
        """Build a server-side TLS context serving this certificate.

        The TLS version is whatever the ssl module negotiates as current,
        with TLS 1.2 as the floor. No client certificate is requested.
        """
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        context.verify_mode = ssl.CERT_NONE

        # load_cert_chain only accepts file paths
        fd, path = tempfile.mkstemp(prefix="httplogger-", suffix=".pem")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(self.chain_pem)
                f.write(_key_pem(self.key))
            context.load_cert_chain(certfile=path)
        finally:
            os.unlink(path)
        return context


# ── Generation ───────────────────────────────────────────────────────────────

def _base_builder(subject: x509.Name, issuer: x509.Name, public_key, days: int) -> x509.CertificateBuilder:
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=days))
    )


def generate_root_authority(key_size: int = KEY_SIZE) -> CertificateAuthority:
    """Create a new self-signed root authority."""
    key = _new_key(key_size)
    name = x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, CA_ORGANIZATION),
        x509.NameAttribute(NameOID.COMMON_NAME, CA_COMMON_NAME),
    ])
    certificate = (
        _base_builder(name, name, key.public_key(), CA_DAYS)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .add_extension(x509.AuthorityKeyIdentifier.from_issuer_public_key(key.public_key()), critical=False)
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .add_extension(x509.KeyUsage(
            digital_signature=True, content_commitment=False, key_encipherment=False,
            data_encipherment=False, key_agreement=False, key_cert_sign=True,
            crl_sign=True, encipher_only=False, decipher_only=False,
        ), critical=True)
        .sign(key, hashes.SHA256())
    )
    logger.info("Generated a new root certificate authority")
    return CertificateAuthority(key=key, certificate=certificate)


def _subject_alternative_name(host: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(host))
    except ValueError:
        return x509.DNSName(host)


def get_leaf_certificate(
    host: str,
    authority: CertificateAuthority,
    days: int = LEAF_DAYS,
    key_size: int = KEY_SIZE,
) -> LeafCertificate:
    """Issue a certificate for *host* signed by *authority*."""
    host = host.strip("[]")
    key = _new_key(key_size)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, host[:64])])
    certificate = (
        _base_builder(subject, authority.certificate.subject, key.public_key(), days)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .add_extension(x509.AuthorityKeyIdentifier.from_issuer_public_key(authority.key.public_key()), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(x509.KeyUsage(
            digital_signature=True, content_commitment=False, key_encipherment=True,
            data_encipherment=False, key_agreement=False, key_cert_sign=False,
            crl_sign=False, encipher_only=False, decipher_only=False,
        ), critical=True)
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .add_extension(x509.SubjectAlternativeName([_subject_alternative_name(host)]), critical=False)
        .sign(authority.key, hashes.SHA256())
    )
    return LeafCertificate(host=host, key=key, certificate=certificate, issuer=authority.certificate)


# ── Persistence ──────────────────────────────────────────────────────────────

def save_authority(authority: CertificateAuthority, directory: Union[str, Path]) -> CertificateAuthority:
    """Write the authority as PEM files; returns it with ``certificate_path`` set."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    key_path = directory / CA_KEY_FILE
    cert_path = directory / CA_CERT_FILE

    key_path.write_bytes(_key_pem(authority.key))
    key_path.chmod(0o600)
    cert_path.write_bytes(authority.certificate_pem)
    cert_path.chmod(0o644)
    return CertificateAuthority(authority.key, authority.certificate, cert_path)


def load_authority(directory: Union[str, Path]) -> Optional[CertificateAuthority]:
    """Load a previously saved authority, or None when absent, unreadable or expired."""
    directory = Path(directory)
    key_path = directory / CA_KEY_FILE
    cert_path = directory / CA_CERT_FILE
    if not (key_path.exists() and cert_path.exists()):
        return None

    try:
        key = serialization.load_pem_private_key(key_path.read_bytes(), password=None)
        certificate = x509.load_pem_x509_certificate(cert_path.read_bytes())
    except (OSError, ValueError, TypeError) as e:
        logger.warning(f"Ignoring unreadable root authority in {directory}: {e}")
        return None

    if not isinstance(key, rsa.RSAPrivateKey):
        logger.warning(f"Ignoring root authority in {directory}: not an RSA key")
        return None
    if certificate.not_valid_after_utc <= datetime.now(timezone.utc):
        logger.warning(f"Ignoring expired root authority in {directory}")
        return None
    return CertificateAuthority(key=key, certificate=certificate, certificate_path=cert_path)


def load_or_create_authority(directory: Union[str, Path], key_size: int = KEY_SIZE) -> CertificateAuthority:
    """Reuse the authority saved in *directory*, generating and saving one if needed."""
    authority = load_authority(directory)
    if authority is not None:
        logger.info(f"Loaded root authority from {authority.certificate_path}")
        return authority
    return save_authority(generate_root_authority(key_size), directory)


# ── Provider ─────────────────────────────────────────────────────────────────

class CertificateProvider:
    """Issues leaf certificates for one shared authority."""

    def __init__(
        self,
        authority: CertificateAuthority,
        leaf_days: int = LEAF_DAYS,
        key_size: int = KEY_SIZE,
        cache_leaf_certificates: bool = False,
    ):
        self.authority = authority
        self.leaf_days = leaf_days
        self.key_size = key_size
        self.cache_leaf_certificates = cache_leaf_certificates
        self._cache: Dict[str, ssl.SSLContext] = {}
        self._lock = threading.Lock()

    def get_leaf_certificate(self, host: str) -> LeafCertificate:
        return get_leaf_certificate(host, self.authority, days=self.leaf_days, key_size=self.key_size)

    def server_context(self, host: str) -> ssl.SSLContext:
        """TLS context impersonating *host*."""
        if not self.cache_leaf_certificates:
            return self.get_leaf_certificate(host).server_context()

        key = host.lower()
        with self._lock:
            context = self._cache.get(key)
        if context is not None:
            return context

        context = self.get_leaf_certificate(host).server_context()
        with self._lock:
            return self._cache.setdefault(key, context)

    def cached_hosts(self) -> int:
        with self._lock:
            return len(self._cache)

"""
Tests for the HTTP Logger certificate provider.
"""

import ipaddress
import ssl
import stat

from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from httplogger.core.certs import (
    CA_CERT_FILE,
    CA_COMMON_NAME,
    CA_KEY_FILE,
    CertificateProvider,
    get_leaf_certificate,
    load_authority,
    load_or_create_authority,
    save_authority,
)


# ── Root Authority ───────────────────────────────────────────────────────────


class TestRootAuthority:
    def test_is_self_signed_ca(self, authority):
        cert = authority.certificate
        assert cert.subject == cert.issuer
        assert cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value == CA_COMMON_NAME
        constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints)
        assert constraints.critical
        assert constraints.value.ca is True
        usage = cert.extensions.get_extension_for_class(x509.KeyUsage).value
        assert usage.key_cert_sign and usage.crl_sign

    def test_fingerprint_format(self, authority):
        parts = authority.fingerprint.split(":")
        assert len(parts) == 32
        assert all(len(p) == 2 for p in parts)

    def test_pem(self, authority):
        assert authority.certificate_pem.startswith(b"-----BEGIN CERTIFICATE-----")


# ── Leaf Certificates ────────────────────────────────────────────────────────


class TestLeafCertificate:
    def test_dns_host(self, authority):
        leaf = get_leaf_certificate("example.com", authority)
        cert = leaf.certificate
        assert cert.issuer == authority.certificate.subject
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert san.get_values_for_type(x509.DNSName) == ["example.com"]
        assert cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca is False
        eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        assert ExtendedKeyUsageOID.SERVER_AUTH in eku

    def test_ip_host(self, authority):
        leaf = get_leaf_certificate("127.0.0.1", authority)
        san = leaf.certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert san.get_values_for_type(x509.IPAddress) == [ipaddress.ip_address("127.0.0.1")]

    def test_bracketed_ipv6_host(self, authority):
        leaf = get_leaf_certificate("[::1]", authority)
        assert leaf.host == "::1"
        san = leaf.certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert san.get_values_for_type(x509.IPAddress) == [ipaddress.ip_address("::1")]

    def test_signed_by_authority(self, authority):
        leaf = get_leaf_certificate("example.com", authority)
        leaf.certificate.verify_directly_issued_by(authority.certificate)

    def test_chain_pem_contains_issuer(self, authority):
        leaf = get_leaf_certificate("example.com", authority)
        assert leaf.chain_pem.count(b"BEGIN CERTIFICATE") == 2
        assert leaf.chain_pem.endswith(authority.certificate_pem)

    def test_server_context(self, authority):
        context = get_leaf_certificate("example.com", authority).server_context()
        assert isinstance(context, ssl.SSLContext)
        assert context.minimum_version == ssl.TLSVersion.TLSv1_2
        assert context.verify_mode == ssl.CERT_NONE


# ── Persistence ──────────────────────────────────────────────────────────────


class TestPersistence:
    def test_save_and_load(self, tmp_path, authority):
        saved = save_authority(authority, tmp_path)
        assert saved.certificate_path == tmp_path / CA_CERT_FILE
        assert stat.S_IMODE((tmp_path / CA_KEY_FILE).stat().st_mode) == 0o600

        loaded = load_authority(tmp_path)
        assert loaded is not None
        assert loaded.fingerprint == authority.fingerprint

    def test_load_missing(self, tmp_path):
        assert load_authority(tmp_path) is None

    def test_load_unreadable(self, tmp_path):
        (tmp_path / CA_KEY_FILE).write_text("not a key")
        (tmp_path / CA_CERT_FILE).write_text("not a cert")
        assert load_authority(tmp_path) is None

    def test_load_or_create_reuses(self, tmp_path):
        first = load_or_create_authority(tmp_path)
        second = load_or_create_authority(tmp_path)
        assert first.fingerprint == second.fingerprint
        assert (tmp_path / CA_CERT_FILE).exists()


# ── Provider ─────────────────────────────────────────────────────────────────


class TestCertificateProvider:
    def test_fresh_context_per_call_by_default(self, authority):
        provider = CertificateProvider(authority)
        assert provider.server_context("example.com") is not provider.server_context("example.com")
        assert provider.cached_hosts() == 0

    def test_cache_by_host(self, authority):
        provider = CertificateProvider(authority, cache_leaf_certificates=True)
        first = provider.server_context("Example.com")
        assert provider.server_context("example.com") is first
        provider.server_context("other.example")
        assert provider.cached_hosts() == 2

    def test_leaf_days(self, authority):
        provider = CertificateProvider(authority, leaf_days=30)
        cert = provider.get_leaf_certificate("example.com").certificate
        lifetime = cert.not_valid_after_utc - cert.not_valid_before_utc
        assert lifetime.days == 31

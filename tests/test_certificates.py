"""Tests for client certificate resolution and TLS context construction.

Tests cover:
- Host key lookup (hostname vs hostname:port)
- Absolute and relative path resolution, warnings for missing files
- Loading PEM and PKCS#12 identities into an SSLContext
"""

from __future__ import annotations

import datetime
import logging
import ssl
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import (
    BestAvailableEncryption,
    Encoding,
    NoEncryption,
    PrivateFormat,
    pkcs12,
)
from cryptography.x509.oid import NameOID

from rest_runner.certificates import (
    CertificateError,
    CertificateResolver,
    build_ssl_context,
    pfx_to_pem,
)
from rest_runner.models import CertificatePaths, HostCertificate


@pytest.fixture(scope="module")
def key_and_cert() -> tuple[ec.EllipticCurvePrivateKey, x509.Certificate]:
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "rest-runner-client")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    return key, cert


@pytest.fixture
def cert_pem(key_and_cert) -> bytes:
    return key_and_cert[1].public_bytes(Encoding.PEM)


@pytest.fixture
def key_pem(key_and_cert) -> bytes:
    return key_and_cert[0].private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())


class TestCertificateResolver:
    """CertificateResolver maps a request host to identity bytes."""

    def test_no_entry_yields_empty_identity(self) -> None:
        resolver = CertificateResolver({"b.com": CertificatePaths(cert="/nope")})
        identity = resolver.resolve("https://a.com:443/x")
        assert identity == HostCertificate()
        assert identity.is_empty

    def test_port_entry_requires_explicit_port(self, tmp_path: Path) -> None:
        (tmp_path / "c.pem").write_bytes(b"CERT")
        resolver = CertificateResolver(
            {"a.com:8443": CertificatePaths(cert=str(tmp_path / "c.pem"))}
        )
        assert resolver.resolve("https://a.com:8443/").cert == b"CERT"
        assert resolver.resolve("https://a.com/").is_empty

    def test_absolute_paths_loaded(self, tmp_path: Path) -> None:
        (tmp_path / "c.pem").write_bytes(b"CERT")
        (tmp_path / "k.pem").write_bytes(b"KEY")
        (tmp_path / "id.pfx").write_bytes(b"PFX")
        resolver = CertificateResolver(
            {
                "a.com": CertificatePaths(
                    cert=str(tmp_path / "c.pem"),
                    key=str(tmp_path / "k.pem"),
                    pfx=str(tmp_path / "id.pfx"),
                    passphrase="pw",
                )
            }
        )
        identity = resolver.resolve("https://a.com/path")
        assert identity == HostCertificate(cert=b"CERT", key=b"KEY", pfx=b"PFX", passphrase="pw")

    def test_relative_path_against_workspace_root(self, tmp_path: Path) -> None:
        (tmp_path / "certs").mkdir()
        (tmp_path / "certs" / "c.pem").write_bytes(b"CERT")
        resolver = CertificateResolver(
            {"a.com": CertificatePaths(cert="certs/c.pem")}, workspace_root=tmp_path
        )
        assert resolver.resolve("https://a.com/").cert == b"CERT"

    def test_relative_path_against_active_file(self, tmp_path: Path) -> None:
        (tmp_path / "c.pem").write_bytes(b"CERT")
        resolver = CertificateResolver(
            {"a.com": CertificatePaths(cert="c.pem")},
            active_file=tmp_path / "requests.http",
        )
        assert resolver.resolve("https://a.com/").cert == b"CERT"

    def test_missing_file_warns_and_omits_field(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        (tmp_path / "k.pem").write_bytes(b"KEY")
        resolver = CertificateResolver(
            {"a.com": CertificatePaths(cert="missing.pem", key="k.pem")},
            workspace_root=tmp_path,
        )
        with caplog.at_level(logging.WARNING, logger="rest_runner.certificates"):
            identity = resolver.resolve("https://a.com/")

        assert identity.cert is None
        assert identity.key == b"KEY"
        assert "missing.pem" in caplog.text
        assert "cert" in caplog.text

    def test_relative_path_without_any_base_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        resolver = CertificateResolver({"a.com": CertificatePaths(pfx="id.pfx")})
        with caplog.at_level(logging.WARNING, logger="rest_runner.certificates"):
            identity = resolver.resolve("https://a.com/")
        assert identity.pfx is None
        assert "id.pfx" in caplog.text


class TestBuildSslContext:
    """build_ssl_context loads identities and applies verification mode."""

    def test_empty_identity_non_verifying(self) -> None:
        context = build_ssl_context(HostCertificate(), verify=False)
        assert context.verify_mode == ssl.CERT_NONE
        assert context.check_hostname is False

    def test_empty_identity_verifying(self) -> None:
        context = build_ssl_context(HostCertificate(), verify=True)
        assert context.verify_mode == ssl.CERT_REQUIRED

    def test_pem_identity_loads(self, cert_pem: bytes, key_pem: bytes) -> None:
        context = build_ssl_context(HostCertificate(cert=cert_pem, key=key_pem), verify=False)
        assert isinstance(context, ssl.SSLContext)

    def test_combined_pem_without_separate_key(self, cert_pem: bytes, key_pem: bytes) -> None:
        context = build_ssl_context(HostCertificate(cert=cert_pem + key_pem), verify=False)
        assert isinstance(context, ssl.SSLContext)

    def test_encrypted_key_with_passphrase(self, key_and_cert, cert_pem: bytes) -> None:
        encrypted = key_and_cert[0].private_bytes(
            Encoding.PEM, PrivateFormat.PKCS8, BestAvailableEncryption(b"pw")
        )
        identity = HostCertificate(cert=cert_pem, key=encrypted, passphrase="pw")
        assert isinstance(build_ssl_context(identity, verify=False), ssl.SSLContext)

    def test_wrong_passphrase_raises(self, key_and_cert, cert_pem: bytes) -> None:
        encrypted = key_and_cert[0].private_bytes(
            Encoding.PEM, PrivateFormat.PKCS8, BestAvailableEncryption(b"pw")
        )
        identity = HostCertificate(cert=cert_pem, key=encrypted, passphrase="wrong")
        with pytest.raises(CertificateError):
            build_ssl_context(identity, verify=False)

    def test_pfx_identity_loads(self, key_and_cert) -> None:
        key, cert = key_and_cert
        pfx = pkcs12.serialize_key_and_certificates(
            b"client", key, cert, None, BestAvailableEncryption(b"secret")
        )
        context = build_ssl_context(HostCertificate(pfx=pfx, passphrase="secret"), verify=False)
        assert isinstance(context, ssl.SSLContext)


class TestPfxToPem:
    """pfx_to_pem converts PKCS#12 bundles."""

    def test_converts(self, key_and_cert) -> None:
        key, cert = key_and_cert
        pfx = pkcs12.serialize_key_and_certificates(b"client", key, cert, None, NoEncryption())
        chain, key_pem = pfx_to_pem(pfx, None)
        assert chain.startswith(b"-----BEGIN CERTIFICATE-----")
        assert b"PRIVATE KEY" in key_pem

    def test_bad_bundle_raises(self) -> None:
        with pytest.raises(CertificateError):
            pfx_to_pem(b"not a pfx", "pw")

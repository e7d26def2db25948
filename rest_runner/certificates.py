"""Client certificate selection for mutual TLS.

Settings map a host (``example.com`` or ``example.com:8443``) to certificate
file paths. CertificateResolver turns that entry into the bytes offered in the
TLS handshake; build_ssl_context loads those bytes into an SSLContext.
"""

from __future__ import annotations

import logging
import os
import ssl
import tempfile
from pathlib import Path
from typing import Mapping

from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    pkcs12,
)

from rest_runner.models import CertificatePaths, HostCertificate
from rest_runner.urls import host_key

logger = logging.getLogger(__name__)


class CertificateError(Exception):
    """Raised when certificate material cannot be loaded into a TLS context."""


class CertificateResolver:
    """Resolves the client identity configured for a request's host.

    Usage:
        resolver = CertificateResolver(settings.host_certificates, workspace_root=root)
        identity = resolver.resolve("https://api.example.com:8443/items")
    """

    def __init__(
        self,
        host_certificates: Mapping[str, CertificatePaths],
        workspace_root: str | Path | None = None,
        active_file: str | Path | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            host_certificates: host or host:port -> certificate paths.
            workspace_root: Base directory for relative paths.
            active_file: File the request came from. Relative paths resolve
                against its directory when no workspace root is set.
        """
        self._host_certificates = host_certificates
        self._workspace_root = Path(workspace_root) if workspace_root else None
        self._active_file = Path(active_file) if active_file else None

    def resolve(self, url: str) -> HostCertificate:
        """Load the identity for the URL's host, or an empty identity."""
        entry = self._host_certificates.get(host_key(url))
        if entry is None:
            return HostCertificate()

        return HostCertificate(
            cert=self._read(entry.cert, "cert"),
            key=self._read(entry.key, "key"),
            pfx=self._read(entry.pfx, "pfx"),
            passphrase=entry.passphrase,
        )

    def _read(self, configured_path: str | None, cert_name: str) -> bytes | None:
        if not configured_path:
            return None
        full_path = self.resolve_path(configured_path, cert_name)
        if full_path is None:
            return None
        return full_path.read_bytes()

    def resolve_path(self, configured_path: str, cert_name: str) -> Path | None:
        """Resolve a configured certificate path to an existing file.

        Logs a warning and returns None when the file cannot be found; the
        request then proceeds without that material.
        """
        path = Path(configured_path).expanduser()
        if path.is_absolute():
            candidate: Path | None = path
        elif self._workspace_root is not None:
            candidate = self._workspace_root / path
        elif self._active_file is not None:
            candidate = self._active_file.parent / path
        else:
            candidate = None

        if candidate is not None and candidate.exists():
            return candidate

        logger.warning(
            "Certificate path %s of %s doesn't exist, please make sure it exists.",
            configured_path,
            cert_name,
        )
        return None


def pfx_to_pem(pfx: bytes, passphrase: str | None) -> tuple[bytes, bytes]:
    """Convert a PKCS#12 bundle into (certificate chain PEM, private key PEM).

    Raises:
        CertificateError: If the bundle cannot be decrypted or holds no
            certificate/key pair.
    """
    password = passphrase.encode("utf-8") if passphrase else None
    try:
        key, cert, additional = pkcs12.load_key_and_certificates(pfx, password)
    except ValueError as e:
        raise CertificateError(f"Invalid pfx bundle: {e}") from e

    if key is None or cert is None:
        raise CertificateError("pfx bundle must contain a certificate and a private key")

    chain = cert.public_bytes(Encoding.PEM)
    for extra in additional:
        chain += extra.public_bytes(Encoding.PEM)
    key_pem = key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    return chain, key_pem


def build_ssl_context(identity: HostCertificate, verify: bool) -> ssl.SSLContext:
    """Create the TLS context for one request.

    Args:
        identity: Client identity to present (may be empty).
        verify: Whether server certificates are verified.

    Returns:
        SSLContext with the client certificate chain loaded, if any.

    Raises:
        CertificateError: If the identity material is unusable.
    """
    ssl_context = ssl.create_default_context()
    if not verify:
        ssl_context.check_hostname = False
        ssl_context.verify_mode = ssl.CERT_NONE

    if identity.pfx is not None:
        cert, key = pfx_to_pem(identity.pfx, identity.passphrase)
        password = None
    elif identity.cert is not None:
        cert, key = identity.cert, identity.key
        password = identity.passphrase
    else:
        return ssl_context

    # load_cert_chain only accepts file paths.
    with tempfile.TemporaryDirectory(prefix="rest-runner-") as tmp_dir:
        cert_file = os.path.join(tmp_dir, "cert.pem")
        Path(cert_file).write_bytes(cert)
        key_file = None
        if key is not None:
            key_file = os.path.join(tmp_dir, "key.pem")
            Path(key_file).write_bytes(key)
        try:
            ssl_context.load_cert_chain(cert_file, key_file, password=password)
        except (ssl.SSLError, ValueError) as e:
            raise CertificateError(f"Unable to load client certificate: {e}") from e

    return ssl_context

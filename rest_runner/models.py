"""Internal data models for rest-runner.

All models use Pydantic v2. Header collections are HeaderMap instances so that
lookups are case-insensitive everywhere a model exposes headers.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from rest_runner.headers import HeaderMap, get_header_value


# =============================================================================
# Core HTTP Models
# =============================================================================


class HttpRequest(BaseModel):
    """One outbound HTTP request before transport-specific encoding.

    url is kept exactly as written (not percent-encoded). It is None only when
    a request parser could not find one; the executor rejects such requests.
    encoded_body, when set, is what goes on the wire instead of body.
    """

    model_config = ConfigDict(extra="forbid", ser_json_bytes="base64", val_json_bytes="base64")

    method: str = Field(default="GET", description="HTTP method (GET, POST, etc.)")
    url: str | None = Field(default=None, description="Target URL as written")
    headers: HeaderMap = Field(default_factory=HeaderMap, description="Request headers")
    body: str | bytes | None = Field(default=None, description="Request body")
    encoded_body: str | bytes | None = Field(
        default=None, description="Pre-encoded body variant used for transmission"
    )


class TimingPhases(BaseModel):
    """Latency breakdown of one exchange, in milliseconds."""

    model_config = ConfigDict(extra="forbid")

    total: float = Field(default=0.0, ge=0, description="Whole exchange")
    wait: float = Field(default=0.0, ge=0, description="Until a connection was available")
    dns: float = Field(default=0.0, ge=0, description="Name resolution")
    tcp: float = Field(default=0.0, ge=0, description="Connection setup")
    first_byte: float = Field(default=0.0, ge=0, description="Request sent until response headers")
    download: float = Field(default=0.0, ge=0, description="Response body transfer")


class HttpResponse(BaseModel):
    """One completed HTTP exchange, charset-decoded and size-annotated.

    Header names carry their wire casing; lowercase lookups hit the same
    entries. body_size_in_bytes counts received bytes, not characters.
    Repeated Set-Cookie lines are comma-joined in headers, which is ambiguous
    because Expires dates contain commas; set_cookies keeps them apart.
    """

    model_config = ConfigDict(extra="forbid", ser_json_bytes="base64", val_json_bytes="base64")

    status_code: int = Field(description="HTTP status code")
    status_message: str = Field(default="", description="Reason phrase")
    http_version: str = Field(default="1.1", description="Protocol version")
    headers: HeaderMap = Field(default_factory=HeaderMap, description="Response headers")
    set_cookies: list[str] = Field(
        default_factory=list, description="Each Set-Cookie line as received"
    )
    body: str = Field(default="", description="Decoded body")
    elapsed_ms: float = Field(default=0.0, description="Response time in milliseconds")
    request_url: str = Field(description="URL the request was sent to")
    body_size_in_bytes: int = Field(default=0, description="Received body bytes")
    headers_size_in_bytes: int = Field(default=0, description="Estimated received header bytes")
    body_bytes: bytes = Field(default=b"", description="Body bytes before charset decoding")
    timing_phases: TimingPhases = Field(default_factory=TimingPhases)

    @property
    def content_type(self) -> str | None:
        return get_header_value(self.headers, "Content-Type")


# =============================================================================
# Client Identity Models
# =============================================================================


class HostCertificate(BaseModel):
    """Client TLS identity offered to one host. All fields optional."""

    model_config = ConfigDict(
        extra="forbid", frozen=True, ser_json_bytes="base64", val_json_bytes="base64"
    )

    cert: bytes | None = None
    key: bytes | None = None
    pfx: bytes | None = None
    passphrase: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.cert is None and self.key is None and self.pfx is None


class CertificatePaths(BaseModel):
    """Settings entry naming the certificate files for one host.

    Paths may be absolute or relative to the workspace root.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    cert: str | None = Field(default=None, description="PEM certificate path")
    key: str | None = Field(default=None, description="PEM private key path")
    pfx: str | None = Field(default=None, description="PKCS#12 bundle path")
    passphrase: str | None = Field(default=None, description="Key or bundle passphrase")


# =============================================================================
# Runtime Configuration Models
# =============================================================================


class ClientSettings(BaseModel):
    """Settings snapshot consulted for one request. Immutable."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    timeout_ms: int = Field(default=0, ge=0, description="Request timeout, 0 disables it")
    follow_redirect: bool = Field(default=True, description="Follow 3xx redirects")
    proxy: str | None = Field(default=None, description="Forward proxy URL")
    proxy_strict_ssl: bool = Field(
        default=False, description="Verify TLS when a proxy is in effect"
    )
    exclude_hosts_for_proxy: list[str] = Field(
        default_factory=list, description="host or host:port entries that skip the proxy"
    )
    remember_cookies: bool = Field(
        default=True, description="Persist cookies across requests"
    )
    default_user_agent: str = Field(
        default="rest-runner", description="User-Agent sent when the request has none"
    )
    host_certificates: dict[str, CertificatePaths] = Field(
        default_factory=dict, description="host or host:port -> client certificate files"
    )

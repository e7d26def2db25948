"""Executor - Sends HTTP requests and captures normalized responses.

The Executor turns an HttpRequest plus a ClientSettings snapshot into one
outbound httpx call: authentication shorthand, per-host client certificate,
proxy bypass rules, cookie persistence and a default User-Agent are applied
before dispatch. The response is streamed to account for its size and
handed to the normalizer for charset decoding and header case restoration.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
import time
from typing import Any, Callable

import httpx

from rest_runner.auth import detect_auth
from rest_runner.certificates import CertificateError, CertificateResolver, build_ssl_context
from rest_runner.cookie_store import CookieStore, disabled_cookie_jar
from rest_runner.models import ClientSettings, HostCertificate, HttpRequest, HttpResponse, TimingPhases
from rest_runner.normalizer import RawResponse, normalize_response
from rest_runner.proxy import should_bypass_proxy
from rest_runner.urls import encode_url

logger = logging.getLogger(__name__)


class ExecutorError(Exception):
    """Base class for executor errors."""


class RequestError(ExecutorError):
    """Raised when a request fails (connection error, timeout, etc.)."""


# Transport messages for a malformed header name. Both usually mean the blank
# line between headers and body is missing.
_INVALID_HEADER_PREFIXES = (
    "Header name must be a valid HTTP Token",
    "Illegal header name",
)
_INVALID_HEADER_MESSAGE = (
    "Header must be in 'header name: header value' format, "
    "please also make sure there is a blank line between headers and body"
)

TransportFactory = Callable[[httpx.Proxy | None, ssl.SSLContext], httpx.AsyncBaseTransport]


def _default_transport_factory(
    proxy: httpx.Proxy | None, ssl_context: ssl.SSLContext
) -> httpx.AsyncBaseTransport:
    return httpx.AsyncHTTPTransport(verify=ssl_context, proxy=proxy)


def _rewrite_error_message(message: str) -> str:
    if message.startswith(_INVALID_HEADER_PREFIXES):
        return _INVALID_HEADER_MESSAGE
    return message


def _raw_headers_size(raw_headers: list[tuple[bytes, bytes]]) -> int:
    """Estimate received header bytes: names and values plus one per pair.

    The per-pair byte approximates the ': ' separator overhead.
    """
    size = sum(len(name) + len(value) for name, value in raw_headers)
    return size + len(raw_headers)


class _SharedTransport(httpx.AsyncBaseTransport):
    """Wraps a pooled transport so closing a per-call client keeps it alive."""

    def __init__(self, transport: httpx.AsyncBaseTransport) -> None:
        self._transport = transport

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._transport.handle_async_request(request)

    async def aclose(self) -> None:
        pass


class _TimingRecorder:
    """Collects httpcore trace events and derives timing phases.

    Only the latest occurrence of each event is kept, so after a redirect the
    connection phases describe the final hop.
    """

    def __init__(self) -> None:
        self._start = time.perf_counter()
        self._events: dict[str, float] = {}

    async def trace(self, event_name: str, info: dict[str, Any]) -> None:
        self._events[event_name] = time.perf_counter()

    def _find(self, suffix: str) -> float | None:
        for name, timestamp in self._events.items():
            if name.endswith(suffix):
                return timestamp
        return None

    def phases(self, end: float) -> TimingPhases:
        connect_start = self._find(".connect_tcp.started")
        connect_end = self._find(".start_tls.complete") or self._find(".connect_tcp.complete")
        send_start = self._find(".send_request_headers.started")
        headers_done = self._find(".receive_response_headers.complete")

        def ms(later: float | None, earlier: float | None) -> float:
            if later is None or earlier is None:
                return 0.0
            return max(0.0, (later - earlier) * 1000)

        first_activity = connect_start or send_start or end
        return TimingPhases(
            total=ms(end, self._start),
            wait=ms(first_activity, self._start),
            # httpcore resolves names inside connect_tcp; DNS time is part of tcp.
            dns=0.0,
            tcp=ms(connect_end, connect_start),
            first_byte=ms(headers_done, send_start),
            download=ms(end, headers_done),
        )


class _TransportPool:
    """Keep-alive transports shared across calls.

    One transport exists per (proxy, TLS strictness, client identity), since
    each of those is fixed when a connection is established.
    """

    def __init__(self, factory: TransportFactory) -> None:
        self._factory = factory
        self._transports: dict[tuple[str | None, bool, HostCertificate], httpx.AsyncBaseTransport] = {}

    def get(
        self,
        proxy_url: str | None,
        strict_ssl: bool,
        identity: HostCertificate,
    ) -> httpx.AsyncBaseTransport:
        key = (proxy_url, strict_ssl, identity)
        transport = self._transports.get(key)
        if transport is None:
            ssl_context = build_ssl_context(identity, verify=strict_ssl)
            proxy = httpx.Proxy(proxy_url, ssl_context=ssl_context) if proxy_url else None
            transport = self._factory(proxy, ssl_context)
            self._transports[key] = transport
        return transport

    async def aclose(self) -> None:
        transports = list(self._transports.values())
        self._transports.clear()
        for transport in transports:
            await transport.aclose()


class Executor:
    """Sends requests built from HttpRequest models.

    Usage:
        async with Executor(settings) as executor:
            response = await executor.send(request)

    The cookie store is the only state deliberately shared between calls. It
    is created at the default path when cookies are remembered and no store
    is injected.
    """

    def __init__(
        self,
        settings: ClientSettings,
        cookie_store: CookieStore | None = None,
        certificate_resolver: CertificateResolver | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            settings: Settings snapshot applied to every request.
            cookie_store: Shared cookie persistence handle.
            certificate_resolver: Resolver for per-host client certificates.
                Defaults to one built from settings.host_certificates.
            transport_factory: Builds a transport from (proxy, ssl_context).
                Defaults to httpx.AsyncHTTPTransport.
        """
        self._settings = settings
        if cookie_store is None and settings.remember_cookies:
            cookie_store = CookieStore()
        self._cookie_store = cookie_store
        self._certificate_resolver = certificate_resolver or CertificateResolver(
            settings.host_certificates
        )
        self._pool = _TransportPool(transport_factory or _default_transport_factory)

    async def __aenter__(self) -> "Executor":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close pooled transports."""
        await self._pool.aclose()

    def _timeout(self) -> httpx.Timeout:
        if self._settings.timeout_ms > 0:
            return httpx.Timeout(self._settings.timeout_ms / 1000)
        return httpx.Timeout(None)

    async def send(self, request: HttpRequest) -> HttpResponse:
        """Send a request and return the normalized response.

        request.headers receives the default User-Agent when it has none or an
        empty one, so callers see the headers that were actually sent.

        Args:
            request: The request to send.

        Returns:
            HttpResponse with decoded body, restored header casing, sizes and
            timing phases.

        Raises:
            RequestError: If the URL is missing, the certificate material is
                unusable, or the transport fails.
        """
        if not request.url:
            raise RequestError("Request URL is missing")

        settings = self._settings
        url = encode_url(request.url)

        if not request.headers.get("User-Agent"):
            request.headers["User-Agent"] = settings.default_user_agent

        content = request.encoded_body if request.encoded_body is not None else request.body

        credentials = detect_auth(request.headers)
        auth = credentials.to_httpx_auth() if credentials else None

        # File reads stay off the event loop.
        identity = await asyncio.to_thread(self._certificate_resolver.resolve, request.url)

        if should_bypass_proxy(request.url, settings.exclude_hosts_for_proxy):
            proxy_url = None
        else:
            proxy_url = settings.proxy or None
        strict_ssl = settings.proxy_strict_ssl if proxy_url else False

        try:
            transport = self._pool.get(proxy_url, strict_ssl, identity)
        except CertificateError as e:
            raise RequestError(str(e)) from e

        if settings.remember_cookies and self._cookie_store is not None:
            cookies = self._cookie_store.jar
        else:
            cookies = disabled_cookie_jar()

        logger.debug("%s %s%s", request.method, url, " via proxy" if proxy_url else "")

        client = httpx.AsyncClient(
            transport=_SharedTransport(transport),
            cookies=cookies,
            timeout=self._timeout(),
            follow_redirects=settings.follow_redirect,
            trust_env=False,
        )

        recorder = _TimingRecorder()
        body_size = 0
        headers_size = 0
        chunks: list[bytes] = []

        try:
            start_time = time.perf_counter()

            async with client:
                async with client.stream(
                    request.method,
                    url,
                    headers=list(request.headers.items()),
                    content=content,
                    auth=auth,
                    extensions={"trace": recorder.trace},
                ) as http_response:
                    headers_size += _raw_headers_size(http_response.headers.raw)
                    async for chunk in http_response.aiter_bytes():
                        body_size += len(chunk)
                        chunks.append(chunk)

            end_time = time.perf_counter()

        except httpx.HTTPError as e:
            raise RequestError(_rewrite_error_message(str(e))) from e
        except httpx.InvalidURL as e:
            raise RequestError(f"Invalid URL: {e}") from e
        except UnicodeEncodeError as e:
            # Non-ASCII in a header name or value; HTTP requires ASCII there.
            raise RequestError(
                f"Encoding error: non-ASCII character {e.object[e.start:e.end]!r} "
                f"in request headers. HTTP requires ASCII for header fields."
            ) from e
        finally:
            if settings.remember_cookies and self._cookie_store is not None:
                await asyncio.to_thread(self._cookie_store.save)

        return self._convert_response(
            http_response,
            request_url=request.url,
            body_bytes=b"".join(chunks),
            elapsed_ms=(end_time - start_time) * 1000,
            body_size=body_size,
            headers_size=headers_size,
            timing_phases=recorder.phases(end_time),
        )

    @staticmethod
    def _convert_response(
        response: httpx.Response,
        request_url: str,
        body_bytes: bytes,
        elapsed_ms: float,
        body_size: int,
        headers_size: int,
        timing_phases: TimingPhases,
    ) -> HttpResponse:
        """Convert an httpx Response to the HttpResponse model."""
        http_version = response.http_version
        if http_version.startswith("HTTP/"):
            http_version = http_version[len("HTTP/"):]

        raw = RawResponse(
            status_code=response.status_code,
            request_url=request_url,
            status_message=response.reason_phrase,
            http_version=http_version,
            headers=dict(response.headers.items()),
            raw_header_names=[name.decode("latin-1") for name, _ in response.headers.raw],
            set_cookie_lines=response.headers.get_list("set-cookie"),
            body_bytes=body_bytes,
            elapsed_ms=elapsed_ms,
            body_size_in_bytes=body_size,
            headers_size_in_bytes=headers_size,
            timing_phases=timing_phases,
        )
        return normalize_response(raw)

"""Pytest configuration and fixtures for rest-runner tests.

This file provides:
- make_settings / make_executor: Executors wired to httpx.MockTransport
- LocalServer: Threaded HTTP server for tests that need a real socket
- Hooks: unit/integration markers by directory
"""

from __future__ import annotations

import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Callable, Generator

import httpx
import pytest

from rest_runner.cookie_store import CookieStore
from rest_runner.executor import Executor
from rest_runner.models import ClientSettings

Handler = Callable[[httpx.Request], httpx.Response]


def make_settings(**overrides: Any) -> ClientSettings:
    """Create ClientSettings for tests.

    Cookie persistence is off by default so tests never touch the user's
    home directory; pass remember_cookies=True together with a CookieStore.
    """
    values: dict[str, Any] = {"remember_cookies": False, "default_user_agent": "rest-runner-tests"}
    values.update(overrides)
    return ClientSettings(**values)


class RecordingTransportFactory:
    """Transport factory that records its arguments and serves a handler."""

    def __init__(self, handler: Handler) -> None:
        self.handler = handler
        self.calls: list[tuple[httpx.Proxy | None, Any]] = []

    def __call__(self, proxy: httpx.Proxy | None, ssl_context: Any) -> httpx.AsyncBaseTransport:
        self.calls.append((proxy, ssl_context))
        return httpx.MockTransport(self.handler)


def make_executor(
    handler: Handler,
    settings: ClientSettings | None = None,
    cookie_store: CookieStore | None = None,
    **kwargs: Any,
) -> tuple[Executor, RecordingTransportFactory]:
    """Create an Executor whose transports are MockTransports over handler."""
    factory = RecordingTransportFactory(handler)
    executor = Executor(
        settings or make_settings(),
        cookie_store=cookie_store,
        transport_factory=factory,
        **kwargs,
    )
    return executor, factory


@pytest.fixture
def settings_factory() -> Callable[..., ClientSettings]:
    return make_settings


@pytest.fixture
def executor_factory() -> Callable[..., tuple[Executor, RecordingTransportFactory]]:
    return make_executor


@pytest.fixture
def cookie_store(tmp_path: Path) -> CookieStore:
    return CookieStore(tmp_path / "cookies.txt")


class _LocalHandler(BaseHTTPRequestHandler):
    """Serves a fixed set of paths used by integration tests."""

    protocol_version = "HTTP/1.1"

    def log_message(self, format: str, *args: Any) -> None:
        pass

    def _send(self, status: int, headers: list[tuple[str, str]], body: bytes) -> None:
        self.send_response(status)
        for name, value in headers:
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self) -> None:
        if self.path == "/latin1":
            body = "café".encode("latin-1")
            self._send(200, [("Content-Type", "text/plain; charset=iso-8859-1"), ("X-Custom-Id", "42")], body)
        elif self.path == "/echo-agent":
            agent = self.headers.get("User-Agent", "")
            self._send(200, [("Content-Type", "text/plain")], agent.encode("utf-8"))
        elif self.path == "/redirect":
            self._send(302, [("Location", "/latin1")], b"")
        else:
            self._send(404, [("Content-Type", "text/plain")], b"not found")


class LocalServer:
    """Threaded HTTP server bound to an OS-assigned port on localhost.

    Binding to port 0 and reading the port back avoids reservation races.
    """

    def __init__(self) -> None:
        self._server = ThreadingHTTPServer(("127.0.0.1", 0), _LocalHandler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    @property
    def base_url(self) -> str:
        host, port = self._server.server_address[:2]
        return f"http://{host}:{port}"

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=5)


@pytest.fixture
def local_server() -> Generator[LocalServer, None, None]:
    server = LocalServer()
    server.start()
    try:
        yield server
    finally:
        server.stop()


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Automatically apply markers based on test location.

    Enables running subsets via:
        pytest -m integration  # only integration tests
        pytest -m unit         # only unit tests
    """
    for item in items:
        test_path = Path(item.fspath)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)

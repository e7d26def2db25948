"""File-backed cookie persistence shared across requests.

The store is created once and handed to every executor that should remember
cookies. It serializes its own file access; callers do no locking.
"""

from __future__ import annotations

import threading
from http.cookiejar import Cookie, CookieJar, DefaultCookiePolicy, MozillaCookieJar
from pathlib import Path
from typing import Any

DEFAULT_COOKIE_PATH = Path.home() / ".rest-runner" / "cookies.txt"


class CookieStore:
    """Cookie jar persisted to a Netscape-format cookies file.

    Usage:
        store = CookieStore(path)
        async with Executor(settings, cookie_store=store) as executor:
            ...  # cookies set by responses are saved after each request
    """

    def __init__(self, path: str | Path = DEFAULT_COOKIE_PATH) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._jar = MozillaCookieJar(str(self._path))
        self._ensure_file()
        self.load()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def jar(self) -> MozillaCookieJar:
        return self._jar

    def _ensure_file(self) -> None:
        if self._path.exists():
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.touch()

    def load(self) -> None:
        """Reload cookies from disk. An empty file is an empty jar."""
        with self._lock:
            if self._path.stat().st_size == 0:
                return
            self._jar.load(ignore_discard=True, ignore_expires=False)

    def save(self) -> None:
        """Write the jar to disk, session cookies included."""
        with self._lock:
            self._jar.save(ignore_discard=True, ignore_expires=False)

    def clear(self) -> None:
        """Drop every cookie and truncate the file."""
        with self._lock:
            self._jar.clear()
            self._jar.save(ignore_discard=True)


class _RejectAllPolicy(DefaultCookiePolicy):
    """Cookie policy that neither stores nor returns any cookie."""

    def set_ok(self, cookie: Cookie, request: Any) -> bool:
        return False

    def return_ok(self, cookie: Cookie, request: Any) -> bool:
        return False


def disabled_cookie_jar() -> CookieJar:
    """Jar used when cookie persistence is off: nothing is kept or sent."""
    return CookieJar(policy=_RejectAllPolicy())

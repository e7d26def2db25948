"""URL helpers used by the executor and host-keyed lookups."""

from __future__ import annotations

import re
from urllib.parse import quote, urlsplit

# Characters outside this set (or a '%' not starting a valid escape) are
# percent-encoded. Reserved URL characters and existing escapes pass through.
_ENCODE_CHARS = re.compile(
    r"(?:[^\x21\x23-\x3B\x3D\x3F-\x5F\x61-\x7A\x7C\x7E]|%(?![0-9A-Fa-f]{2}))+"
)


def encode_url(url: str) -> str:
    """Percent-encode a URL without double-encoding existing escapes.

    Unlike quote(), reserved characters such as '/', '?', '&' and '#' keep
    their meaning, so the function is safe to apply to a complete URL.

    Args:
        url: URL as the user wrote it.

    Returns:
        URL with spaces, non-ASCII and other unsafe characters encoded as
        UTF-8 percent escapes.
    """
    return _ENCODE_CHARS.sub(
        lambda match: quote(match.group(0), safe="", errors="surrogatepass"),
        url,
    )


def split_host(url: str) -> tuple[str, str | None]:
    """Return (lowercase hostname, port as written or None).

    Default ports are not filled in: ``https://a.com`` yields ``None`` while
    ``https://a.com:443`` yields ``"443"``.
    """
    parts = urlsplit(url)
    hostname = parts.hostname or ""
    netloc = parts.netloc.rpartition("@")[2]
    port: str | None = None
    if netloc.startswith("["):
        # IPv6 literal: the port follows the closing bracket.
        _, _, tail = netloc.partition("]")
        if tail.startswith(":") and tail[1:]:
            port = tail[1:]
    else:
        _, separator, candidate = netloc.partition(":")
        if separator and candidate:
            port = candidate
    return hostname, port


def host_key(url: str) -> str:
    """Lookup key for host-keyed settings: ``hostname`` or ``hostname:port``."""
    hostname, port = split_host(url)
    return f"{hostname}:{port}" if port else hostname

"""Response normalization: charset decoding and header case restoration.

The transport hands back lowercase header keys plus the raw header names as
they appeared on the wire. RawResponse captures that transport view; the
functions here turn it into the HttpResponse model.
"""

from __future__ import annotations

import codecs
import logging
from dataclasses import dataclass, field
from email.message import Message
from typing import Iterable, Mapping

from rest_runner.headers import HeaderMap, get_header_value
from rest_runner.models import HttpResponse, TimingPhases

logger = logging.getLogger(__name__)

DEFAULT_CHARSET = "utf-8"


@dataclass
class RawResponse:
    """Transport-level view of a completed response.

    headers has lowercase keys; raw_header_names keeps the wire spelling of
    every received header line, in order (repeats included). set_cookie_lines
    holds each Set-Cookie value separately, since headers joins repeats with
    commas.
    """

    status_code: int
    request_url: str
    status_message: str = ""
    http_version: str = "1.1"
    headers: Mapping[str, str] = field(default_factory=dict)
    raw_header_names: list[str] = field(default_factory=list)
    set_cookie_lines: list[str] = field(default_factory=list)
    body_bytes: bytes = b""
    elapsed_ms: float = 0.0
    body_size_in_bytes: int = 0
    headers_size_in_bytes: int = 0
    timing_phases: TimingPhases = field(default_factory=TimingPhases)


def resolve_charset(content_type: str | None) -> str:
    """Charset parameter of a Content-Type value, or utf-8."""
    if not content_type:
        return DEFAULT_CHARSET
    message = Message()
    message["content-type"] = content_type
    try:
        charset = message.get_param("charset")
    except (ValueError, TypeError):
        return DEFAULT_CHARSET
    if isinstance(charset, tuple):
        # RFC 2231 encoded parameter: (charset, language, value)
        charset = charset[2]
    if not charset or not isinstance(charset, str):
        return DEFAULT_CHARSET
    return charset.strip().strip('"') or DEFAULT_CHARSET


def _is_utf8(charset: str) -> bool:
    try:
        return codecs.lookup(charset).name == "utf-8"
    except LookupError:
        return False


def decode_body(data: bytes, charset: str) -> str:
    """Decode body bytes, degrading to UTF-8 instead of raising.

    An unknown charset or bytes that are invalid for it fall back to UTF-8;
    bytes that are not valid UTF-8 either are replaced with U+FFFD.
    """
    try:
        return data.decode(charset)
    except (LookupError, UnicodeDecodeError) as e:
        logger.debug("Decoding body as %s failed (%s), falling back to utf-8", charset, e)
        if not _is_utf8(charset):
            try:
                return data.decode(DEFAULT_CHARSET)
            except UnicodeDecodeError:
                pass
        return data.decode(DEFAULT_CHARSET, errors="replace")


def restore_header_case(
    headers: Mapping[str, str],
    raw_header_names: Iterable[str],
) -> HeaderMap:
    """Rebuild headers under their original wire casing.

    Each transport key is stored once under the restored spelling when the
    raw name list has one (the last spelling seen wins), otherwise under the
    transport key. The returned HeaderMap resolves both the original and the
    lowercase spelling to that single entry.
    """
    original_names = {name.lower(): name for name in raw_header_names}

    restored = HeaderMap()
    for key, value in headers.items():
        restored[original_names.get(key.lower(), key)] = value
    return restored


def normalize_response(raw: RawResponse) -> HttpResponse:
    """Convert a transport response into the HttpResponse model."""
    charset = resolve_charset(get_header_value(raw.headers, "Content-Type"))

    return HttpResponse(
        status_code=raw.status_code,
        status_message=raw.status_message,
        http_version=raw.http_version,
        headers=restore_header_case(raw.headers, raw.raw_header_names),
        set_cookies=list(raw.set_cookie_lines),
        body=decode_body(raw.body_bytes, charset),
        elapsed_ms=raw.elapsed_ms,
        request_url=raw.request_url,
        body_size_in_bytes=raw.body_size_in_bytes,
        headers_size_in_bytes=raw.headers_size_in_bytes,
        body_bytes=raw.body_bytes,
        timing_phases=raw.timing_phases,
    )

"""Curl command parser - Converts curl-style text into an HttpRequest.

Only the flags needed to populate the request model are understood:
-X/--request, -H/--header, -u/--user, -d/--data/--data-binary/--data-raw and
the URL. Other flags are skipped.

URL fallback: when no positional URL follows the command, the values of
-L/--location, --compressed and --url are tried in that order. Real curl
treats -L and --compressed as switches; they pick up the URL here because a
value-less flag swallows the next token. The behaviour is kept for
compatibility with existing request files and is not authoritative curl
semantics.
"""

from __future__ import annotations

import argparse
import base64
import re
import shlex
from pathlib import Path
from typing import NoReturn

from rest_runner.headers import HeaderMap, parse_request_headers
from rest_runner.models import HttpRequest


class CurlParseError(ValueError):
    """Raised when curl text cannot be tokenized or its flags are malformed."""


_LINE_CONTINUATION = re.compile(r"\\\r|\\\n")
_MULTIPLE_SPACES = re.compile(r"\s{2,}")

# Common curl switches that never take a value. Any other unknown flag is
# assumed to consume the token that follows it.
_SWITCHES = frozenset({
    "-k", "--insecure",
    "-s", "--silent",
    "-S", "--show-error",
    "-v", "--verbose",
    "-i", "--include",
    "-I", "--head",
    "-f", "--fail",
    "-g", "--globoff",
    "-N", "--no-buffer",
    "-#", "--progress-bar",
    "--http1.0", "--http1.1", "--http2", "--http2-prior-knowledge",
})


class _CurlArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises instead of exiting the process."""

    def error(self, message: str) -> NoReturn:
        raise CurlParseError(message)


def _build_argument_parser() -> argparse.ArgumentParser:
    parser = _CurlArgumentParser(prog="curl", add_help=False, allow_abbrev=False)
    parser.add_argument("-X", "--request", dest="method")
    parser.add_argument("-H", "--header", dest="headers", action="append", default=[])
    parser.add_argument("-u", "--user", dest="user")
    parser.add_argument("-d", dest="d")
    parser.add_argument("--data", dest="data")
    parser.add_argument("--data-binary", dest="data_binary")
    parser.add_argument("--data-raw", dest="data_raw")
    parser.add_argument("-L", "--location", dest="location", nargs="?", const=True)
    parser.add_argument("--compressed", dest="compressed", nargs="?", const=True)
    parser.add_argument("--url", dest="url")
    return parser


def _preprocess(text: str) -> str:
    """Join continued lines and collapse whitespace runs into one space."""
    return _MULTIPLE_SPACES.sub(" ", _LINE_CONTINUATION.sub("", text.strip()))


def _positionals(extras: list[str]) -> list[str]:
    """Positional words left after known flags, skipping unknown flags.

    An unknown flag (other than a known switch) takes the next token as its
    value unless that token is itself a flag or the flag was written as
    ``--name=value``.
    """
    words: list[str] = []
    index = 0
    while index < len(extras):
        token = extras[index]
        if token.startswith("-") and len(token) > 1:
            takes_value = token not in _SWITCHES and "=" not in token
            next_is_value = index + 1 < len(extras) and not extras[index + 1].startswith("-")
            index += 2 if takes_value and next_is_value else 1
            continue
        words.append(token)
        index += 1
    return words


def _url_fallback(arguments: argparse.Namespace) -> str | None:
    for candidate in (arguments.location, arguments.compressed, arguments.url):
        if isinstance(candidate, str) and candidate:
            return candidate
    return None


class CurlRequestParser:
    """Parses curl command text into HttpRequest models.

    Usage:
        request = CurlRequestParser().parse_http_request(
            "curl -X POST -H 'Content-Type: application/json' -d '{}' http://host/api"
        )
    """

    def __init__(self) -> None:
        self._argument_parser = _build_argument_parser()

    def parse_http_request(
        self,
        request_raw_text: str,
        request_absolute_file_path: str | Path | None = None,
        parse_file_content_as_stream: bool = False,
    ) -> HttpRequest:
        """Parse curl text into a request.

        Args:
            request_raw_text: curl invocation, possibly spread over lines
                joined with trailing backslashes.
            request_absolute_file_path: File the text came from. Accepted for
                parity with other request parsers; unused.
            parse_file_content_as_stream: Accepted for parity with other
                request parsers; unused.

        Returns:
            HttpRequest with body and encoded_body both set to the parsed
            body. url is None when the text names no URL.

        Raises:
            CurlParseError: If quoting is unbalanced or a flag lacks its value.
        """
        text = _preprocess(request_raw_text)
        try:
            tokens = shlex.split(text)
        except ValueError as e:
            raise CurlParseError(f"Unable to tokenize curl command: {e}") from e

        arguments, extras = self._argument_parser.parse_known_args(tokens)

        words = _positionals(extras)
        url = words[1] if len(words) > 1 else _url_fallback(arguments)

        headers = parse_request_headers(arguments.headers) if arguments.headers else HeaderMap()

        if arguments.user:
            encoded = base64.b64encode(arguments.user.encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {encoded}"

        # An empty value counts as given: `-d ''` posts an empty body and
        # shadows the data flags ranked after it.
        body = next(
            (
                value
                for value in (arguments.d, arguments.data, arguments.data_binary, arguments.data_raw)
                if value is not None
            ),
            None,
        )

        method = arguments.method or ("POST" if body is not None else "GET")

        return HttpRequest(
            method=method,
            url=url,
            headers=headers,
            body=body,
            encoded_body=body,
        )


def parse_curl(request_raw_text: str) -> HttpRequest:
    """Parse curl text with a fresh CurlRequestParser."""
    return CurlRequestParser().parse_http_request(request_raw_text)

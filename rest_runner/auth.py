"""Authorization header shorthand detection.

Users may write ``Authorization: Basic alice s3cret`` or
``Authorization: Digest alice s3cret`` instead of an encoded header. This
module turns that shorthand into httpx auth so the transport performs the
real scheme. Well-formed encoded headers are left alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

import httpx

from rest_runner.headers import get_header_value

_SHORTHAND_SCHEMES = ("Basic", "Digest")


@dataclass(frozen=True)
class TransportCredentials:
    """Username/password handed to the transport.

    send_immediately is True for Basic (no challenge round-trip) and False
    for Digest (credentials wait for the server's 401 challenge).
    """

    username: str
    password: str
    send_immediately: bool

    def to_httpx_auth(self) -> httpx.Auth:
        if self.send_immediately:
            return httpx.BasicAuth(self.username, self.password)
        return httpx.DigestAuth(self.username, self.password)


def detect_auth(headers: Mapping[str, str] | None) -> TransportCredentials | None:
    """Extract transport credentials from an Authorization shorthand.

    Args:
        headers: Request headers (any casing).

    Returns:
        Credentials when the header is ``<Basic|Digest> <user> <password>``,
        otherwise None. The header itself is never modified.
    """
    authorization = get_header_value(headers, "Authorization")
    if not authorization:
        return None

    scheme, separator, rest = authorization.partition(" ")
    if not separator or scheme not in _SHORTHAND_SCHEMES:
        return None

    params = rest.strip().split(" ")
    if len(params) != 2:
        return None

    return TransportCredentials(
        username=params[0],
        password=params[1],
        send_immediately=scheme == "Basic",
    )

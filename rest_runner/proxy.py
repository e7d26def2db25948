"""Per-request proxy bypass rules."""

from __future__ import annotations

from typing import Iterable

from rest_runner.urls import split_host


def should_bypass_proxy(url: str, exclude_hosts: Iterable[str] | None) -> bool:
    """Decide whether the configured proxy is skipped for ``url``.

    Entries are compared after lowercasing, as exact strings:
        - ``host``       matches the host on any port (or none)
        - ``host:port``  matches only that host with that explicit port

    Args:
        url: Request URL.
        exclude_hosts: Configured exclusion entries. Empty or None never
            bypasses.

    Returns:
        True when the request should go direct.
    """
    if not exclude_hosts:
        return False

    hostname, port = split_host(url)
    # dict.fromkeys de-duplicates while keeping configuration order
    entries = dict.fromkeys(entry.lower() for entry in exclude_hosts)

    for entry in entries:
        entry_parts = entry.split(":")
        if len(entry_parts) == 1:
            if entry_parts[0] == hostname:
                return True
        elif port and len(entry_parts) == 2:
            if entry_parts[0] == hostname and entry_parts[1] == port:
                return True

    return False

"""Case-insensitive header mapping shared by request and response models.

Header names are looked up case-insensitively but remembered in the spelling
they were first written with, so the wire casing survives a round trip.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, MutableMapping
from typing import Any

from pydantic_core import core_schema


class HeaderMap(MutableMapping[str, str]):
    """Ordered header mapping with case-insensitive keys.

    Each entry is stored once, under its lowercase name, together with the
    original spelling. Lookups through any casing reach the same entry.

    Usage:
        headers = HeaderMap({"Content-Type": "text/plain"})
        headers["content-type"]  # "text/plain"
        list(headers)            # ["Content-Type"]
    """

    def __init__(self, headers: Mapping[str, str] | Iterable[tuple[str, str]] | None = None) -> None:
        self._store: dict[str, tuple[str, str]] = {}
        if headers is not None:
            self.update(headers)

    def __setitem__(self, name: str, value: str) -> None:
        # Re-spelling an existing entry keeps its position.
        self._store[name.lower()] = (name, value)

    def __getitem__(self, name: str) -> str:
        return self._store[name.lower()][1]

    def __delitem__(self, name: str) -> None:
        del self._store[name.lower()]

    def __iter__(self) -> Iterator[str]:
        return (original for original, _ in self._store.values())

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._store

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Mapping):
            other_map = other if isinstance(other, HeaderMap) else HeaderMap(other)
            return dict(self.lower_items()) == dict(other_map.lower_items())
        return NotImplemented

    def __repr__(self) -> str:
        return f"HeaderMap({dict(self.items())!r})"

    def add(self, name: str, value: str) -> None:
        """Add a header, combining with an existing value of the same name.

        Cookie values are joined with ';', everything else with ','.
        """
        key = name.lower()
        if key not in self._store:
            self._store[key] = (name, value)
            return
        original, existing = self._store[key]
        separator = ";" if key == "cookie" else ","
        self._store[key] = (original, f"{existing}{separator}{value}")

    def lower_items(self) -> Iterator[tuple[str, str]]:
        """Iterate (lowercase name, value) pairs."""
        return ((key, value) for key, (_, value) in self._store.items())

    def aliases(self, name: str) -> list[str]:
        """Return every spelling that resolves to the entry for ``name``.

        The original spelling comes first; the lowercase spelling follows
        when it differs. Unknown names yield an empty list.
        """
        entry = self._store.get(name.lower())
        if entry is None:
            return []
        original = entry[0]
        lowered = original.lower()
        return [original] if original == lowered else [original, lowered]

    def to_dict(self, include_aliases: bool = False) -> dict[str, str]:
        """Plain dict copy, optionally with lowercase alias keys as well."""
        result: dict[str, str] = {}
        for key, (original, value) in self._store.items():
            result[original] = value
            if include_aliases:
                result[key] = value
        return result

    def copy(self) -> HeaderMap:
        return HeaderMap(self.items())

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            cls._validate,
            serialization=core_schema.plain_serializer_function_ser_schema(
                lambda headers: headers.to_dict()
            ),
        )

    @classmethod
    def _validate(cls, value: Any) -> HeaderMap:
        if isinstance(value, HeaderMap):
            return value
        if isinstance(value, Mapping):
            return cls(value)
        raise ValueError("headers must be a mapping of header name to value")


def get_header_value(headers: Mapping[str, Any] | None, name: str) -> Any:
    """Case-insensitive header lookup over any mapping. None when absent."""
    if not headers:
        return None
    if isinstance(headers, HeaderMap):
        return headers.get(name)
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def parse_request_headers(lines: Iterable[str]) -> HeaderMap:
    """Parse ``name: value`` lines into a HeaderMap.

    The line is split at the first colon and both sides are trimmed. A line
    without a colon becomes a header with an empty value. Repeated names are
    combined (see HeaderMap.add).
    """
    headers = HeaderMap()
    for line in lines:
        name, separator, value = line.partition(":")
        if not separator:
            headers.add(line.strip(), "")
        else:
            headers.add(name.strip(), value.strip())
    return headers

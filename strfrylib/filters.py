"""Nostr REQ filters compiled for fast matching against packed events."""

from __future__ import annotations

import re
from bisect import bisect_left
from collections.abc import Iterable, Iterator
from typing import Any

from strfrylib.packed import PackedEventView

MAX_U64 = 2**64 - 1
MAX_INDEXED_TAG_VAL_SIZE = 255

_HEX_RE = re.compile(r"(?:[0-9a-fA-F]{2})*")


class FilterError(ValueError):
    """A filter could not be compiled."""


def _from_hex(text: str) -> bytes:
    if not _HEX_RE.fullmatch(text):
        raise FilterError("invalid hex in filter")
    return bytes.fromhex(text)


def _get_string(value: Any) -> str:
    if not isinstance(value, str):
        raise FilterError("expected string in filter")
    return value


def _get_unsigned(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= MAX_U64:
        raise FilterError("expected unsigned integer in filter")
    return value


def _get_array(value: Any) -> list:
    if not isinstance(value, list):
        raise FilterError("expected array in filter")
    return value


class FilterSetBytes:
    """Sorted, de-duplicated set of byte strings. Sizes are post hex decode."""

    def __init__(self, items: Iterable[Any], hex_decode: bool, min_size: int, max_size: int) -> None:
        if max_size > MAX_INDEXED_TAG_VAL_SIZE:
            raise FilterError("maxSize bigger than max indexed tag size")

        decoded = []
        for item in _get_array(items):
            text = _get_string(item)
            value = _from_hex(text) if hex_decode else text.encode("utf-8")
            if len(value) < min_size:
                raise FilterError("filter item too small")
            if len(value) > max_size:
                raise FilterError("filter item too large")
            decoded.append(value)

        self._items: tuple[bytes, ...] = tuple(sorted(set(decoded)))

        if sum(len(v) for v in self._items) > 65535:
            raise FilterError("total filter items too large")

    def at(self, n: int) -> bytes:
        if not 0 <= n < len(self._items):
            raise FilterError("FilterSetBytes access out of bounds")
        return self._items[n]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[bytes]:
        return iter(self._items)

    def does_match(self, candidate: bytes) -> bool:
        candidate = bytes(candidate)
        pos = bisect_left(self._items, candidate)
        return pos < len(self._items) and self._items[pos] == candidate


class FilterSetUint:
    """Sorted, de-duplicated set of unsigned integers."""

    def __init__(self, items: Iterable[Any]) -> None:
        self._items: tuple[int, ...] = tuple(sorted({_get_unsigned(v) for v in _get_array(items)}))

    def at(self, n: int) -> int:
        if not 0 <= n < len(self._items):
            raise FilterError("FilterSetUint access out of bounds")
        return self._items[n]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[int]:
        return iter(self._items)

    def does_match(self, candidate: int) -> bool:
        pos = bisect_left(self._items, candidate)
        return pos < len(self._items) and self._items[pos] == candidate


class NostrFilter:
    """One filter object from a REQ message."""

    def __init__(self, filter_obj: Any, max_filter_limit: int = MAX_U64) -> None:
        self.ids: FilterSetBytes | None = None
        self.authors: FilterSetBytes | None = None
        self.kinds: FilterSetUint | None = None
        self.tags: dict[str, FilterSetBytes] = {}
        self.since = 0
        self.until = MAX_U64
        self.limit = MAX_U64
        self.never_match = False

        if not isinstance(filter_obj, dict):
            raise FilterError("provided filter is not an object")

        num_major_fields = 0

        for key, value in filter_obj.items():
            if isinstance(value, list) and not value:
                self.never_match = True
                continue

            if key == "ids":
                self.ids = FilterSetBytes(value, True, 32, 32)
                num_major_fields += 1
            elif key == "authors":
                self.authors = FilterSetBytes(value, True, 32, 32)
                num_major_fields += 1
            elif key == "kinds":
                self.kinds = FilterSetUint(value)
                num_major_fields += 1
            elif key.startswith("#"):
                num_major_fields += 1
                if len(key.encode("utf-8")) != 2:
                    raise FilterError("unindexed tag filter")
                tag = key[1]
                if tag in ("p", "e"):
                    self.tags[tag] = FilterSetBytes(value, True, 32, 32)
                else:
                    self.tags[tag] = FilterSetBytes(value, False, 0, MAX_INDEXED_TAG_VAL_SIZE)
            elif key == "since":
                self.since = _get_unsigned(value)
            elif key == "until":
                self.until = _get_unsigned(value)
            elif key == "limit":
                self.limit = _get_unsigned(value)
            else:
                raise FilterError("unrecognised filter item")

        if len(self.tags) > 3:
            raise FilterError("too many tags in filter")

        self.limit = min(self.limit, max_filter_limit)

        self.index_only_scans = num_major_fields <= 1 or (
            num_major_fields == 2 and self.authors is not None and self.kinds is not None
        )

    def does_match_times(self, created: int) -> bool:
        return self.since <= created <= self.until

    def does_match(self, ev: PackedEventView) -> bool:
        if self.never_match:
            return False
        if not self.does_match_times(ev.created_at()):
            return False
        if self.ids is not None and not self.ids.does_match(ev.id()):
            return False
        if self.authors is not None and not self.authors.does_match(ev.pubkey()):
            return False
        if self.kinds is not None and not self.kinds.does_match(ev.kind()):
            return False

        for tag, values in self.tags.items():
            if not any(name == tag and values.does_match(val) for name, val in ev.tags()):
                return False

        return True

    def is_full_db_query(self) -> bool:
        return self.ids is None and self.authors is None and self.kinds is None and not self.tags


class NostrFilterGroup:
    """The filters of a REQ message; an event matches if any filter does."""

    def __init__(self, req: list | None = None, max_filter_limit: int = MAX_U64) -> None:
        self.filters: list[NostrFilter] = []
        if req is None:
            return
        if not isinstance(req, list):
            raise FilterError("request is not an array")
        if len(req) < 3:
            raise FilterError("too small")
        for item in req[2:]:
            compiled = NostrFilter(item, max_filter_limit)
            if not compiled.never_match:
                self.filters.append(compiled)

    @classmethod
    def unwrapped(cls, filter_json: Any, max_filter_limit: int = MAX_U64) -> NostrFilterGroup:
        """Build from a bare filter object or a list of filter objects."""
        items = filter_json if isinstance(filter_json, list) else [filter_json]
        return cls(["REQ", "junkSub", *items], max_filter_limit)

    def does_match(self, ev: PackedEventView) -> bool:
        return any(f.does_match(ev) for f in self.filters)

    def __len__(self) -> int:
        return len(self.filters)

    def __iter__(self) -> Iterator[NostrFilter]:
        return iter(self.filters)

    def is_full_db_query(self) -> bool:
        return len(self.filters) == 1 and self.filters[0].is_full_db_query()
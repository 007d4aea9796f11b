"""Zstandard decompression of stored event payloads using shared dictionaries."""

from __future__ import annotations

import threading
from collections.abc import Callable

import zstandard

DictionaryLookup = Callable[[int], "bytes | None"]


class DictionaryNotFound(KeyError):
    """No compression dictionary is stored under the requested id."""


class DecompressionError(ValueError):
    """A payload could not be decompressed."""


class DictionaryBroker:
    """Loads compression dictionaries once and shares them between threads."""

    def __init__(self, lookup: DictionaryLookup) -> None:
        self._lookup = lookup
        self._lock = threading.Lock()
        self._dicts: dict[int, zstandard.ZstdCompressionDict] = {}

    def get_dict(self, dict_id: int) -> zstandard.ZstdCompressionDict:
        with self._lock:
            found = self._dicts.get(dict_id)
            if found is not None:
                return found

            raw = self._lookup(dict_id)
            if raw is None:
                raise DictionaryNotFound(f"couldn't find dictId {dict_id}")

            compiled = zstandard.ZstdCompressionDict(bytes(raw))
            self._dicts[dict_id] = compiled
            return compiled


class Decompressor:
    """Per-thread decompressor that caches dictionaries from a broker."""

    def __init__(self, broker: DictionaryBroker) -> None:
        self._broker = broker
        self._decompressors: dict[int, zstandard.ZstdDecompressor] = {}
        self._max_output_size = 0

    def reserve(self, n: int) -> None:
        """Set the largest output accepted from frames lacking a content size."""
        self._max_output_size = n

    def decompress(self, dict_id: int, src: bytes) -> bytes:
        decompressor = self._decompressors.get(dict_id)
        if decompressor is None:
            dictionary = self._broker.get_dict(dict_id)
            decompressor = zstandard.ZstdDecompressor(dict_data=dictionary)
            self._decompressors[dict_id] = decompressor

        try:
            return decompressor.decompress(bytes(src), max_output_size=self._max_output_size)
        except zstandard.ZstdError as exc:
            raise DecompressionError(f"zstd decompression failed: {exc}") from exc
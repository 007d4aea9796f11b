"""Packed summary of the indexable fields of a nostr event.

Layout::

     0: id (32)
    32: pubkey (32)
    64: created_at (8, little-endian)
    72: kind (8, little-endian)
    80: expiration (8, little-endian)
    88: tags[] (variable), each: tag char (1), length (1), value
"""

from __future__ import annotations

import struct
from collections.abc import Iterator

HEADER_SIZE = 88
MAX_TAG_VALUE_SIZE = 255

_U64 = struct.Struct("<Q")


def bytes32(value: bytes | bytearray | memoryview) -> bytes:
    """Return ``value`` as bytes, requiring exactly 32 of them."""
    data = bytes(value)
    if len(data) != 32:
        raise ValueError("invalid length for Bytes32")
    return data


class PackedEventView:
    """Read-only accessor over a packed event buffer."""

    __slots__ = ("buf",)

    def __init__(self, buf: bytes | bytearray | memoryview) -> None:
        data = bytes(buf)
        if len(data) < HEADER_SIZE:
            raise ValueError("PackedEventView too short")
        self.buf = data

    def id(self) -> bytes:
        return self.buf[0:32]

    def pubkey(self) -> bytes:
        return self.buf[32:64]

    def created_at(self) -> int:
        return _U64.unpack_from(self.buf, 64)[0]

    def kind(self) -> int:
        return _U64.unpack_from(self.buf, 72)[0]

    def expiration(self) -> int:
        return _U64.unpack_from(self.buf, 80)[0]

    def tags(self) -> Iterator[tuple[str, bytes]]:
        """Yield ``(tag_name, tag_value)`` pairs in stored order."""
        pos = HEADER_SIZE
        end = len(self.buf)
        while pos < end:
            if pos + 2 > end:
                raise ValueError("truncated tag in packed event")
            name = chr(self.buf[pos])
            length = self.buf[pos + 1]
            value_end = pos + 2 + length
            if value_end > end:
                raise ValueError("truncated tag in packed event")
            yield name, self.buf[pos + 2:value_end]
            pos = value_end

    def __repr__(self) -> str:
        return f"PackedEventView(id={self.id().hex()}, kind={self.kind()})"


class PackedEventTagBuilder:
    """Accumulates the tag section of a packed event."""

    def __init__(self) -> None:
        self._buf = bytearray()

    @property
    def buf(self) -> bytes:
        return bytes(self._buf)

    def add(self, tag_key: str, tag_val: bytes) -> None:
        if len(tag_key) != 1 or ord(tag_key) > 0xFF:
            raise ValueError("tag key must be a single byte-sized character")
        value = bytes(tag_val)
        if len(value) > MAX_TAG_VALUE_SIZE:
            raise ValueError("tagVal too long")
        self._buf.append(ord(tag_key))
        self._buf.append(len(value))
        self._buf += value


def build_packed_event(
    event_id: bytes,
    pubkey: bytes,
    created_at: int,
    kind: int,
    expiration: int,
    tag_builder: PackedEventTagBuilder,
) -> bytes:
    """Assemble a packed event buffer."""
    if len(event_id) != 32:
        raise ValueError("unexpected id size")
    if len(pubkey) != 32:
        raise ValueError("unexpected pubkey size")
    return b"".join(
        (
            bytes(event_id),
            bytes(pubkey),
            _U64.pack(created_at),
            _U64.pack(kind),
            _U64.pack(expiration),
            tag_builder.buf,
        )
    )
"""The "fried" export line: event JSON carrying its packed form in hex."""

from __future__ import annotations

import re
from typing import NamedTuple

_FIELD = ',"fried":"'
_HEX_RE = re.compile(r"(?:[0-9a-fA-F]{2})*")


class FriedError(ValueError):
    """A fried line is malformed."""


class FriedEvent(NamedTuple):
    packed: bytes
    json: str


def parse_fried(line: str) -> FriedEvent:
    """Split a fried line into packed bytes and the original event JSON."""
    if len(line) < 64:
        raise FriedError("fried too small")
    if not line.endswith('"}'):
        raise FriedError("fried parse error")

    i = line.rfind('"', 0, len(line) - 2)
    if i <= 0 or not line[: i + 1].endswith(_FIELD):
        raise FriedError("fried parse error")

    hex_text = line[i + 1 : len(line) - 2]
    if not _HEX_RE.fullmatch(hex_text):
        raise FriedError("fried parse error: invalid hex")

    json_text = line[: i + 1 - len(_FIELD)] + "}"
    return FriedEvent(bytes.fromhex(hex_text), json_text)


def make_fried(json_text: str, packed: bytes) -> str:
    """Append the packed event as a ``fried`` field to the event JSON object."""
    if not json_text.endswith("}"):
        raise FriedError("event JSON must be an object")
    return json_text[:-1] + _FIELD + bytes(packed).hex() + '"}'
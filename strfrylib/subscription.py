"""Subscription identifiers and subscriptions."""

from __future__ import annotations

from dataclasses import dataclass

from strfrylib.filters import MAX_U64, NostrFilterGroup

CURR_DB_VERSION = 3
MAX_SUBID_SIZE = 64


def _bad_char(c: str) -> bool:
    code = ord(c)
    return code < 0x20 or c == "\\" or c == '"' or code >= 0x7F


class SubId:
    """A validated client-chosen subscription identifier."""

    __slots__ = ("_value",)

    def __init__(self, value: str) -> None:
        if isinstance(value, SubId):
            value = str(value)
        size = len(value.encode("utf-8"))
        if size == 0 or size > MAX_SUBID_SIZE:
            raise ValueError("invalid subscription id length")
        if any(_bad_char(c) for c in value):
            raise ValueError("invalid character in subscription id")
        self._value = value

    def __str__(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"SubId({self._value!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SubId):
            return NotImplemented
        return self._value == other._value

    def __hash__(self) -> int:
        return hash(self._value)


class Subscription:
    """A client subscription: connection, id, filters and scan progress."""

    def __init__(
        self,
        conn_id: int,
        sub_id: str | SubId,
        filter_group: NostrFilterGroup,
        ip_addr: str = "",
    ) -> None:
        self.conn_id = conn_id
        self.sub_id = sub_id if isinstance(sub_id, SubId) else SubId(sub_id)
        self.filter_group = filter_group
        self.ip_addr = ip_addr
        self.latest_event_id = MAX_U64

    def __repr__(self) -> str:
        return f"Subscription(conn_id={self.conn_id}, sub_id={str(self.sub_id)!r})"


@dataclass(frozen=True)
class ConnIdSubId:
    """A recipient of an event: connection and subscription."""

    conn_id: int
    sub_id: SubId
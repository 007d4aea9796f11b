"""Index scans over stored events, answering filter queries newest first."""

from __future__ import annotations

import heapq
import logging
import struct
import time
from bisect import bisect_right, insort
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from itertools import islice
from typing import Any

from strfrylib.filters import MAX_U64, NostrFilter, NostrFilterGroup
from strfrylib.packed import PackedEventView
from strfrylib.subscription import Subscription

log = logging.getLogger(__name__)

INDEX_ID = "id"
INDEX_PUBKEY = "pubkey"
INDEX_TAG = "tag"
INDEX_PUBKEY_KIND = "pubkeyKind"
INDEX_KIND = "kind"
INDEX_CREATED_AT = "created_at"

_INDEXES = (INDEX_ID, INDEX_PUBKEY, INDEX_TAG, INDEX_PUBKEY_KIND, INDEX_KIND, INDEX_CREATED_AT)

_U64BE = struct.Struct(">Q")
_MAX_SUFFIX = b"\xff" * 8


def _now_us() -> int:
    return time.monotonic_ns() // 1000


class EventStore:
    """In-memory event storage with the sorted indexes the scanner walks.

    Every index holds ``(key, lev_id)`` pairs in ascending order; keys end in
    the big-endian ``created_at`` so that a prefix's entries sort by time.
    """

    def __init__(self) -> None:
        self._events: dict[int, PackedEventView] = {}
        self._indexes: dict[str, list[tuple[bytes, int]]] = {name: [] for name in _INDEXES}
        self._next_lev_id = 1

    def add(self, packed: PackedEventView | bytes) -> int:
        """Store a packed event and return its assigned level id."""
        view = packed if isinstance(packed, PackedEventView) else PackedEventView(packed)
        lev_id = self._next_lev_id
        self._next_lev_id += 1
        self._events[lev_id] = view

        created = _U64BE.pack(view.created_at())
        kind = _U64BE.pack(view.kind())
        keys = {
            INDEX_ID: {view.id() + created},
            INDEX_PUBKEY: {view.pubkey() + created},
            INDEX_PUBKEY_KIND: {view.pubkey() + kind + created},
            INDEX_KIND: {kind + created},
            INDEX_CREATED_AT: {created},
            INDEX_TAG: {name.encode("latin-1") + value + created for name, value in view.tags()},
        }
        for index, index_keys in keys.items():
            for key in index_keys:
                insort(self._indexes[index], (key, lev_id))
        return lev_id

    def lookup(self, lev_id: int) -> PackedEventView | None:
        return self._events.get(lev_id)

    def index_items(self, index: str, start_key: tuple[bytes, int]) -> Iterator[tuple[bytes, int]]:
        """Yield ``(key, lev_id)`` entries at or below ``start_key``, descending."""
        try:
            entries = self._indexes[index]
        except KeyError:
            raise ValueError(f"unknown index: {index}") from None
        pos = bisect_right(entries, tuple(start_key))
        yield from islice(reversed(entries), len(entries) - pos, None)


@dataclass(frozen=True)
class _Candidate:
    lev_id: int
    created: int
    scan_index: int


def _order(c: _Candidate) -> tuple[int, int]:
    return (-c.created, -c.lev_id)


@dataclass
class _ScanCursor:
    resume_key: bytes
    resume_val: int
    key_match: Callable[[bytes], bool]
    outstanding: int = 0

    @property
    def active(self) -> bool:
        return len(self.resume_key) > 0

    def collect(self, scan: DBScan, scan_index: int, limit: int, output: Any) -> int:
        added = 0
        f = scan.filter

        while self.active and limit > 0:
            for key, lev_id in scan.store.index_items(scan.index, (self.resume_key, self.resume_val)):
                if limit == 0:
                    self.resume_key, self.resume_val = key, lev_id
                    break

                if not self.key_match(key):
                    self.resume_key = b""
                    break

                prefix = key[:-8]
                created = _U64BE.unpack(key[-8:])[0]

                if f.since and created < f.since:
                    self.resume_key = prefix + _U64BE.pack(0)
                    self.resume_val = 0
                    break

                if f.until and created > f.until:
                    self.resume_key = prefix + _U64BE.pack(f.until)
                    self.resume_val = MAX_U64
                    break

                output.append(_Candidate(lev_id, created, scan_index))
                added += 1
                limit -= 1
            else:
                self.resume_key = b""

        self.outstanding += added
        return added


def _prefix_cursor(search: bytes) -> _ScanCursor:
    return _ScanCursor(search + _MAX_SUFFIX, MAX_U64, lambda k: k.startswith(search))


def _exact_cursor(search: bytes) -> _ScanCursor:
    return _ScanCursor(
        search + _MAX_SUFFIX,
        MAX_U64,
        lambda k: len(k) == len(search) + 8 and k.startswith(search),
    )


class DBScan:
    """Resumable newest-first scan of the best index for one filter."""

    def __init__(self, store: EventStore, nostr_filter: NostrFilter) -> None:
        f = nostr_filter
        self.store = store
        self.filter = f
        self.index_only = f.index_only_scans
        self.event_queue: deque[_Candidate] = deque()
        self.next_init_index = 0
        self.approx_work = 0

        if f.ids is not None:
            self.index = INDEX_ID
            self.desc = "ID"
            self.cursors = [_prefix_cursor(event_id) for event_id in f.ids]
        elif f.tags:
            self.index = INDEX_TAG
            self.desc = "Tag"
            tag_name = min(f.tags, key=lambda name: len(f.tags[name]))
            name_byte = tag_name.encode("latin-1")
            self.cursors = [_exact_cursor(name_byte + value) for value in f.tags[tag_name]]
        elif f.authors is not None and f.kinds is not None and len(f.authors) * len(f.kinds) < 1000:
            self.index = INDEX_PUBKEY_KIND
            self.desc = "PubkeyKind"
            self.cursors = [
                _prefix_cursor(author + _U64BE.pack(kind))
                for author in f.authors
                for kind in f.kinds
            ]
        elif f.authors is not None:
            if f.kinds is not None:
                self.index_only = False
            self.index = INDEX_PUBKEY
            self.desc = "Pubkey"
            self.cursors = [_prefix_cursor(author) for author in f.authors]
        elif f.kinds is not None:
            self.index = INDEX_KIND
            self.desc = "Kind"
            self.cursors = [_prefix_cursor(_U64BE.pack(kind)) for kind in f.kinds]
        else:
            self.index = INDEX_CREATED_AT
            self.desc = "CreatedAt"
            self.cursors = [_ScanCursor(_MAX_SUFFIX, MAX_U64, lambda k: True)]

        self.initial_scan_depth = min(max(f.limit // len(self.cursors), 5), 50)
        self.refill_scan_depth = 10 * self.initial_scan_depth

    def scan(
        self,
        handle_event: Callable[[int], bool],
        do_pause: Callable[[int], bool],
    ) -> bool:
        """Feed matching level ids to ``handle_event``; True when finished.

        Returns False if ``do_pause`` asked to stop; calling again resumes.
        Stops early, returning True, once ``handle_event`` returns True.
        """
        while True:
            self.approx_work += 1
            if do_pause(self.approx_work):
                return False

            if self.next_init_index < len(self.cursors):
                idx = self.next_init_index
                self.approx_work += self.cursors[idx].collect(
                    self, idx, self.initial_scan_depth, self.event_queue
                )
                self.next_init_index += 1
                if self.next_init_index == len(self.cursors):
                    self.event_queue = deque(sorted(self.event_queue, key=_order))
                continue

            if not self.event_queue:
                return True

            ev = self.event_queue.popleft()

            if self.index_only:
                do_send = self.filter.does_match_times(ev.created)
            else:
                self.approx_work += 10
                view = self.store.lookup(ev.lev_id)
                do_send = view is not None and self.filter.does_match(view)

            if do_send and handle_event(ev.lev_id):
                return True

            cursor = self.cursors[ev.scan_index]
            cursor.outstanding -= 1

            if cursor.outstanding == 0:
                more: list[_Candidate] = []
                self.approx_work += cursor.collect(self, ev.scan_index, self.refill_scan_depth, more)
                self.event_queue = deque(heapq.merge(self.event_queue, more, key=_order))


class DBQuery:
    """Runs every filter of a subscription, sending each event once."""

    def __init__(self, store: EventStore, sub: Subscription) -> None:
        self.store = store
        self.sub = sub
        self.scanner: DBScan | None = None
        self.filter_group_index = 0
        self.dead = False
        self.sent_events_full: set[int] = set()
        self.sent_events_curr: set[int] = set()
        self.last_work_checked = 0
        self.curr_scan_time = 0
        self.curr_scan_save_restores = 0
        self.total_time = 0
        self.total_work = 0

    @classmethod
    def from_filter(cls, store: EventStore, filter_json: Any, max_limit: int = MAX_U64) -> DBQuery:
        """Build a query from a bare filter object or list of filters."""
        group = NostrFilterGroup.unwrapped(filter_json, max_limit)
        return cls(store, Subscription(1, ".", group))

    def process(
        self,
        cb: Callable[[Subscription, int], None],
        time_budget_us: int = MAX_U64,
        log_metrics: bool = False,
    ) -> bool:
        """Advance the query; True once all filters are complete."""
        filters = self.sub.filter_group.filters

        while self.filter_group_index < len(filters):
            f = filters[self.filter_group_index]

            if self.scanner is None:
                self.scanner = DBScan(self.store, f)

            start_time = _now_us()

            def handle_event(lev_id: int) -> bool:
                if f.limit == 0:
                    return True
                # Events stored after the query began are sent after EOSE instead.
                if lev_id > self.sub.latest_event_id:
                    return False
                if lev_id not in self.sent_events_full:
                    self.sent_events_full.add(lev_id)
                    cb(self.sub, lev_id)
                self.sent_events_curr.add(lev_id)
                return len(self.sent_events_curr) >= f.limit

            def do_pause(approx_work: int) -> bool:
                if approx_work > self.last_work_checked + 2000:
                    self.last_work_checked = approx_work
                    return _now_us() - start_time > time_budget_us
                return False

            complete = self.scanner.scan(handle_event, do_pause)

            self.curr_scan_time += _now_us() - start_time

            if not complete:
                self.curr_scan_save_restores += 1
                return False

            self.total_time += self.curr_scan_time
            self.total_work += self.scanner.approx_work

            if log_metrics:
                log.info(
                    "[%s] REQ='%s' scan=%s indexOnly=%d time=%dus saveRestores=%d recsFound=%d work=%d",
                    self.sub.conn_id,
                    self.sub.sub_id,
                    self.scanner.desc,
                    int(self.scanner.index_only),
                    self.curr_scan_time,
                    self.curr_scan_save_restores,
                    len(self.sent_events_curr),
                    self.scanner.approx_work,
                )

            self.scanner = None
            self.filter_group_index += 1
            self.sent_events_curr.clear()
            self.curr_scan_time = 0
            self.curr_scan_save_restores = 0

        if log_metrics:
            log.info(
                "[%s] REQ='%s' totalTime=%dus totalWork=%d recsSent=%d",
                self.sub.conn_id,
                self.sub.sub_id,
                self.total_time,
                self.total_work,
                len(self.sent_events_full),
            )

        return True


def foreach_by_filter(store: EventStore, filter_json: Any, cb: Callable[[int], None]) -> None:
    """Call ``cb(lev_id)`` for every stored event the filter selects."""
    query = DBQuery.from_filter(store, filter_json)
    while not query.process(lambda _sub, lev_id: cb(lev_id)):
        pass
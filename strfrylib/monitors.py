"""Live subscription monitors that route newly stored events to subscribers."""

from __future__ import annotations

import ipaddress
from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass
from typing import Any

from strfrylib.filters import NostrFilter
from strfrylib.packed import PackedEventView
from strfrylib.subscription import ConnIdSubId, SubId, Subscription

RecipientCallback = Callable[[list[ConnIdSubId], int], None]


@dataclass(eq=False)
class _Monitor:
    sub: Subscription


@dataclass(eq=False)
class _MonitorItem:
    monitor: _Monitor
    latest_event_id: int


# A monitor set maps a compiled filter (by identity) to its monitor item.
_MonitorSet = dict


class ActiveMonitors:
    """Indexes live subscriptions so new events reach only interested ones."""

    def __init__(
        self,
        max_subs_per_connection: int = 20,
        privileged_ips: Iterable[str] = (),
        max_subs_per_connection_privileged: int = 0,
    ) -> None:
        self.max_subs_per_connection = max_subs_per_connection
        self.max_subs_per_connection_privileged = max_subs_per_connection_privileged
        self._privileged_networks = [
            ipaddress.ip_network(spec, strict=False) for spec in privileged_ips
        ]

        self._conns: dict[int, dict[SubId, _Monitor]] = {}
        self._all_ids: dict[bytes, _MonitorSet] = {}
        self._all_authors: dict[bytes, _MonitorSet] = {}
        self._all_tags: dict[tuple[str, bytes], _MonitorSet] = {}
        self._all_kinds: dict[int, _MonitorSet] = {}
        self._all_others: _MonitorSet = {}

    def _is_privileged(self, ip_addr: str) -> bool:
        try:
            addr = ipaddress.ip_address(ip_addr)
        except ValueError:
            return False
        return any(addr in net for net in self._privileged_networks)

    def add_sub(self, sub: Subscription, curr_event_id: int) -> bool:
        """Install ``sub``; return False if the connection is over its limit."""
        if sub.latest_event_id != curr_event_id:
            raise ValueError("sub not up to date")

        if self._find_monitor(sub.conn_id, sub.sub_id) is not None:
            self.remove_sub(sub.conn_id, sub.sub_id)

        conn_monitors = self._conns.get(sub.conn_id, {})

        if self._privileged_networks and self._is_privileged(sub.ip_addr):
            limit = self.max_subs_per_connection_privileged
            if limit > 0 and len(conn_monitors) >= limit:
                return False
        elif len(conn_monitors) >= self.max_subs_per_connection:
            return False

        monitor = _Monitor(sub)
        self._conns.setdefault(sub.conn_id, conn_monitors)[sub.sub_id] = monitor
        self._install_lookups(monitor, curr_event_id)
        return True

    def remove_sub(self, conn_id: int, sub_id: SubId | str) -> None:
        sub_id = sub_id if isinstance(sub_id, SubId) else SubId(sub_id)
        monitor = self._find_monitor(conn_id, sub_id)
        if monitor is None:
            return

        self._uninstall_lookups(monitor)

        conn_monitors = self._conns[conn_id]
        del conn_monitors[sub_id]
        if not conn_monitors:
            del self._conns[conn_id]

    def close_conn(self, conn_id: int) -> None:
        conn_monitors = self._conns.pop(conn_id, None)
        if conn_monitors is None:
            return
        for monitor in conn_monitors.values():
            self._uninstall_lookups(monitor)

    def process(
        self,
        lev_id: int,
        packed: PackedEventView | bytes,
        cb: RecipientCallback,
    ) -> None:
        """Match a stored event against monitors; call ``cb(recipients, lev_id)``."""
        ev = packed if isinstance(packed, PackedEventView) else PackedEventView(packed)
        recipients: list[ConnIdSubId] = []

        def run(monitor_set: _MonitorSet | None) -> None:
            if not monitor_set:
                return
            for nostr_filter, item in monitor_set.items():
                sub = item.monitor.sub
                if item.latest_event_id >= lev_id or sub.latest_event_id >= lev_id:
                    continue
                item.latest_event_id = lev_id
                if nostr_filter.does_match(ev):
                    recipients.append(ConnIdSubId(sub.conn_id, sub.sub_id))
                    sub.latest_event_id = lev_id

        run(self._all_ids.get(ev.id()))
        run(self._all_authors.get(ev.pubkey()))
        for name, value in ev.tags():
            run(self._all_tags.get((name, value)))
        run(self._all_kinds.get(ev.kind()))
        run(self._all_others)

        if recipients:
            cb(recipients, lev_id)

    def _find_monitor(self, conn_id: int, sub_id: SubId) -> _Monitor | None:
        conn_monitors = self._conns.get(conn_id)
        if conn_monitors is None:
            return None
        return conn_monitors.get(sub_id)

    def _lookup_table(
        self, nostr_filter: NostrFilter
    ) -> tuple[dict[Any, _MonitorSet] | None, list[Hashable]]:
        if nostr_filter.ids is not None:
            return self._all_ids, list(nostr_filter.ids)
        if nostr_filter.authors is not None:
            return self._all_authors, list(nostr_filter.authors)
        if nostr_filter.tags:
            return self._all_tags, [
                (name, value)
                for name, values in nostr_filter.tags.items()
                for value in values
            ]
        if nostr_filter.kinds is not None:
            return self._all_kinds, list(nostr_filter.kinds)
        return None, []

    def _install_lookups(self, monitor: _Monitor, curr_event_id: int) -> None:
        for nostr_filter in monitor.sub.filter_group.filters:
            table, keys = self._lookup_table(nostr_filter)
            if table is None:
                self._all_others.setdefault(nostr_filter, _MonitorItem(monitor, curr_event_id))
                continue
            for key in keys:
                table.setdefault(key, {}).setdefault(
                    nostr_filter, _MonitorItem(monitor, curr_event_id)
                )

    def _uninstall_lookups(self, monitor: _Monitor) -> None:
        for nostr_filter in monitor.sub.filter_group.filters:
            table, keys = self._lookup_table(nostr_filter)
            if table is None:
                self._all_others.pop(nostr_filter, None)
                continue
            for key in keys:
                monitor_set = table[key]
                monitor_set.pop(nostr_filter, None)
                if not monitor_set:
                    del table[key]
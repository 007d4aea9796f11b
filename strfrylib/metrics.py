"""Thread-safe counters rendered in the Prometheus text format."""

from __future__ import annotations

import threading


class Counter:
    """A monotonically increasing counter."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def inc(self, n: int = 1) -> None:
        with self._lock:
            self._value += n

    def get(self) -> int:
        with self._lock:
            return self._value


class LabeledCounter:
    """A family of counters keyed by a label value."""

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}
        self._lock = threading.Lock()

    def inc(self, label: str, n: int = 1) -> None:
        counter = self._counters.get(label)
        if counter is None:
            with self._lock:
                counter = self._counters.setdefault(label, Counter())
        counter.inc(n)

    def get_all(self) -> dict[str, int]:
        """Return current values, ordered by label."""
        with self._lock:
            items = list(self._counters.items())
        return {label: counter.get() for label, counter in sorted(items)}


class PrometheusMetrics:
    """Relay message and event counters."""

    def __init__(self) -> None:
        self.nostr_client_messages = LabeledCounter()
        self.nostr_relay_messages = LabeledCounter()
        self.nostr_events_by_kind = LabeledCounter()

    def render(self) -> str:
        sections = (
            (
                "nostr_client_messages_total",
                "Total number of Nostr client messages by verb",
                "verb",
                self.nostr_client_messages,
            ),
            (
                "nostr_relay_messages_total",
                "Total number of Nostr relay messages by verb",
                "verb",
                self.nostr_relay_messages,
            ),
            (
                "nostr_events_total",
                "Total number of Nostr events by kind",
                "kind",
                self.nostr_events_by_kind,
            ),
        )
        lines = []
        for name, help_text, label_name, counter in sections:
            lines.append(f"# HELP {name} {help_text}\n")
            lines.append(f"# TYPE {name} counter\n")
            for label, count in counter.get_all().items():
                lines.append(f'{name}{{{label_name}="{label}"}} {count}\n')
        return "".join(lines)


_INSTANCE = PrometheusMetrics()


def get_metrics() -> PrometheusMetrics:
    """Return the process-wide metrics instance."""
    return _INSTANCE
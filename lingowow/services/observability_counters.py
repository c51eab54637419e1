"""In-process rolling counters for operational events.

Events such as ``rate_limit_block`` or ``checkout_declined`` are kept for the
last day so health views and tests can ask how often they happened.
"""
from __future__ import annotations

import threading
from collections import defaultdict, deque
from datetime import datetime, timedelta

from lingowow.core.time_provider import default_time_provider


RETENTION = timedelta(hours=25)


class EventCounter:
    def __init__(self):
        self._lock = threading.Lock()
        self._events: dict[str, deque[datetime]] = defaultdict(deque)

    @staticmethod
    def _now() -> datetime:
        return default_time_provider.now().replace(tzinfo=None)

    def record(self, name: str, at: datetime | None = None) -> None:
        at = at or self._now()
        with self._lock:
            bucket = self._events[name]
            bucket.append(at)
            while bucket and bucket[0] < at - RETENTION:
                bucket.popleft()

    def count(self, name: str, *, since: datetime) -> int:
        with self._lock:
            return sum(1 for seen in self._events.get(name, ()) if seen >= since)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


_counter = EventCounter()


def _event_name(name: str) -> str:
    return str(name or '').strip().lower()


def record_observability_event(name: str, *, at: datetime | None = None) -> None:
    event = _event_name(name)
    if event:
        _counter.record(event, at)


def count_observability_events(name: str, *, window_hours: int = 24, now: datetime | None = None) -> int:
    event = _event_name(name)
    if not event:
        return 0
    current = now or EventCounter._now()
    return _counter.count(event, since=current - timedelta(hours=max(1, int(window_hours or 24))))


def clear_observability_events() -> None:
    _counter.clear()

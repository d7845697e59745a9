"""Bounded in-memory log of recent reload events, served by the status API."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable
from itertools import islice

from tandem_lb.events.emitter import EVENT_TYPES, ReloadEvent


def event_filter(event_type: str | None) -> Callable[[str], bool]:
    """Predicate for an exact event type or a family such as ``service.*``.

    Raises ValueError for a type or family no event is ever emitted with.
    """
    if not event_type:
        return lambda _: True
    if event_type.endswith(".*"):
        prefix = event_type[:-1]
        if not any(known.startswith(prefix) for known in EVENT_TYPES):
            raise ValueError(f"Unknown event family '{event_type}'")
        return lambda candidate: candidate.startswith(prefix)
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown event type '{event_type}'; expected one of {', '.join(sorted(EVENT_TYPES))}")
    return lambda candidate: candidate == event_type


class EventLog:
    """Keeps the last *max_size* events. Implements EventListener protocol."""

    def __init__(self, max_size: int = 100) -> None:
        self._events: deque[ReloadEvent] = deque(maxlen=max_size)
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._events)

    async def on_event(self, event: ReloadEvent) -> None:
        async with self._lock:
            self._events.append(event)

    async def get_recent(self, limit: int = 20, event_type: str | None = None) -> list[ReloadEvent]:
        """Newest first, optionally narrowed to one type or family."""
        matches = event_filter(event_type)
        async with self._lock:
            newest_first = (e for e in reversed(self._events) if matches(e.event_type))
            return list(islice(newest_first, max(limit, 0)))

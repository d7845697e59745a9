"""Event emitter, listener protocol, and reload event dataclass."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from tandem_lb.config.models import TandemConfig

logger = logging.getLogger(__name__)

EVENT_TYPES = frozenset({
    "reload.started",
    "reload.completed",
    "reload.failed",
    "service.failed",
    "service.recovered",
    "instance.started",
    "instance.stopped",
})


@dataclass
class ReloadEvent:
    """A typed event emitted by the orchestrator."""

    event_type: str  # "reload.started", "service.failed", etc.
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }


class EventListener(Protocol):
    """Protocol for consuming reload events."""

    async def on_event(self, event: ReloadEvent) -> None: ...


class EventEmitter:
    """Dispatches events to listeners; a failing listener never breaks a reload."""

    def __init__(self) -> None:
        self._listeners: list[EventListener] = []

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    async def emit(self, event: ReloadEvent) -> None:
        for listener in self._listeners:
            try:
                await listener.on_event(event)
            except Exception:
                logger.exception("Event listener error")


def create_emitter(config: TandemConfig, event_log: Any | None = None) -> EventEmitter:
    """Emitter wired to the event log (if given) and configured webhooks."""
    emitter = EventEmitter()
    if event_log is not None:
        emitter.add_listener(event_log)
    if config.webhooks:
        from tandem_lb.events.webhook import WebhookListener

        emitter.add_listener(WebhookListener(config.webhooks))
    return emitter

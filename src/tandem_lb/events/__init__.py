"""Reload event system for Tandem."""

from __future__ import annotations

from tandem_lb.events.emitter import EVENT_TYPES, EventEmitter, EventListener, ReloadEvent, create_emitter
from tandem_lb.events.log import EventLog
from tandem_lb.events.webhook import WebhookListener

__all__ = [
    "EVENT_TYPES",
    "EventEmitter",
    "EventListener",
    "EventLog",
    "ReloadEvent",
    "WebhookListener",
    "create_emitter",
]

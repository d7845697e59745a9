"""Webhook notification of reload events.

Each subscribed endpoint receives the event as JSON. When a secret is
configured the exact body bytes are signed with HMAC-SHA256 and sent as
``X-Tandem-Signature: sha256=<hex>``. Delivery runs in background tasks so
a slow receiver never holds up a reload; transport errors and 5xx answers
are retried up to the endpoint's ``attempts``.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
from typing import TYPE_CHECKING

import httpx

from tandem_lb.events.emitter import ReloadEvent

if TYPE_CHECKING:
    from tandem_lb.config.models import WebhookConfig

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Tandem-Signature"
EVENT_HEADER = "X-Tandem-Event"


def sign(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def subscribed(patterns: list[str], event_type: str) -> bool:
    """Match ``*``, an exact type, or a family pattern like ``reload.*``."""
    for pattern in patterns:
        if pattern in ("*", event_type):
            return True
        if pattern.endswith(".*") and event_type.startswith(pattern[:-1]):
            return True
    return False


class WebhookListener:
    """Implements EventListener protocol."""

    def __init__(self, webhooks: list[WebhookConfig], retry_delay: float = 1.0) -> None:
        self._webhooks = webhooks
        self._retry_delay = retry_delay
        self._pending: set[asyncio.Task[None]] = set()

    async def on_event(self, event: ReloadEvent) -> None:
        targets = [wh for wh in self._webhooks if subscribed(wh.events, event.event_type)]
        if not targets:
            return
        body = json.dumps(event.to_dict(), sort_keys=True).encode()
        for wh in targets:
            task = asyncio.create_task(self._deliver(wh, event.event_type, body), name=f"webhook-{wh.url}")
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, wh: WebhookConfig, event_type: str, body: bytes) -> None:
        headers = {"Content-Type": "application/json", EVENT_HEADER: event_type}
        if wh.secret:
            headers[SIGNATURE_HEADER] = sign(wh.secret, body)

        try:
            problem = ""
            for attempt in range(1, wh.attempts + 1):
                try:
                    async with httpx.AsyncClient(timeout=wh.timeout_seconds) as client:
                        response = await client.post(wh.url, content=body, headers=headers)
                except httpx.TransportError as exc:
                    problem = f"{type(exc).__name__}: {exc}"
                else:
                    if not response.is_error:
                        return
                    problem = f"HTTP {response.status_code}"
                    if response.status_code < 500:
                        break  # 4xx is final
                if attempt < wh.attempts:
                    await asyncio.sleep(self._retry_delay * attempt)
            logger.warning("Webhook %s did not accept %s: %s", wh.url, event_type, problem)
        except Exception:
            logger.exception("Webhook delivery to %s failed (event: %s)", wh.url, event_type)

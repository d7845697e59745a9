"""FastAPI application factory for the Tandem status API."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from fastapi import FastAPI

from tandem_lb.api.routes import reloads, status

if TYPE_CHECKING:
    from tandem_lb.config.models import TandemConfig
    from tandem_lb.events.log import EventLog
    from tandem_lb.orchestrator.history import ReloadHistory
    from tandem_lb.orchestrator.models import ChangeBatch
    from tandem_lb.orchestrator.reload import ReloadOrchestrator


def create_app(
    config: TandemConfig,
    orchestrator: ReloadOrchestrator,
    queue: asyncio.Queue[ChangeBatch],
    history: ReloadHistory,
    event_log: EventLog,
) -> FastAPI:
    app = FastAPI(title="Tandem", version=config.tandem.version, description="HAProxy rotation status")

    app.state.config = config
    app.state.orchestrator = orchestrator
    app.state.queue = queue
    app.state.history = history
    app.state.event_log = event_log

    @app.get("/health", tags=["meta"])
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(status.router, prefix="/api")
    app.include_router(reloads.router, prefix="/api")

    return app

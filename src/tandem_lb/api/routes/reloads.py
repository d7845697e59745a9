"""Reload history, events, and manual trigger endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from tandem_lb.api.auth import require_api_key
from tandem_lb.orchestrator.models import ChangeBatch

router = APIRouter(tags=["reloads"])


@router.get("/reloads")
async def get_recent_reloads(request: Request, limit: int = 10) -> list[dict[str, Any]]:
    """Return the most recent reload cycles."""
    history = request.app.state.history
    records = await history.get_recent(limit)
    return [r.to_dict() for r in records]


@router.post("/reload", status_code=202, dependencies=[Depends(require_api_key)])
async def trigger_reload(request: Request) -> dict[str, Any]:
    """Queue a reload cycle without waiting for it."""
    queue = request.app.state.queue
    queue.put_nowait(ChangeBatch(source="api"))
    return {"queued": True, "pending": queue.qsize()}


@router.get("/events")
async def get_recent_events(
    request: Request,
    limit: int = Query(20, ge=1, le=1000),
    event_type: str | None = Query(None, description="Exact type, or a family such as service.*"),
) -> list[dict[str, Any]]:
    """Return recent reload events from the in-memory log."""
    event_log = request.app.state.event_log
    try:
        events = await event_log.get_recent(limit=limit, event_type=event_type)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [e.to_dict() for e in events]

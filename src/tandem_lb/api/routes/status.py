"""Orchestrator and service status endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

router = APIRouter(tags=["status"])


@router.get("/status")
async def get_status(request: Request) -> dict[str, Any]:
    orchestrator = request.app.state.orchestrator
    return {
        "state": orchestrator.state.value,
        "reloads": orchestrator.reloads,
        "instances": [i.to_dict() for i in orchestrator.instances.values()],
    }


@router.get("/services")
async def list_services(request: Request) -> dict[str, Any]:
    orchestrator = request.app.state.orchestrator
    live = [
        {
            "name": s.name,
            "domain_name": s.domain_name,
            "is_default": s.is_default,
            "balance": s.balance,
            "backends": [b.address for b in s.backends],
        }
        for s in orchestrator.registry
    ]
    return {"services": live, "failed": sorted(orchestrator.failed_services)}

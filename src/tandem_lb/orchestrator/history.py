"""Bounded in-memory history of reload cycles."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass
class ReloadRecord:
    """Record of a single reload cycle."""

    trigger: str
    paths: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    success: bool = False
    services: int = 0
    failed_services: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        duration_ms: float | None = None
        if self.completed_at and self.started_at:
            duration_ms = (self.completed_at - self.started_at).total_seconds() * 1000

        return {
            "trigger": self.trigger,
            "paths": list(self.paths),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "success": self.success,
            "duration_ms": duration_ms,
            "services": self.services,
            "failed_services": list(self.failed_services),
            "error": self.error,
        }


class ReloadHistory:
    """In-memory reload log. Thread-safe via asyncio lock."""

    def __init__(self, max_records: int = 50) -> None:
        self._records: deque[ReloadRecord] = deque(maxlen=max_records or None)
        self._lock = asyncio.Lock()

    async def record(self, record: ReloadRecord) -> None:
        async with self._lock:
            self._records.append(record)

    async def get_recent(self, limit: int = 10) -> list[ReloadRecord]:
        """Most recent cycles first."""
        async with self._lock:
            records = list(self._records)
        records.reverse()
        return records[:limit]

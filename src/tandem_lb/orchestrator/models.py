"""Lifecycle states and instance records owned by the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class Role(str, Enum):
    MASTER = "master"
    SLAVE = "slave"
    DISPATCHER = "dispatcher"


class InstanceState(str, Enum):
    """stopped -> starting -> running -> draining -> stopped"""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    DRAINING = "draining"


class OrchestratorState(str, Enum):
    IDLE = "idle"
    STARTING_UP = "starting_up"
    COMPILING = "compiling"
    DRAINING_SLAVE = "draining_slave"
    STARTING_SLAVE = "starting_slave"
    DRAINING_MASTER = "draining_master"
    STARTING_MASTER = "starting_master"
    SHUTTING_DOWN = "shutting_down"


@dataclass
class ProxyInstance:
    """One proxy-engine instance and its current lifecycle state."""

    role: Role
    port: int
    config_path: str
    state: InstanceState = InstanceState.STOPPED
    pid: int | None = None
    restarts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "port": self.port,
            "config_path": self.config_path,
            "state": self.state.value,
            "pid": self.pid,
            "restarts": self.restarts,
        }


@dataclass(frozen=True)
class ChangeBatch:
    """A coalesced group of change notifications that triggers one reload."""

    paths: tuple[str, ...] = ()
    source: str = "watcher"  # "watcher" | "api" | "cli"
    received_at: datetime = field(default_factory=lambda: datetime.now(UTC))

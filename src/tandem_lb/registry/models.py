"""Data models for service definitions and the compiled registry."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class BackendHost(BaseModel):
    """A host:port pair a service routes to. Extra keys are tolerated."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    host: str
    port: int = Field(..., ge=1, le=65535)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


class ServiceDefinition(BaseModel):
    """One named service as declared in a definition document."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(..., pattern=r"^[A-Za-z0-9_.-]+$")
    domain_name: str
    is_default: bool = False
    balance: str = "roundrobin"
    backends: list[BackendHost] = Field(default_factory=list)
    options: list[str] = Field(default_factory=list)

    @property
    def backend_name(self) -> str:
        return f"{self.name}_backend"


@dataclass
class DefinitionDocument:
    """A definition file that parsed and validated cleanly."""

    source: str
    services: list[ServiceDefinition] = field(default_factory=list)


@dataclass
class DefinitionError:
    """A definition file that was skipped, and why."""

    source: str
    kind: Literal["parse", "validation"]
    message: str


DefinitionResult = DefinitionDocument | DefinitionError


@dataclass
class ServiceRegistry:
    """Surviving services in definition order, each with reachable backends only."""

    services: dict[str, ServiceDefinition] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.services)

    def __iter__(self) -> Iterator[ServiceDefinition]:
        return iter(self.services.values())

    def __contains__(self, name: object) -> bool:
        return name in self.services

    @property
    def default(self) -> ServiceDefinition | None:
        for service in self.services.values():
            if service.is_default:
                return service
        return None


@dataclass
class BuildResult:
    """Outcome of one registry build."""

    registry: ServiceRegistry
    failed: frozenset[str]
    newly_failed: list[str] = field(default_factory=list)
    recovered: list[str] = field(default_factory=list)
    skipped: list[DefinitionError] = field(default_factory=list)

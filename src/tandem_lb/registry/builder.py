"""Service registry builder — validates definitions and tracks failed services."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from tandem_lb.errors import DuplicateServiceError, MultipleDefaultsError
from tandem_lb.registry.models import (
    BuildResult,
    DefinitionError,
    DefinitionResult,
    ServiceDefinition,
    ServiceRegistry,
)

logger = logging.getLogger(__name__)

Reachable = Callable[[str], bool]


class RegistryBuilder:
    """Builds a fresh ServiceRegistry per compilation.

    The failed-services set lives here and persists across builds. It is only
    replaced when a build completes; a fatal validation error leaves it as it
    was.
    """

    def __init__(self) -> None:
        self._failed: set[str] = set()

    @property
    def failed(self) -> frozenset[str]:
        return frozenset(self._failed)

    def build(self, results: Iterable[DefinitionResult], reachable: Reachable) -> BuildResult:
        registry = ServiceRegistry()
        failed = set(self._failed)
        newly_failed: list[str] = []
        recovered: list[str] = []
        skipped: list[DefinitionError] = []
        seen: dict[str, str] = {}
        default: str | None = None

        for result in results:
            if isinstance(result, DefinitionError):
                logger.error("Skipping %s (%s error): %s", result.source, result.kind, result.message)
                skipped.append(result)
                continue

            for service in result.services:
                if service.name in seen:
                    raise DuplicateServiceError(service.name, seen[service.name], result.source)
                seen[service.name] = result.source

                live = [b for b in service.backends if reachable(b.host)]
                if not live:
                    if service.name not in failed:
                        failed.add(service.name)
                        newly_failed.append(service.name)
                    continue
                if service.name in failed:
                    failed.discard(service.name)
                    recovered.append(service.name)

                if service.is_default:
                    if default is not None:
                        raise MultipleDefaultsError(service.name, default)
                    default = service.name

                registry.services[service.name] = service.model_copy(update={"backends": live})

        gone = failed - seen.keys()
        if gone:
            logger.debug("Forgetting failed services no longer defined: %s", ", ".join(sorted(gone)))
            failed -= gone

        for name in newly_failed:
            logger.warning("Service %s has no reachable backends; excluding it", name)
        for name in recovered:
            logger.info("Service %s has reachable backends again; restoring it", name)

        self._failed = failed
        return BuildResult(
            registry=registry,
            failed=frozenset(failed),
            newly_failed=newly_failed,
            recovered=recovered,
            skipped=skipped,
        )


def build_registry(
    results: Iterable[DefinitionResult],
    reachable: Reachable,
    builder: RegistryBuilder | None = None,
) -> ServiceRegistry:
    """One-shot convenience wrapper around RegistryBuilder.build."""
    return (builder or RegistryBuilder()).build(results, reachable).registry


def list_definitions(results: Iterable[DefinitionResult]) -> list[tuple[str, ServiceDefinition]]:
    """Flatten loaded documents into (source, service) pairs, skipping errors."""
    out: list[tuple[str, ServiceDefinition]] = []
    for result in results:
        if isinstance(result, DefinitionError):
            continue
        out.extend((result.source, service) for service in result.services)
    return out

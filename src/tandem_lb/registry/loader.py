"""Reads service definition files into explicit per-file results."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from tandem_lb.registry.models import DefinitionDocument, DefinitionError, DefinitionResult, ServiceDefinition

logger = logging.getLogger(__name__)

DEFINITION_SUFFIXES = (".yml", ".yaml", ".json")


def is_definition_file(path: Path) -> bool:
    """Whether *path* names a file the loader would read."""
    return not path.name.startswith(".") and path.suffix.lower() in DEFINITION_SUFFIXES


class _NotAMapping(Exception):
    def __init__(self, found: str) -> None:
        super().__init__(f"expected a mapping of service name to definition, got {found}")


def _load_entries(text: str) -> list[tuple[Any, Any]] | None:
    """Parse *text* into its top-level (key, value) pairs, in order.

    ``yaml.safe_load`` collapses a repeated key to its last value, which
    would hide a service defined twice in one file, so the top-level mapping
    node is constructed pair by pair. Returns None for an empty document.
    """
    loader = yaml.SafeLoader(text)
    try:
        node = loader.get_single_node()
        if node is None:
            return None
        if not isinstance(node, yaml.MappingNode):
            value = loader.construct_document(node)
            if value is None:
                return None
            raise _NotAMapping(type(value).__name__)
        loader.flatten_mapping(node)
        return [
            (loader.construct_object(key, deep=True), loader.construct_object(value, deep=True))
            for key, value in node.value
        ]
    finally:
        loader.dispose()


def parse_definition(source: str, text: str) -> DefinitionResult:
    """Parse one document. Never raises; failures come back as DefinitionError.

    A name repeated inside the document yields one ServiceDefinition per
    occurrence so the registry builder reports it as a duplicate.
    """
    try:
        entries = _load_entries(text)
    except yaml.YAMLError as exc:
        return DefinitionError(source=source, kind="parse", message=str(exc))
    except _NotAMapping as exc:
        return DefinitionError(source=source, kind="validation", message=str(exc))

    if entries is None:
        return DefinitionDocument(source=source)

    services: list[ServiceDefinition] = []
    for name, body in entries:
        if not isinstance(body, dict):
            return DefinitionError(
                source=source, kind="validation", message=f"service '{name}' must be a mapping"
            )
        data: dict[str, Any] = {**body, "name": str(name)}
        try:
            services.append(ServiceDefinition(**data))
        except ValidationError as exc:
            return DefinitionError(source=source, kind="validation", message=f"service '{name}': {exc}")
    return DefinitionDocument(source=source, services=services)


def definition_files(directory: Path) -> list[Path]:
    """Definition files in *directory*, sorted by name, hidden files ignored."""
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.is_file() and is_definition_file(p))


def load_definitions(directory: Path | str) -> list[DefinitionResult]:
    """Load every definition file in *directory* as a DefinitionResult."""
    results: list[DefinitionResult] = []
    for path in definition_files(Path(directory)):
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            results.append(DefinitionError(source=str(path), kind="parse", message=str(exc)))
            continue
        results.append(parse_definition(str(path), text))
    logger.debug("Loaded %d definition file(s) from %s", len(results), directory)
    return results

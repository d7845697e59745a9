"""Host reachability backed by a hosts-table file."""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return False
    return True


@dataclass(frozen=True)
class HostTable:
    """Snapshot of the names known to a hosts file."""

    names: frozenset[str] = frozenset()

    def is_reachable(self, host: str) -> bool:
        """A host is reachable when it is an IP literal or a known name."""
        if _is_ip_literal(host):
            return True
        return host.lower() in self.names


def parse_hosts(text: str) -> HostTable:
    """Parse hosts(5) syntax: ``address name [aliases...]``, ``#`` comments."""
    names: set[str] = set()
    for line in text.splitlines():
        line = line.split("#", 1)[0].strip()
        if not line:
            continue
        fields = line.split()
        if len(fields) < 2:
            continue
        names.update(name.lower() for name in fields[1:])
    return HostTable(names=frozenset(names))


def load_host_table(path: Path | str, fallback: HostTable | None = None) -> HostTable:
    """Read the hosts file fresh.

    A missing file knows no names. A file that exists but cannot be read or
    decoded yields *fallback* (the caller's last good table) when given.
    """
    hosts_path = Path(path)
    try:
        text = hosts_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.warning("Hosts file %s not found; only IP backends are reachable", hosts_path)
        return HostTable()
    except (OSError, UnicodeDecodeError) as exc:
        if fallback is not None:
            logger.error("Cannot read hosts file %s (%s); keeping the previous table", hosts_path, exc)
            return fallback
        logger.error("Cannot read hosts file %s (%s); only IP backends are reachable", hosts_path, exc)
        return HostTable()
    return parse_hosts(text)

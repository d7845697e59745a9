"""Header templates prepended verbatim to generated configuration."""

from __future__ import annotations

from pathlib import Path

DEFAULT_INSTANCE_HEADER = """\
global
    maxconn 4096

defaults
    mode http
    option forwardfor
    option http-server-close
    timeout connect 5s
    timeout client 50s
    timeout server 50s
"""

DEFAULT_DISPATCHER_HEADER = """\
global
    maxconn 8192

defaults
    mode http
    option forwardfor
    option redispatch
    retries 3
    timeout connect 5s
    timeout client 50s
    timeout server 50s
    timeout check 2s
"""


def read_header(path: str | None, default: str) -> str:
    """Return the template at *path*, or *default* when no path is set."""
    if path is None:
        return default
    return Path(path).read_text(encoding="utf-8")

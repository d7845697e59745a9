"""Renders the dispatcher configuration fronting the master/slave pair."""

from __future__ import annotations

import logging
from pathlib import Path

from tandem_lb.compiler.instance import INDENT
from tandem_lb.config.models import DispatcherConfig, InstancesConfig

logger = logging.getLogger(__name__)

NO_HOST_SENTINEL = "@nohost"


def exclusion_predicate(domain: str) -> str:
    """Predicate matching requests for *domain*, or Host-less ones for the sentinel."""
    if domain == NO_HOST_SENTINEL:
        return "{ req.hdr_cnt(host) eq 0 }"
    return f"{{ hdr(host) -i {domain} }}"


def redirect_guard(exclusions: list[str]) -> str:
    """Redirect unless the connection is TLS or any exclusion predicate matches."""
    terms = ["!{ ssl_fc }"] + [f"!{exclusion_predicate(d)}" for d in exclusions]
    return " ".join(terms)


def compile_dispatcher_config(
    dispatcher: DispatcherConfig,
    instances: InstancesConfig,
    certificate: Path | str,
    header: str,
) -> str:
    """Compile the dispatcher document. Independent of service definitions."""
    cert_path = Path(certificate)
    has_cert = cert_path.exists()
    bind = dispatcher.bind_address

    lines = header.rstrip("\n").splitlines() + [""] if header else []
    lines += ["frontend dispatcher", f"{INDENT}bind {bind}:{dispatcher.http_port}"]
    if has_cert:
        lines.append(f"{INDENT}bind {bind}:{dispatcher.https_port} ssl crt {cert_path}")
        if dispatcher.force_https:
            guard = redirect_guard(dispatcher.https_exclusions)
            lines.append(f"{INDENT}redirect scheme https code 301 if {guard}")
    else:
        logger.warning("No certificate at %s; dispatcher will serve plain HTTP only", cert_path)
        if dispatcher.force_https:
            logger.warning("force_https ignored without a certificate")
    lines.append(f"{INDENT}default_backend instances")

    addr = instances.bind_address
    lines += [
        "",
        "backend instances",
        f"{INDENT}server master {addr}:{instances.master_port} check",
        f"{INDENT}server slave {addr}:{instances.slave_port} check backup",
    ]
    return "\n".join(lines) + "\n"

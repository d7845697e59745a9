"""Renders a service registry into a master/slave instance configuration."""

from __future__ import annotations

from tandem_lb.registry.models import ServiceDefinition, ServiceRegistry

PORT_PLACEHOLDER = "%PORT%"
INDENT = "    "


def _frontend(registry: ServiceRegistry, bind_address: str) -> list[str]:
    lines = ["frontend http-in", f"{INDENT}bind {bind_address}:{PORT_PLACEHOLDER}"]
    for service in registry:
        lines.append(f"{INDENT}acl host_{service.name} hdr(host) -i {service.domain_name}")
        lines.append(f"{INDENT}use_backend {service.backend_name} if host_{service.name}")
    # After the per-service pairs so host matches win over the fallback.
    default = registry.default
    if default is not None:
        lines.append(f"{INDENT}default_backend {default.backend_name}")
    return lines


def _backend(service: ServiceDefinition) -> list[str]:
    lines = [f"backend {service.backend_name}"]
    if len(service.backends) > 1:
        lines.append(f"{INDENT}balance {service.balance}")
    for index, backend in enumerate(service.backends, start=1):
        lines.append(f"{INDENT}server {service.name}{index} {backend.address}")
    lines.extend(f"{INDENT}{option}" for option in service.options)
    return lines


def render_instance_template(
    registry: ServiceRegistry, header: str, bind_address: str = "*"
) -> tuple[list[str], list[str]]:
    """Return (header and frontend lines, backend lines), placeholder intact.

    Only the first list is port-substituted; header templates may reference
    the instance port too.
    """
    head = header.rstrip("\n").splitlines() + [""] if header else []
    body: list[str] = []
    for service in registry:
        body.append("")
        body.extend(_backend(service))
    return head + _frontend(registry, bind_address), body


def compile_instance_config(
    registry: ServiceRegistry,
    port: int,
    header: str,
    bind_address: str = "*",
) -> str:
    """Compile a complete configuration document listening on *port*.

    Backend server names are ``<service><n>`` with ``n`` counted from 1 over
    the reachable backends in definition order, so they stay stable across
    recompilations of an unchanged backend list.
    """
    frontend, body = render_instance_template(registry, header, bind_address)
    frontend = [line.replace(PORT_PLACEHOLDER, str(port)) for line in frontend]
    return "\n".join(frontend + body) + "\n"

"""Reload orchestrator — rotates the master/slave pair onto new configuration.

Startup:
1. Compile and write master, slave and dispatcher configuration
2. Start master and slave
3. Wait for them to settle, then start the dispatcher (it health-checks both)

Reload cycle, one per change batch, never overlapping:
1. Rebuild the registry and rewrite master and slave configuration
2. Drain and restart the slave
3. Drain and restart the master

The dispatcher prefers the master and falls back to the slave, so restarting
the slave first and the master last keeps one instance serving at all times.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from tandem_lb.compiler.dispatcher import compile_dispatcher_config
from tandem_lb.compiler.headers import DEFAULT_DISPATCHER_HEADER, DEFAULT_INSTANCE_HEADER, read_header
from tandem_lb.compiler.instance import compile_instance_config
from tandem_lb.config.models import TandemConfig
from tandem_lb.errors import ProcessLifecycleError, ValidationFatal
from tandem_lb.events.emitter import EventEmitter, ReloadEvent
from tandem_lb.orchestrator.history import ReloadHistory, ReloadRecord
from tandem_lb.orchestrator.models import (
    ChangeBatch,
    InstanceState,
    OrchestratorState,
    ProxyInstance,
    Role,
)
from tandem_lb.process.handle import ProxyProcess, engine_command
from tandem_lb.registry.builder import RegistryBuilder
from tandem_lb.registry.loader import load_definitions
from tandem_lb.registry.models import BuildResult, ServiceRegistry
from tandem_lb.registry.reachability import HostTable, load_host_table

logger = logging.getLogger(__name__)

ProcessFactory = Callable[[str, list[str]], ProxyProcess]

_CYCLE_STATES = {
    Role.SLAVE: (OrchestratorState.DRAINING_SLAVE, OrchestratorState.STARTING_SLAVE),
    Role.MASTER: (OrchestratorState.DRAINING_MASTER, OrchestratorState.STARTING_MASTER),
}


@dataclass
class CompiledConfigs:
    """Master and slave documents compiled from one registry build."""

    build: BuildResult
    master: str
    slave: str


def write_config(path: Path | str, text: str) -> None:
    """Write *text* to *path* via a temporary file and rename."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_name(f".{target.name}.tmp")
    tmp.write_text(text, encoding="utf-8")
    os.replace(tmp, target)


class ReloadOrchestrator:
    """Owns the three proxy instances and every lifecycle transition."""

    def __init__(
        self,
        config: TandemConfig,
        builder: RegistryBuilder | None = None,
        emitter: EventEmitter | None = None,
        history: ReloadHistory | None = None,
        process_factory: ProcessFactory = ProxyProcess,
    ) -> None:
        self._config = config
        self._builder = builder or RegistryBuilder()
        self._emitter = emitter
        self._history = history
        self._process_factory = process_factory
        self._processes: dict[Role, ProxyProcess] = {}
        self.state = OrchestratorState.IDLE
        self.registry = ServiceRegistry()
        self.reloads = 0
        self._hosts: HostTable | None = None

        paths = config.paths
        self.instances: dict[Role, ProxyInstance] = {
            Role.MASTER: ProxyInstance(Role.MASTER, config.instances.master_port, paths.master_config),
            Role.SLAVE: ProxyInstance(Role.SLAVE, config.instances.slave_port, paths.slave_config),
            Role.DISPATCHER: ProxyInstance(
                Role.DISPATCHER, config.dispatcher.http_port, paths.dispatcher_config
            ),
        }

    @property
    def failed_services(self) -> frozenset[str]:
        return self._builder.failed

    # ─── compilation ───

    def compile(self) -> CompiledConfigs:
        """Rebuild the registry and compile both instance documents.

        Raises ValidationFatal before anything is written.
        """
        paths = self._config.paths
        table = self._hosts = load_host_table(paths.hosts_file, self._hosts)
        build = self._builder.build(load_definitions(paths.services_dir), table.is_reachable)
        header = read_header(paths.instance_header, DEFAULT_INSTANCE_HEADER)
        bind = self._config.instances.bind_address
        return CompiledConfigs(
            build=build,
            master=compile_instance_config(build.registry, self._config.instances.master_port, header, bind),
            slave=compile_instance_config(build.registry, self._config.instances.slave_port, header, bind),
        )

    def compile_dispatcher(self) -> str:
        paths = self._config.paths
        header = read_header(paths.dispatcher_header, DEFAULT_DISPATCHER_HEADER)
        return compile_dispatcher_config(
            self._config.dispatcher, self._config.instances, paths.certificate, header
        )

    def _write_instances(self, compiled: CompiledConfigs) -> None:
        write_config(self.instances[Role.MASTER].config_path, compiled.master)
        write_config(self.instances[Role.SLAVE].config_path, compiled.slave)
        self.registry = compiled.build.registry

    # ─── instance lifecycle ───

    async def _emit(self, event_type: str, **data: object) -> None:
        if self._emitter is not None:
            await self._emitter.emit(ReloadEvent(event_type=event_type, data=dict(data)))

    async def _launch(self, role: Role) -> None:
        instance = self.instances[role]
        engine = self._config.engine
        instance.state = InstanceState.STARTING
        process = self._process_factory(
            role.value, engine_command(engine.binary, instance.config_path, engine.debug)
        )
        try:
            await process.start()
        except OSError as exc:
            instance.state = InstanceState.STOPPED
            raise ProcessLifecycleError(role.value, f"could not launch {engine.binary}: {exc}") from exc

        await asyncio.sleep(engine.start_grace_seconds)
        if not process.running:
            instance.state = InstanceState.STOPPED
            instance.pid = None
            raise ProcessLifecycleError(
                role.value, f"exited with {process.returncode} right after launch"
            )

        self._processes[role] = process
        instance.pid = process.pid
        instance.state = InstanceState.RUNNING
        await self._emit("instance.started", role=role.value, pid=process.pid, port=instance.port)

    async def _drain(self, role: Role) -> None:
        instance = self.instances[role]
        process = self._processes.pop(role, None)
        if process is None:
            instance.state = InstanceState.STOPPED
            return
        instance.state = InstanceState.DRAINING
        code = await process.stop(self._config.engine.stop_timeout_seconds)
        instance.state = InstanceState.STOPPED
        instance.pid = None
        await self._emit("instance.stopped", role=role.value, pid=process.pid, exit_code=code)

    async def _restart(self, role: Role, draining: OrchestratorState, starting: OrchestratorState) -> None:
        self.state = draining
        await self._drain(role)
        self.state = starting
        await self._launch(role)
        self.instances[role].restarts += 1

    def _rotation_order(self) -> tuple[Role, Role]:
        """Slave first, master last; unless a failed cycle left the master down,
        in which case it is brought back before the slave is drained."""
        master = self.instances[Role.MASTER].state
        slave = self.instances[Role.SLAVE].state
        if master is not InstanceState.RUNNING and slave is InstanceState.RUNNING:
            return (Role.MASTER, Role.SLAVE)
        return (Role.SLAVE, Role.MASTER)

    # ─── public operations ───

    async def start(self) -> None:
        """Write all three documents and bring the rotation up.

        If any step fails, instances already launched are stopped before the
        error propagates.
        """
        self.state = OrchestratorState.STARTING_UP
        try:
            compiled = self.compile()
            self._write_instances(compiled)
            write_config(self.instances[Role.DISPATCHER].config_path, self.compile_dispatcher())
            await self._emit_build(compiled.build)

            await self._launch(Role.MASTER)
            await self._launch(Role.SLAVE)
            # The dispatcher health-checks both right away.
            await asyncio.sleep(self._config.engine.settle_seconds)
            await self._launch(Role.DISPATCHER)
        except BaseException:
            if self._processes:
                logger.error("Startup failed; stopping %s", ", ".join(r.value for r in self._processes))
                await self.shutdown()
            raise
        finally:
            self.state = OrchestratorState.IDLE
        logger.info(
            "Rotation up: %d service(s), master :%d, slave :%d",
            len(self.registry),
            self.instances[Role.MASTER].port,
            self.instances[Role.SLAVE].port,
        )

    async def reload(self, batch: ChangeBatch | None = None) -> ReloadRecord:
        """Run one full reload cycle.

        ValidationFatal propagates after being recorded. A process that fails
        to come back up, or a configuration file that cannot be read or
        written, ends the cycle early and is reported in the record.
        """
        batch = batch or ChangeBatch(source="manual")
        record = ReloadRecord(trigger=batch.source, paths=list(batch.paths))
        self.reloads += 1
        logger.info("Reload #%d triggered by %s", self.reloads, batch.source)
        await self._emit("reload.started", trigger=batch.source, paths=list(batch.paths))

        try:
            self.state = OrchestratorState.COMPILING
            compiled = self.compile()
            self._write_instances(compiled)
            await self._emit_build(compiled.build)
            record.services = len(compiled.build.registry)
            record.failed_services = sorted(compiled.build.failed)

            for role in self._rotation_order():
                await self._restart(role, *_CYCLE_STATES[role])
        except ValidationFatal as exc:
            await self._finish(record, error=str(exc))
            raise
        except ProcessLifecycleError as exc:
            logger.error("Reload #%d aborted: %s", self.reloads, exc)
            await self._finish(record, error=str(exc))
            return record
        except (OSError, UnicodeError) as exc:
            logger.error("Reload #%d aborted by I/O error: %s", self.reloads, exc)
            await self._finish(record, error=f"{type(exc).__name__}: {exc}")
            return record
        finally:
            self.state = OrchestratorState.IDLE

        await self._finish(record)
        logger.info("Reload #%d complete: %d service(s) live", self.reloads, record.services)
        return record

    async def run(self, batches: asyncio.Queue[ChangeBatch]) -> None:
        """Consume change batches one at a time, forever."""
        while True:
            batch = await batches.get()
            try:
                await self.reload(batch)
            finally:
                batches.task_done()

    async def shutdown(self) -> None:
        """Stop dispatcher first so no traffic reaches draining instances."""
        self.state = OrchestratorState.SHUTTING_DOWN
        for role in (Role.DISPATCHER, Role.SLAVE, Role.MASTER):
            await self._drain(role)
        self.state = OrchestratorState.IDLE

    async def _emit_build(self, build: BuildResult) -> None:
        for name in build.newly_failed:
            await self._emit("service.failed", service=name)
        for name in build.recovered:
            await self._emit("service.recovered", service=name)

    async def _finish(self, record: ReloadRecord, error: str | None = None) -> None:
        self.state = OrchestratorState.IDLE
        record.completed_at = datetime.now(UTC)
        record.success = error is None
        record.error = error
        if error is None:
            await self._emit("reload.completed", services=record.services, failed=record.failed_services)
        else:
            await self._emit("reload.failed", error=error)
        if self._history is not None:
            await self._history.record(record)

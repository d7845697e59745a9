"""Tests for the reload orchestrator."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from conftest import API_SERVICE, WEB_SERVICE, FakeProcess, write_definition

from tandem_lb.config.models import TandemConfig
from tandem_lb.errors import DuplicateServiceError, MultipleDefaultsError, ProcessLifecycleError
from tandem_lb.events.emitter import EventEmitter
from tandem_lb.events.log import EventLog
from tandem_lb.orchestrator.history import ReloadHistory
from tandem_lb.orchestrator.models import ChangeBatch, InstanceState, OrchestratorState, Role
from tandem_lb.orchestrator.reload import ReloadOrchestrator, write_config


def _paths(config: TandemConfig) -> dict[str, Path]:
    return {
        "master": Path(config.paths.master_config),
        "slave": Path(config.paths.slave_config),
        "dispatcher": Path(config.paths.dispatcher_config),
    }


@pytest.fixture()
def event_log() -> EventLog:
    return EventLog()


@pytest.fixture()
def orchestrator(sample_config: TandemConfig, fake_factory, event_log: EventLog) -> ReloadOrchestrator:
    emitter = EventEmitter()
    emitter.add_listener(event_log)
    return ReloadOrchestrator(
        sample_config,
        emitter=emitter,
        history=ReloadHistory(),
        process_factory=fake_factory,
    )


class TestWriteConfig:
    def test_creates_parent_and_replaces(self, tmp_path: Path):
        target = tmp_path / "a" / "b.cfg"
        write_config(target, "one")
        write_config(target, "two")
        assert target.read_text() == "two"
        assert list(target.parent.iterdir()) == [target]


class TestStartup:
    @pytest.mark.asyncio
    async def test_start_writes_and_launches_in_order(
        self, orchestrator: ReloadOrchestrator, sample_config: TandemConfig, services_dir: Path, journal: list
    ):
        write_definition(services_dir, "api.yaml", API_SERVICE)
        await orchestrator.start()

        paths = _paths(sample_config)
        assert all(p.exists() for p in paths.values())
        assert "bind 127.0.0.1:8001" in paths["master"].read_text()
        assert "bind 127.0.0.1:8002" in paths["slave"].read_text()
        assert "server slave 127.0.0.1:8002 check backup" in paths["dispatcher"].read_text()

        assert [(kind, role) for kind, role, _ in journal] == [
            ("start", "master"),
            ("start", "slave"),
            ("start", "dispatcher"),
        ]
        assert all(i.state is InstanceState.RUNNING for i in orchestrator.instances.values())
        assert orchestrator.state is OrchestratorState.IDLE

    @pytest.mark.asyncio
    async def test_engine_invoked_with_config_path(
        self, orchestrator: ReloadOrchestrator, sample_config: TandemConfig
    ):
        commands: list[list[str]] = []
        original = orchestrator._process_factory

        def factory(role: str, command: list[str]):
            commands.append(command)
            return original(role, command)

        orchestrator._process_factory = factory
        await orchestrator.start()
        assert commands[0] == ["haproxy", "-f", sample_config.paths.master_config]

    @pytest.mark.asyncio
    async def test_duplicate_at_startup_writes_nothing(
        self, orchestrator: ReloadOrchestrator, sample_config: TandemConfig, services_dir: Path, journal: list
    ):
        write_definition(services_dir, "a.yaml", {"web": WEB_SERVICE["web"]})
        write_definition(services_dir, "b.yaml", {"web": API_SERVICE["api"]})

        with pytest.raises(DuplicateServiceError):
            await orchestrator.start()
        assert not any(p.exists() for p in _paths(sample_config).values())
        assert journal == []

    @pytest.mark.asyncio
    async def test_failed_slave_start_stops_master(self, sample_config: TandemConfig, journal: list):
        def factory(role: str, command: list[str]) -> FakeProcess:
            return FakeProcess(role, command, journal, fail_start=role == "slave")

        orch = ReloadOrchestrator(sample_config, process_factory=factory)
        with pytest.raises(ProcessLifecycleError, match="slave"):
            await orch.start()

        assert [(kind, role) for kind, role, _ in journal] == [
            ("start", "master"),
            ("start", "slave"),
            ("signal", "master"),
            ("exit", "master"),
        ]
        assert all(i.state is InstanceState.STOPPED for i in orch.instances.values())
        assert orch.state is OrchestratorState.IDLE

    @pytest.mark.asyncio
    async def test_failed_dispatcher_start_stops_pair(self, sample_config: TandemConfig, journal: list):
        def factory(role: str, command: list[str]) -> FakeProcess:
            return FakeProcess(role, command, journal, fail_start=role == "dispatcher")

        orch = ReloadOrchestrator(sample_config, process_factory=factory)
        with pytest.raises(ProcessLifecycleError, match="dispatcher"):
            await orch.start()

        stops = [role for kind, role, _ in journal if kind == "signal"]
        assert stops == ["slave", "master"]
        assert orch.instances[Role.MASTER].pid is None


class TestReload:
    @pytest.mark.asyncio
    async def test_slave_restarts_before_master(
        self, orchestrator: ReloadOrchestrator, services_dir: Path, journal: list
    ):
        write_definition(services_dir, "api.yaml", API_SERVICE)
        await orchestrator.start()
        journal.clear()

        record = await orchestrator.reload(ChangeBatch(paths=("api.yaml",)))

        assert record.success
        assert [(kind, role) for kind, role, _ in journal] == [
            ("signal", "slave"),
            ("exit", "slave"),
            ("start", "slave"),
            ("signal", "master"),
            ("exit", "master"),
            ("start", "master"),
        ]
        assert orchestrator.instances[Role.DISPATCHER].restarts == 0
        assert orchestrator.instances[Role.MASTER].restarts == 1
        assert orchestrator.state is OrchestratorState.IDLE

    @pytest.mark.asyncio
    async def test_master_and_slave_never_down_together(
        self, sample_config: TandemConfig, services_dir: Path, journal: list
    ):
        write_definition(services_dir, "api.yaml", API_SERVICE)
        snapshots: list[dict[Role, InstanceState]] = []
        holder: dict[str, ReloadOrchestrator] = {}

        class SnapshotProcess(FakeProcess):
            def _snap(self):
                orch = holder["orch"]
                snapshots.append({r: i.state for r, i in orch.instances.items()})

            async def start(self):
                self._snap()
                return await super().start()

            def request_graceful_stop(self):
                self._snap()
                super().request_graceful_stop()

            async def await_exit(self, timeout=None):
                self._snap()
                return await super().await_exit(timeout)

        orch = ReloadOrchestrator(
            sample_config, process_factory=lambda role, cmd: SnapshotProcess(role, cmd, journal)
        )
        holder["orch"] = orch
        await orch.start()
        snapshots.clear()

        for _ in range(3):
            await orch.reload()

        assert snapshots
        for snap in snapshots:
            down = [r for r in (Role.MASTER, Role.SLAVE) if snap[r] is not InstanceState.RUNNING]
            assert len(down) <= 1, snap

    @pytest.mark.asyncio
    async def test_dispatcher_not_rewritten_on_reload(
        self, orchestrator: ReloadOrchestrator, sample_config: TandemConfig, services_dir: Path
    ):
        await orchestrator.start()
        dispatcher = Path(sample_config.paths.dispatcher_config)
        dispatcher.write_text("sentinel\n")

        write_definition(services_dir, "api.yaml", API_SERVICE)
        await orchestrator.reload()
        assert dispatcher.read_text() == "sentinel\n"
        assert "api_backend" in Path(sample_config.paths.master_config).read_text()

    @pytest.mark.asyncio
    async def test_multiple_defaults_aborts_without_writing(
        self, orchestrator: ReloadOrchestrator, sample_config: TandemConfig, services_dir: Path, journal: list
    ):
        write_definition(services_dir, "web.yaml", WEB_SERVICE)
        await orchestrator.start()
        master = Path(sample_config.paths.master_config)
        before = master.read_text()
        journal.clear()

        other = {"other": {**API_SERVICE["api"], "is_default": True}}
        write_definition(services_dir, "other.yaml", other)
        with pytest.raises(MultipleDefaultsError):
            await orchestrator.reload()

        assert master.read_text() == before
        assert journal == []
        assert orchestrator.state is OrchestratorState.IDLE
        records = await orchestrator._history.get_recent()
        assert records[0].success is False

    @pytest.mark.asyncio
    async def test_unreachable_service_excluded_then_recovers(
        self,
        orchestrator: ReloadOrchestrator,
        sample_config: TandemConfig,
        services_dir: Path,
        hosts_file: Path,
        event_log: EventLog,
    ):
        write_definition(services_dir, "web.yaml", WEB_SERVICE)
        hosts_file.write_text("127.0.0.1 localhost\n")
        await orchestrator.start()
        master = Path(sample_config.paths.master_config)

        assert "web_backend" not in master.read_text()
        assert orchestrator.failed_services == frozenset({"web"})

        await orchestrator.reload()
        failed_events = await event_log.get_recent(event_type="service.failed")
        assert len(failed_events) == 1

        hosts_file.write_text("172.17.0.9 web\n")
        record = await orchestrator.reload()
        assert record.failed_services == []
        assert orchestrator.failed_services == frozenset()
        text = master.read_text()
        assert "use_backend web_backend if host_web" in text
        assert "server web1 web:3000" in text
        recovered = await event_log.get_recent(event_type="service.recovered")
        assert [e.data["service"] for e in recovered] == ["web"]

    @pytest.mark.asyncio
    async def test_failed_slave_start_leaves_master_alone(
        self, sample_config: TandemConfig, services_dir: Path, journal: list
    ):
        fail_roles: set[str] = set()

        def factory(role: str, command: list[str]) -> FakeProcess:
            return FakeProcess(role, command, journal, fail_start=role in fail_roles)

        orch = ReloadOrchestrator(sample_config, history=ReloadHistory(), process_factory=factory)
        await orch.start()
        journal.clear()

        fail_roles.add("slave")
        record = await orch.reload()

        assert not record.success
        assert "slave" in (record.error or "")
        assert [role for _, role, _ in journal] == ["slave", "slave", "slave"]
        assert orch.instances[Role.MASTER].state is InstanceState.RUNNING
        assert orch.instances[Role.SLAVE].state is InstanceState.STOPPED

    @pytest.mark.asyncio
    async def test_master_left_down_is_restored_before_slave_drains(
        self, sample_config: TandemConfig, services_dir: Path, journal: list
    ):
        fail_roles: set[str] = set()

        def factory(role: str, command: list[str]) -> FakeProcess:
            return FakeProcess(role, command, journal, fail_start=role in fail_roles)

        orch = ReloadOrchestrator(sample_config, process_factory=factory)
        await orch.start()
        fail_roles.add("master")
        assert not (await orch.reload()).success
        assert orch.instances[Role.MASTER].state is InstanceState.STOPPED
        assert orch.instances[Role.SLAVE].state is InstanceState.RUNNING

        fail_roles.clear()
        journal.clear()
        assert (await orch.reload()).success
        assert [(kind, role) for kind, role, _ in journal] == [
            ("start", "master"),
            ("signal", "slave"),
            ("exit", "slave"),
            ("start", "slave"),
        ]

    @pytest.mark.asyncio
    async def test_launch_oserror_is_lifecycle_failure(
        self, sample_config: TandemConfig, services_dir: Path, journal: list
    ):
        class Missing(FakeProcess):
            async def start(self):
                raise FileNotFoundError("haproxy")

        orch = ReloadOrchestrator(sample_config, process_factory=lambda r, c: Missing(r, c, journal))

        with pytest.raises(ProcessLifecycleError, match="could not launch"):
            await orch.start()


    @pytest.mark.asyncio
    async def test_undecodable_hosts_file_keeps_previous_table(
        self, orchestrator: ReloadOrchestrator, services_dir: Path, hosts_file: Path
    ):
        write_definition(services_dir, "web.yaml", WEB_SERVICE)
        await orchestrator.start()
        assert "web" in orchestrator.registry

        hosts_file.write_bytes(b"10.0.0.9 caf\xe9\n")
        record = await orchestrator.reload()

        assert record.success
        assert "web" in orchestrator.registry
        assert orchestrator.failed_services == frozenset()

    @pytest.mark.asyncio
    async def test_config_io_error_is_recorded(
        self, sample_config: TandemConfig, tmp_path: Path, journal: list, fake_factory, event_log: EventLog
    ):
        header = tmp_path / "instance.header"
        header.write_text("global\n")
        config = sample_config.model_copy(
            update={"paths": sample_config.paths.model_copy(update={"instance_header": str(header)})}
        )
        emitter = EventEmitter()
        emitter.add_listener(event_log)
        orch = ReloadOrchestrator(config, emitter=emitter, history=ReloadHistory(), process_factory=fake_factory)
        await orch.start()
        journal.clear()

        header.unlink()
        record = await orch.reload()

        assert not record.success
        assert "FileNotFoundError" in (record.error or "")
        assert orch.state is OrchestratorState.IDLE
        assert journal == []
        assert len(await event_log.get_recent(event_type="reload.failed")) == 1
        assert (await orch._history.get_recent())[0] is record


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_batches_processed_one_at_a_time(
        self, orchestrator: ReloadOrchestrator, services_dir: Path
    ):
        await orchestrator.start()
        active = 0
        peak = 0
        original = orchestrator.reload

        async def tracking_reload(batch=None):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            try:
                return await original(batch)
            finally:
                active -= 1

        orchestrator.reload = tracking_reload  # type: ignore[method-assign]
        queue: asyncio.Queue[ChangeBatch] = asyncio.Queue()
        for i in range(3):
            queue.put_nowait(ChangeBatch(paths=(f"f{i}.yaml",)))

        worker = asyncio.create_task(orchestrator.run(queue))
        await asyncio.wait_for(queue.join(), timeout=5)
        worker.cancel()

        assert peak == 1
        assert orchestrator.reloads == 3

    @pytest.mark.asyncio
    async def test_unreadable_hosts_file_does_not_stop_loop(
        self, orchestrator: ReloadOrchestrator, services_dir: Path, hosts_file: Path
    ):
        write_definition(services_dir, "web.yaml", WEB_SERVICE)
        await orchestrator.start()
        hosts_file.write_bytes(b"10.0.0.9 caf\xe9\n")

        queue: asyncio.Queue[ChangeBatch] = asyncio.Queue()
        queue.put_nowait(ChangeBatch(paths=(str(hosts_file),)))
        queue.put_nowait(ChangeBatch(paths=(str(hosts_file),)))
        worker = asyncio.create_task(orchestrator.run(queue))
        await asyncio.wait_for(queue.join(), timeout=5)

        assert not worker.done()
        worker.cancel()
        assert orchestrator.reloads == 2
        assert orchestrator.state is OrchestratorState.IDLE

    @pytest.mark.asyncio
    async def test_fatal_error_stops_loop(self, orchestrator: ReloadOrchestrator, services_dir: Path):
        await orchestrator.start()
        write_definition(services_dir, "a.yaml", {"web": WEB_SERVICE["web"]})
        write_definition(services_dir, "b.yaml", {"web": WEB_SERVICE["web"]})

        queue: asyncio.Queue[ChangeBatch] = asyncio.Queue()
        queue.put_nowait(ChangeBatch())
        with pytest.raises(DuplicateServiceError):
            await asyncio.wait_for(orchestrator.run(queue), timeout=5)


class TestShutdown:
    @pytest.mark.asyncio
    async def test_dispatcher_stopped_first(self, orchestrator: ReloadOrchestrator, journal: list):
        await orchestrator.start()
        journal.clear()
        await orchestrator.shutdown()
        stops = [role for kind, role, _ in journal if kind == "signal"]
        assert stops == ["dispatcher", "slave", "master"]
        assert all(i.state is InstanceState.STOPPED for i in orchestrator.instances.values())

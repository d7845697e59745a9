"""Shared fixtures for Tandem tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import yaml

from tandem_lb.config.models import TandemConfig

API_SERVICE: dict[str, Any] = {
    "api": {
        "domain_name": "api.example.com",
        "backends": [
            {"host": "10.0.0.1", "port": 8080},
            {"host": "10.0.0.2", "port": 8080},
        ],
    },
}

WEB_SERVICE: dict[str, Any] = {
    "web": {
        "domain_name": "www.example.com",
        "is_default": True,
        "backends": [{"host": "web", "port": 3000}],
        "options": ["http-request set-header X-Port %PORT%"],
    },
}

HOSTS = "127.0.0.1 localhost\n172.17.0.5 web web.local  # app container\n"


def write_definition(directory: Path, filename: str, data: Any) -> Path:
    path = directory / filename
    path.write_text(yaml.safe_dump(data) if not isinstance(data, str) else data)
    return path


def make_config_dict(root: Path) -> dict[str, Any]:
    return {
        "paths": {
            "services_dir": str(root / "services"),
            "hosts_file": str(root / "hosts"),
            "certificate": str(root / "ssl" / "tandem.pem"),
            "master_config": str(root / "out" / "master.cfg"),
            "slave_config": str(root / "out" / "slave.cfg"),
            "dispatcher_config": str(root / "out" / "dispatcher.cfg"),
        },
        "instances": {"master_port": 8001, "slave_port": 8002},
        "engine": {"binary": "haproxy", "settle_seconds": 0, "start_grace_seconds": 0, "stop_timeout_seconds": 1},
        "watch": {"debounce_seconds": 0},
    }


@pytest.fixture()
def services_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "services"
    directory.mkdir()
    return directory


@pytest.fixture()
def hosts_file(tmp_path: Path) -> Path:
    path = tmp_path / "hosts"
    path.write_text(HOSTS)
    return path


@pytest.fixture()
def sample_config_dict(tmp_path: Path, services_dir: Path, hosts_file: Path) -> dict[str, Any]:
    """Raw config pointing every path into tmp_path."""
    return make_config_dict(tmp_path)


@pytest.fixture()
def sample_config(sample_config_dict: dict[str, Any]) -> TandemConfig:
    return TandemConfig(**sample_config_dict)


@pytest.fixture()
def config_file(tmp_path: Path, sample_config_dict: dict[str, Any]) -> Path:
    """Write sample config to a temp .tandem.yaml and return the path."""
    path = tmp_path / ".tandem.yaml"
    with path.open("w") as fh:
        yaml.dump(sample_config_dict, fh)
    return path


class FakeProcess:
    """Stands in for ProxyProcess; records calls into a shared journal."""

    next_pid = 1000

    def __init__(self, role: str, command: list[str], journal: list, fail_start: bool = False) -> None:
        self.role = role
        self.command = command
        self._journal = journal
        self._fail_start = fail_start
        self.pid: int | None = None
        self.returncode: int | None = None
        self.started = False

    @property
    def running(self) -> bool:
        return self.started and self.returncode is None

    async def start(self) -> int:
        FakeProcess.next_pid += 1
        self.pid = FakeProcess.next_pid
        self.started = True
        if self._fail_start:
            self.returncode = 1
        self._journal.append(("start", self.role, self.pid))
        return self.pid

    def request_graceful_stop(self) -> None:
        self._journal.append(("signal", self.role, self.pid))

    async def await_exit(self, timeout: float | None = None) -> int | None:
        self.returncode = 0
        return 0

    async def stop(self, timeout: float) -> int:
        self.request_graceful_stop()
        code = await self.await_exit(timeout)
        self._journal.append(("exit", self.role, self.pid))
        assert code is not None
        return code


@pytest.fixture()
def journal() -> list:
    return []


@pytest.fixture()
def fake_factory(journal: list):
    def factory(role: str, command: list[str]) -> FakeProcess:
        return FakeProcess(role, command, journal)

    return factory

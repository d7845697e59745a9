"""Process handle around one proxy-engine subprocess."""

from __future__ import annotations

import asyncio
import logging
import signal

logger = logging.getLogger(__name__)

GRACEFUL_STOP_SIGNAL = signal.SIGUSR1


def engine_command(binary: str, config_path: str, debug: bool = False) -> list[str]:
    """Command line for the proxy engine reading *config_path*."""
    cmd = [binary, "-f", config_path]
    if debug:
        cmd.append("-d")
    return cmd


class ProxyProcess:
    """One launch of the proxy engine.

    A handle is single-use: after it exits, start a new one.
    """

    def __init__(self, role: str, command: list[str]) -> None:
        self.role = role
        self.command = command
        self._proc: asyncio.subprocess.Process | None = None

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode if self._proc else None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def start(self) -> int:
        if self._proc is not None:
            raise RuntimeError(f"{self.role} process already started")
        self._proc = await asyncio.create_subprocess_exec(*self.command)
        logger.info("Started %s (pid %d): %s", self.role, self._proc.pid, " ".join(self.command))
        return self._proc.pid

    def request_graceful_stop(self) -> None:
        """Ask the engine to finish in-flight connections and exit."""
        if not self.running:
            return
        assert self._proc is not None
        try:
            self._proc.send_signal(GRACEFUL_STOP_SIGNAL)
        except ProcessLookupError:
            logger.debug("%s (pid %d) already gone", self.role, self._proc.pid)

    async def await_exit(self, timeout: float | None = None) -> int | None:
        """Wait for exit. Returns the exit code, or None on timeout."""
        if self._proc is None:
            return None
        try:
            return await asyncio.wait_for(self._proc.wait(), timeout=timeout)
        except TimeoutError:
            return None

    async def stop(self, timeout: float) -> int:
        """Graceful stop, escalating to SIGKILL after *timeout* seconds."""
        if self._proc is None:
            raise RuntimeError(f"{self.role} process was never started")
        self.request_graceful_stop()
        code = await self.await_exit(timeout)
        if code is None:
            logger.error(
                "%s (pid %d) still running %.1fs after graceful stop; killing",
                self.role,
                self._proc.pid,
                timeout,
            )
            try:
                self._proc.kill()
            except ProcessLookupError:
                pass
            code = await self._proc.wait()
        logger.info("%s (pid %d) exited with %d", self.role, self._proc.pid, code)
        return code

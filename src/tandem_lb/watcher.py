"""Change watcher feeding the orchestrator's reload queue.

Watches the service-definition directory and the hosts file. watchdog
delivers events on its observer thread; they are handed to the event loop
and coalesced until no new event has arrived for ``debounce_seconds``, then
enqueued as a single ChangeBatch.

Only events the loader would act on count: definition files (hidden files
and unknown suffixes are ignored) and the hosts file itself. A services
directory that does not exist at startup is picked up once it is created.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from tandem_lb.orchestrator.models import ChangeBatch
from tandem_lb.registry.loader import is_definition_file

logger = logging.getLogger(__name__)

_IGNORED_EVENTS = ("opened", "closed_no_write")

Accept = Callable[[Path, bool], bool]


class _Handler(FileSystemEventHandler):
    """Calls *callback* on the observer thread for each accepted event path.

    Moves are checked on both ends, so an editor that writes a hidden temp
    file and renames it over ``api.yaml`` still counts as a change.
    """

    def __init__(self, callback: Callable[[str], None], accept: Accept) -> None:
        super().__init__()
        self._callback = callback
        self._accept = accept

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in _IGNORED_EVENTS:
            return
        candidates = [event.src_path]
        dest = getattr(event, "dest_path", "")
        if dest:
            candidates.append(dest)
        for raw in candidates:
            path = Path(str(raw))
            if self._accept(path, event.is_directory):
                self._callback(str(path))
                return


def definition_events(path: Path, is_directory: bool) -> bool:
    return not is_directory and is_definition_file(path)


def file_events(target: Path) -> Accept:
    def accept(path: Path, is_directory: bool) -> bool:
        return not is_directory and path.resolve() == target

    return accept


def directory_events(target: Path) -> Accept:
    def accept(path: Path, is_directory: bool) -> bool:
        return is_directory and path.resolve() == target

    return accept


class ChangeWatcher:
    """Coalesces filesystem notifications into ChangeBatches on a queue."""

    def __init__(
        self,
        services_dir: Path | str,
        hosts_file: Path | str,
        queue: asyncio.Queue[ChangeBatch],
        debounce_seconds: float = 0.5,
    ) -> None:
        self.services_dir = Path(services_dir)
        self.hosts_file = Path(hosts_file)
        self.queue = queue
        self.debounce_seconds = debounce_seconds
        self._pending: list[str] = []
        self._timer: asyncio.TimerHandle | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: Observer | None = None
        self.watching_services = False

    def notify_threadsafe(self, path: str) -> None:
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(self.notify, path)

    def notify(self, path: str) -> None:
        """Record one raw change. Must be called on the loop thread."""
        if path not in self._pending:
            self._pending.append(path)
        if self.debounce_seconds <= 0:
            self.flush()
            return
        if self._timer is not None:
            self._timer.cancel()
        loop = self._loop or asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce_seconds, self.flush)

    def flush(self) -> None:
        """Enqueue pending paths as one batch."""
        self._timer = None
        if not self._pending:
            return
        batch = ChangeBatch(paths=tuple(self._pending), source="watcher")
        self._pending = []
        logger.info("Change detected in %s", ", ".join(batch.paths))
        self.queue.put_nowait(batch)

    def _watch_services(self) -> None:
        if self.watching_services or self._observer is None or not self.services_dir.is_dir():
            return
        self._observer.schedule(
            _Handler(self.notify_threadsafe, definition_events), str(self.services_dir), recursive=False
        )
        self.watching_services = True

    def _services_appeared(self, path: str) -> None:
        """Loop-thread callback for the services directory being created."""
        if self.watching_services:
            return
        logger.info("Services directory %s appeared; watching it", self.services_dir)
        self._watch_services()
        # Files may have landed before the watch was in place.
        self.notify(path)

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        observer = Observer()
        self._observer = observer
        self._watch_services()
        if not self.watching_services:
            parent = self.services_dir.resolve().parent
            if parent.is_dir():
                logger.warning(
                    "Services directory %s does not exist yet; waiting for it in %s", self.services_dir, parent
                )
                loop = self._loop
                observer.schedule(
                    _Handler(
                        lambda path: loop.call_soon_threadsafe(self._services_appeared, path),
                        directory_events(self.services_dir.resolve()),
                    ),
                    str(parent),
                    recursive=False,
                )
            else:
                logger.warning(
                    "Neither %s nor its parent exists; restart once it is created", self.services_dir
                )
        hosts = self.hosts_file.resolve()
        observer.schedule(_Handler(self.notify_threadsafe, file_events(hosts)), str(hosts.parent), recursive=False)
        observer.start()
        logger.info("Watching %s and %s", self.services_dir, self.hosts_file)

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        self.watching_services = False

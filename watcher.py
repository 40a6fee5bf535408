"""
Watcher keeping the published snapshot in sync with the config file on disk

Editors save files in different ways: writing in place, truncating and
writing, or writing a temporary file and renaming it over the original. The
watch is placed on the file's directory and re-armed whenever the file is
removed or renamed, and a periodic tick retries until a replaced file shows up.
"""

import logging
import os
import queue
import threading
from typing import List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from errors import ConfigError, WatchLost
from projector import load_snapshot
from publisher import Publisher


logger = logging.getLogger(__name__)

TICK_INTERVAL = 1.0

WRITE = "write"
REMOVE = "remove"
ERROR = "error"
TICK = "tick"
_STOP = "stop"


def _normalize(path: str) -> str:
    if isinstance(path, bytes):
        path = os.fsdecode(path)
    directory, name = os.path.split(os.path.abspath(path))
    return os.path.join(os.path.realpath(directory), name)


class SourceFileHandler(FileSystemEventHandler):
    """
    Watchdog handler translating directory events into watcher event kinds.
    Runs on the observer thread and only enqueues.
    """

    def __init__(self, path: str, events: queue.Queue):
        super().__init__()
        self.path = path
        self.directory = os.path.dirname(path)
        self.events = events

    def _is_source(self, path) -> bool:
        return bool(path) and _normalize(path) == self.path

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory and self._is_source(event.src_path):
            self.events.put(WRITE)

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory and self._is_source(event.src_path):
            self.events.put(WRITE)

    def on_deleted(self, event: FileSystemEvent):
        if event.is_directory and _normalize(event.src_path) == self.directory:
            logger.error(f"Watched directory {self.directory} was removed")
            self.events.put(ERROR)
            self.events.put(REMOVE)
        elif self._is_source(event.src_path):
            self.events.put(REMOVE)

    def on_moved(self, event: FileSystemEvent):
        if event.is_directory:
            return
        # Renamed away, or another file renamed onto the config path
        if self._is_source(event.src_path) or self._is_source(getattr(event, "dest_path", "")):
            self.events.put(REMOVE)


class Watcher:
    """
    Single background task reloading the config file into a Publisher.

    Two flags drive the reload: `changed` (contents must be re-read) and
    `removed` (the watch must be re-armed). Every event, including the periodic
    tick, runs one step; events that piled up while a reload was running are
    folded into one step.
    """

    def __init__(self, path: str, publisher: Publisher, tick: float = TICK_INTERVAL):
        self.path = _normalize(path)
        self.publisher = publisher
        self.tick = tick
        self.events: queue.Queue = queue.Queue()
        self.changed = False
        self.removed = False
        self.handler = SourceFileHandler(self.path, self.events)
        self._observer: Optional[Observer] = None
        self._watch = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start the observer and the reload thread."""
        self._observer = Observer()
        self._observer.start()
        try:
            self.arm()
        except WatchLost as e:
            logger.error(f"{e} - will retry")
            self.removed = True

        self._thread = threading.Thread(target=self._run, name="config-watcher", daemon=True)
        self._thread.start()
        logger.info(f"Watching config file {self.path}")

    def stop(self):
        """Stop the reload thread, release the watch and drop pending events."""
        if self._thread is not None:
            self.events.put(_STOP)
            self._thread.join()
            self._thread = None

        if self._observer is not None:
            self._observer.unschedule_all()
            self._observer.stop()
            self._observer.join()
            self._observer = None
            self._watch = None

        for _ in self._drain():
            pass
        logger.debug("Config watcher stopped")

    def arm(self):
        """(Re-)place the watch on the config file's directory."""
        if self._observer is None:
            return

        if self._watch is not None:
            try:
                self._observer.unschedule(self._watch)
            except KeyError:
                logger.debug(f"Watch on {self.handler.directory} was already gone")
            self._watch = None

        try:
            self._watch = self._observer.schedule(self.handler, self.handler.directory, recursive=False)
        except OSError as e:
            raise WatchLost(f"Could not watch config file {self.path}: {e}") from e

    def _drain(self) -> List[str]:
        pending = []
        while True:
            try:
                pending.append(self.events.get_nowait())
            except queue.Empty:
                return pending

    def _run(self):
        while True:
            try:
                kinds = [self.events.get(timeout=self.tick)]
            except queue.Empty:
                kinds = [TICK]
            kinds.extend(self._drain())

            if _STOP in kinds:
                break
            try:
                self.handle(*kinds)
            except Exception:
                logger.exception(f"Unexpected error while reloading config file {self.path}")

    def handle(self, *kinds: str):
        """Apply one or more events to the flags, then run one reload step."""
        for kind in kinds:
            logger.debug(f"Watcher got event {kind}")
            if kind == WRITE:
                self.changed = True
            elif kind == REMOVE:
                self.changed = True
                self.removed = True
            elif kind == ERROR:
                logger.error(f"Error while watching config file {self.path}")

        self.step()

    def step(self):
        if not (self.changed or self.removed) or not os.path.exists(self.path):
            return

        if self.removed:
            logger.debug(f"Rewatching config file {self.path}")
            try:
                self.arm()
                self.removed = False
            except WatchLost as e:
                logger.warning(f"{e} - retrying on next tick")
            self.changed = True

        if self.changed:
            try:
                self.reload()
            finally:
                self.changed = False

    def reload(self) -> bool:
        """Load and project the config file; install it on success. Returns whether it was installed."""
        try:
            snapshot = load_snapshot(self.path)
        except ConfigError as e:
            logger.warning(f"Could not reload config. Holding on to old config: {e}")
            return False

        self.publisher.install(snapshot)
        logger.info("Config was reloaded")
        return True


def watch(path: str, publisher: Publisher, tick: float = TICK_INTERVAL) -> Watcher:
    """Create and start a Watcher for `path`."""
    watcher = Watcher(path, publisher, tick=tick)
    watcher.start()
    return watcher

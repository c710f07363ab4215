"""Filesystem watcher classifying and debouncing configuration changes."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePath
from typing import Callable

import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import CONFIG_FILENAMES, USECASES_DIR

LOGGER = structlog.get_logger("mock_fleet")

DEFAULT_DEBOUNCE_SECONDS = 0.5
CONFIG_EXTENSIONS = frozenset({".yaml", ".yml", ".json"})


class ChangeKind(str, Enum):
    GLOBAL = "global"
    SERVICE = "service"
    MOCK_SET = "mock_set"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ConfigChangeEvent:
    path: Path
    deleted: bool
    timestamp: float

    kind = ChangeKind.UNKNOWN


@dataclass(frozen=True)
class GlobalConfigChanged(ConfigChangeEvent):
    kind = ChangeKind.GLOBAL


@dataclass(frozen=True)
class ServiceConfigChanged(ConfigChangeEvent):
    service: str = ""

    kind = ChangeKind.SERVICE


@dataclass(frozen=True)
class MockSetChanged(ConfigChangeEvent):
    service: str = ""
    usecase: str = ""

    kind = ChangeKind.MOCK_SET


@dataclass(frozen=True)
class UnknownChange(ConfigChangeEvent):
    pass


ChangeCallback = Callable[[ConfigChangeEvent], None]


def is_config_file(relative: PurePath) -> bool:
    """Reject dotfiles (in any path component) and non-config extensions."""

    if any(part.startswith(".") for part in relative.parts):
        return False
    return relative.suffix.lower() in CONFIG_EXTENSIONS


def classify(root: Path, path: Path, *, deleted: bool = False, timestamp: float | None = None) -> ConfigChangeEvent:
    """Turn an absolute path below ``root`` into a typed change event."""

    stamp = time.time() if timestamp is None else timestamp
    try:
        parts = PurePath(path).relative_to(root).parts
    except ValueError:
        return UnknownChange(path, deleted, stamp)

    if len(parts) == 1 and parts[0] in CONFIG_FILENAMES:
        return GlobalConfigChanged(path, deleted, stamp)
    if len(parts) == 2 and parts[1] in CONFIG_FILENAMES:
        return ServiceConfigChanged(path, deleted, stamp, service=parts[0])
    if len(parts) == 4 and parts[1] == USECASES_DIR and parts[3].lower().endswith(".json"):
        return MockSetChanged(path, deleted, stamp, service=parts[0], usecase=parts[2])
    return UnknownChange(path, deleted, stamp)


class Debouncer:
    """Trailing-edge debounce, one re-arming timer per key.

    Each ``submit`` restarts the timer for its key; the callback runs once the
    key has been quiet for ``delay`` seconds, on the timer's own thread.
    """

    def __init__(self, delay: float, callback: Callable[[str, ConfigChangeEvent], None]) -> None:
        self._delay = delay
        self._callback = callback
        self._lock = threading.Lock()
        self._timers: dict[str, threading.Timer] = {}
        self._generations: dict[str, int] = {}
        self._closed = False

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._timers)

    def submit(self, key: str, event: ConfigChangeEvent) -> None:
        with self._lock:
            if self._closed:
                return
            previous = self._timers.pop(key, None)
            if previous is not None:
                previous.cancel()
            generation = self._generations.get(key, 0) + 1
            self._generations[key] = generation
            timer = threading.Timer(self._delay, self._fire, args=(key, generation, event))
            timer.daemon = True
            self._timers[key] = timer
            timer.start()

    def cancel_all(self) -> None:
        with self._lock:
            self._closed = True
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def _fire(self, key: str, generation: int, event: ConfigChangeEvent) -> None:
        with self._lock:
            # A newer submit may have raced with this timer expiring.
            if self._closed or self._generations.get(key) != generation:
                return
            self._timers.pop(key, None)
            self._generations.pop(key, None)
        self._callback(key, event)


class _ConfigEventHandler(FileSystemEventHandler):
    def __init__(self, watcher: "ChangeWatcher") -> None:
        super().__init__()
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            LOGGER.debug("watch_directory_added", path=str(event.src_path))
            return
        self._watcher.handle_path(Path(str(event.src_path)), deleted=False)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.handle_path(Path(str(event.src_path)), deleted=False)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.handle_path(Path(str(event.src_path)), deleted=True)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._watcher.handle_path(Path(str(event.src_path)), deleted=True)
        self._watcher.handle_path(Path(str(event.dest_path)), deleted=False)


class ChangeWatcher:
    """Recursively observes the configuration root and emits settled, classified changes."""

    def __init__(
        self,
        root: Path,
        callback: ChangeCallback,
        *,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self.root = Path(root).resolve()
        self._callback = callback
        self._debouncer = Debouncer(debounce, self._emit)
        self._observer: Observer | None = None
        self._logger = LOGGER.bind(config_root=str(self.root))

    @property
    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = Observer()
        # Recursive watches pick up subdirectories created later on.
        observer.schedule(_ConfigEventHandler(self), str(self.root), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        self._logger.info("watcher_started")

    def stop(self, timeout: float = 5.0) -> None:
        observer = self._observer
        if observer is None:
            return
        self._observer = None
        observer.stop()
        observer.join(timeout=timeout)
        self._debouncer.cancel_all()
        self._logger.info("watcher_stopped")

    def handle_path(self, path: Path, *, deleted: bool) -> None:
        """Filter and classify a raw path notification, then debounce it."""

        try:
            relative = path.relative_to(self.root)
        except ValueError:
            self._logger.debug("watch_event_outside_root", path=str(path))
            return
        if not is_config_file(relative):
            return
        if not deleted and not path.exists():
            deleted = True
        event = classify(self.root, path, deleted=deleted)
        self._logger.debug("watch_event", path=str(relative), kind=event.kind.value, deleted=deleted)
        self._debouncer.submit(str(path), event)

    def _emit(self, key: str, event: ConfigChangeEvent) -> None:
        try:
            self._callback(event)
        except Exception:
            self._logger.exception("change_callback_failed", path=key, kind=event.kind.value)

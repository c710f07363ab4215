"""Glue between the change watcher and the fleet manager."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable

import structlog

from .errors import MockFleetError
from .fleet import FleetManager
from .watcher import (
    DEFAULT_DEBOUNCE_SECONDS,
    ChangeWatcher,
    ConfigChangeEvent,
    GlobalConfigChanged,
    MockSetChanged,
    ServiceConfigChanged,
)

LOGGER = structlog.get_logger("mock_fleet")

RELOAD_WORKERS = 4


class HotReloader:
    """Turns settled configuration changes into fleet reloads.

    Reloads run on a small worker pool so a slow swap of one service never
    holds up the watcher or the debounce timers of other files.
    """

    def __init__(
        self,
        fleet: FleetManager,
        *,
        root: Path | None = None,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
        workers: int = RELOAD_WORKERS,
    ) -> None:
        self.fleet = fleet
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mock-fleet-reload")
        self._watcher = ChangeWatcher(root or fleet.root, self.handle_change, debounce=debounce)
        self._logger = LOGGER.bind(component="hot_reload")

    def start(self) -> None:
        self._logger.info("hot_reload_starting")
        self._watcher.start()

    def stop(self) -> None:
        self._watcher.stop()
        self._executor.shutdown(wait=True, cancel_futures=True)
        self._logger.info("hot_reload_stopped")

    def handle_change(self, event: ConfigChangeEvent) -> Future | None:
        """Resolve the affected service and usecase and dispatch the reload."""

        if event.deleted:
            self._logger.info("config_file_deleted_ignored", path=str(event.path), kind=event.kind.value)
            return None

        self._logger.info("config_change_detected", path=str(event.path), kind=event.kind.value)
        if isinstance(event, GlobalConfigChanged):
            return self._dispatch("global", self.fleet.reload_global)

        if isinstance(event, ServiceConfigChanged):
            usecase = self.fleet.usecase_for(event.service)
            if usecase is None:
                self._logger.info("service_not_configured_ignored", service=event.service)
                return None
            return self._dispatch(event.service, lambda: self.fleet.reload_if_current(event.service))

        if isinstance(event, MockSetChanged):
            active = self.fleet.usecase_for(event.service)
            if active is None:
                self._logger.info("service_not_configured_ignored", service=event.service)
                return None
            if active != event.usecase:
                self._logger.info(
                    "inactive_usecase_ignored",
                    service=event.service,
                    usecase=event.usecase,
                    active_usecase=active,
                )
                return None
            return self._dispatch(event.service, lambda: self.fleet.reload_if_current(event.service, event.usecase))

        self._logger.debug("unrecognized_config_change_ignored", path=str(event.path))
        return None

    def _dispatch(self, target: str, operation: Callable[[], object]) -> Future | None:
        def run() -> None:
            try:
                operation()
            except MockFleetError as exc:
                self._logger.error("reload_failed", target=target, reason=str(exc))

        try:
            return self._executor.submit(run)
        except RuntimeError:
            # Executor already shut down.
            self._logger.debug("reload_dropped_after_stop", target=target)
            return None

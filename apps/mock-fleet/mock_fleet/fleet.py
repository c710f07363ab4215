"""Fleet of running service runtimes and its reconciliation against configuration.

All fleet state (``service -> runtime``, ``port -> service`` and the ordered
runtime list) lives behind one lock. Critical sections only mutate those
maps; binding and draining listeners always happen with the lock released,
so a slow shutdown never stalls lookups or reloads of other services.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from .config import global_config_path, load_global, load_mocks, load_service, mock_file_path, service_config_path
from .errors import BindError, FleetError, MockFleetError, ShutdownTimeoutError
from .models import GlobalConfig
from .router import RequestRouter
from .server import DEFAULT_HOST, DEFAULT_STOP_TIMEOUT, ServiceRuntime
from .validation import ValidationReport, validate_global, validate_mocks, validate_service

LOGGER = structlog.get_logger("mock_fleet")

DEFAULT_SETTLE_DELAY = 0.1


@dataclass
class ReloadSummary:
    reloaded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    removed: list[str] = field(default_factory=list)


def log_report(report: ValidationReport, logger: Any) -> None:
    for issue in report.warnings:
        logger.warning("validation_warning", file=str(report.path), field=issue.field, detail=issue.message)
    for issue in report.errors:
        logger.error("validation_error", file=str(report.path), field=issue.field, detail=issue.message)


def load_global_config(root: Path) -> GlobalConfig:
    """Load and validate the global config; raises on any error."""

    path = global_config_path(root)
    config = load_global(path)
    report = validate_global(config, path)
    log_report(report, LOGGER.bind(file=str(path)))
    report.raise_for_errors()
    return config


class FleetManager:
    """Owns every running :class:`ServiceRuntime` and reconciles them with the config tree."""

    def __init__(
        self,
        root: Path,
        *,
        host: str = DEFAULT_HOST,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ) -> None:
        self.root = Path(root)
        self.host = host
        self.stop_timeout = stop_timeout
        self.settle_delay = settle_delay
        self._lock = threading.Lock()
        self._runtimes: list[ServiceRuntime] = []
        self._by_service: dict[str, ServiceRuntime] = {}
        self._by_port: dict[int, str] = {}
        self._global: GlobalConfig | None = None
        self._service_locks: dict[str, threading.Lock] = {}
        self._global_lock = threading.Lock()
        self._logger = LOGGER.bind(config_root=str(self.root))

    # -- read views -----------------------------------------------------

    def get(self, name: str) -> ServiceRuntime | None:
        with self._lock:
            return self._by_service.get(name)

    def services(self) -> list[str]:
        with self._lock:
            return [runtime.name for runtime in self._runtimes]

    def runtimes(self) -> list[ServiceRuntime]:
        with self._lock:
            return list(self._runtimes)

    def port_owner(self, port: int) -> str | None:
        with self._lock:
            return self._by_port.get(port)

    def usecase_for(self, name: str) -> str | None:
        """Usecase assigned to ``name`` by the last loaded global config."""

        with self._lock:
            if self._global is None:
                return None
            return self._global.usecases().get(name)

    # -- map mutation ---------------------------------------------------

    def add_or_replace(self, runtime: ServiceRuntime) -> ServiceRuntime | None:
        """Register ``runtime``, detaching (not stopping) any previous runtime of the same service.

        Returns the detached runtime; stopping it is the caller's job.
        """

        with self._lock:
            previous = self._detach_locked(runtime.name)
            if previous is not None:
                self._logger.info("runtime_replaced", service=runtime.name, previous_port=previous.port)
            owner = self._by_port.get(runtime.port)
            if owner is not None and owner != runtime.name:
                # Last registration wins the port entry.
                self._logger.warning("port_collision", port=runtime.port, service=runtime.name, current_owner=owner)
            self._runtimes.append(runtime)
            self._by_service[runtime.name] = runtime
            self._by_port[runtime.port] = runtime.name
        return previous

    def remove(self, name: str) -> ServiceRuntime | None:
        """Detach ``name`` from both maps and return its runtime without stopping it."""

        with self._lock:
            return self._detach_locked(name)

    def _detach_locked(self, name: str, expected: ServiceRuntime | None = None) -> ServiceRuntime | None:
        runtime = self._by_service.get(name)
        if runtime is None or (expected is not None and runtime is not expected):
            return None
        del self._by_service[name]
        self._runtimes.remove(runtime)
        if self._by_port.get(runtime.port) == name:
            del self._by_port[runtime.port]
        return runtime

    def _detach(self, runtime: ServiceRuntime) -> None:
        with self._lock:
            self._detach_locked(runtime.name, runtime)

    def _service_lock(self, name: str) -> threading.Lock:
        with self._lock:
            return self._service_locks.setdefault(name, threading.Lock())

    # -- lifecycle ------------------------------------------------------

    def build_runtime(self, name: str, usecase: str) -> ServiceRuntime:
        """Load and validate one service and its usecase into a new, unstarted runtime."""

        logger = self._logger.bind(service=name, usecase=usecase)
        service_config = load_service(self.root, name)
        report = validate_service(service_config, service_config_path(self.root, name))
        log_report(report, logger)
        report.raise_for_errors()

        mocks = load_mocks(self.root, name, usecase)
        report = validate_mocks(mocks, mock_file_path(self.root, name, usecase))
        log_report(report, logger)
        report.raise_for_errors()

        router = RequestRouter(mocks, service_config.delay)
        return ServiceRuntime(name, usecase, service_config, router, host=self.host)

    def bootstrap(self) -> list[ServiceRuntime]:
        """Load the global config from the root and start the initial fleet."""

        return self.populate(load_global_config(self.root))

    def populate(self, global_config: GlobalConfig) -> list[ServiceRuntime]:
        """Start every service of ``global_config`` that loads, validates and binds.

        Failing services are skipped; :class:`FleetError` is raised only when none start.
        """

        with self._lock:
            self._global = global_config
        for ref in global_config.services:
            logger = self._logger.bind(service=ref.name, usecase=ref.usecase)
            logger.info("service_loading")
            try:
                runtime = self.build_runtime(ref.name, ref.usecase)
                runtime.start()
            except MockFleetError as exc:
                logger.error("service_skipped", reason=str(exc))
                continue
            self.add_or_replace(runtime)

        started = self.runtimes()
        if not started:
            raise FleetError("No valid mock servers configured, check your configuration")
        self._logger.info("fleet_started", services=len(started))
        return started

    def reload_service(self, name: str, usecase: str) -> ServiceRuntime:
        """Rebuild ``name`` on ``usecase`` and swap it in.

        Load or validation failures leave the running service untouched. Once
        the new config is accepted the old listener is stopped first; if the
        replacement cannot bind, the service stays down.
        """

        logger = self._logger.bind(service=name, usecase=usecase)
        with self._service_lock(name):
            logger.info("service_reloading")
            replacement = self.build_runtime(name, usecase)

            existing = self.get(name)
            if existing is not None:
                self._stop_quietly(existing, self.stop_timeout)
                self._detach(existing)
                time.sleep(self.settle_delay)

            try:
                replacement.start()
            except BindError as exc:
                logger.error("service_reload_bind_failed", port=exc.port, reason=str(exc))
                raise
            self.add_or_replace(replacement)
            logger.info("service_reloaded", port=replacement.port)
            return replacement

    def reload_if_current(self, name: str, usecase: str | None = None) -> ServiceRuntime | None:
        """Reload ``name`` only while the global config still lists it (on ``usecase``, when given).

        Holds the global reload lock, so a change queued before a global reload
        cannot bring back a removed service or revert its usecase.
        """

        with self._global_lock:
            active = self.usecase_for(name)
            if active is None or (usecase is not None and active != usecase):
                self._logger.info("stale_reload_skipped", service=name, usecase=usecase, active_usecase=active)
                return None
            return self.reload_service(name, active)

    def reload_global(self) -> ReloadSummary:
        """Converge the fleet onto the services listed in the current global config."""

        with self._global_lock:
            self._logger.info("global_reloading")
            try:
                global_config = load_global_config(self.root)
            except MockFleetError as exc:
                self._logger.error("global_reload_rejected", reason=str(exc))
                raise
            with self._lock:
                self._global = global_config

            summary = ReloadSummary()
            desired = global_config.usecases()
            # Removed services go first so their ports are free for the services being reloaded.
            for name in self.services():
                if name in desired:
                    continue
                self._logger.info("service_removed_from_config", service=name)
                with self._service_lock(name):
                    runtime = self.get(name)
                    if runtime is None:
                        continue
                    self._stop_quietly(runtime, self.stop_timeout)
                    self._detach(runtime)
                summary.removed.append(name)

            for name, usecase in desired.items():
                try:
                    self.reload_service(name, usecase)
                except MockFleetError as exc:
                    self._logger.error("service_reload_failed", service=name, usecase=usecase, reason=str(exc))
                    summary.failed[name] = str(exc)
                    continue
                summary.reloaded.append(name)

            self._logger.info(
                "global_reloaded",
                reloaded=len(summary.reloaded),
                failed=len(summary.failed),
                removed=len(summary.removed),
            )
            return summary

    def stop_all(self, timeout: float | None = None) -> None:
        """Stop every runtime concurrently; stragglers are force-closed at ``timeout``."""

        timeout = self.stop_timeout if timeout is None else timeout
        with self._lock:
            runtimes = list(self._runtimes)
            self._runtimes.clear()
            self._by_service.clear()
            self._by_port.clear()
        if not runtimes:
            return
        self._logger.info("fleet_stopping", services=len(runtimes))
        with ThreadPoolExecutor(max_workers=len(runtimes), thread_name_prefix="mock-fleet-stop") as pool:
            futures = [pool.submit(self._stop_quietly, runtime, timeout) for runtime in runtimes]
            for future in futures:
                future.result()
        self._logger.info("fleet_stopped")

    def _stop_quietly(self, runtime: ServiceRuntime, timeout: float) -> None:
        try:
            runtime.stop(timeout)
        except ShutdownTimeoutError as exc:
            self._logger.warning("service_stop_timeout", service=runtime.name, reason=str(exc))

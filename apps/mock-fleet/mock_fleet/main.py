"""CLI entrypoint running the mock fleet."""

from __future__ import annotations

import signal
import sys
import threading
from pathlib import Path
from typing import Optional

import typer

if __package__ in {None, ""}:
    sys.path.append(str(Path(__file__).resolve().parents[1]))
    __package__ = "mock_fleet"

from .config import global_config_path
from .errors import ConfigError, ConfigErrorReason, MockFleetError
from .fleet import FleetManager
from .logging_utils import configure_logging
from .output_config import get_log_format, log_level
from .reloader import HotReloader
from .server import DEFAULT_HOST

app = typer.Typer(help="Serve file-defined HTTP mocks, one listener per service, with hot reload.")

DEFAULT_CONFIG_DIR = Path("configs")
VERSION = "1.0.0"

BANNER = rf"""
                      _          __ _           _
  _ __ ___   ___   ___| | __     / _| | ___  ___| |_
 | '_ ` _ \ / _ \ / __| |/ /____| |_| |/ _ \/ _ \ __|
 | | | | | | (_) | (__|   <_____|  _| |  __/  __/ |_
 |_| |_| |_|\___/ \___|_|\_\    |_| |_|\___|\___|\__|

HTTP Mock Server - v{VERSION}
"""


def _validate_config_dir(config_dir: Path) -> None:
    if not config_dir.exists():
        raise ConfigError(config_dir, ConfigErrorReason.MISSING, "configuration directory does not exist")
    if not config_dir.is_dir():
        raise ConfigError(config_dir, ConfigErrorReason.MALFORMED, "configuration path is not a directory")
    global_path = global_config_path(config_dir)
    if not global_path.exists():
        raise ConfigError(global_path, ConfigErrorReason.MISSING, "global config file not found")


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handler(signum: int, frame: object) -> None:
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


@app.command()
def serve(
    config_dir: Path = typer.Option(
        DEFAULT_CONFIG_DIR,
        envvar="MOCK_FLEET_CONFIG_DIR",
        help="Directory containing the global config, service configs and usecases.",
    ),
    host: str = typer.Option(DEFAULT_HOST, help="Interface every service listener binds to."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging of every request."),
    no_hot_reload: bool = typer.Option(False, "--no-hot-reload", help="Disable reloading on config file changes."),
    debounce_ms: int = typer.Option(500, min=0, help="Quiet period before a changed file is reloaded."),
    shutdown_timeout: float = typer.Option(5.0, min=0.0, help="Seconds to drain in-flight requests on stop."),
    log_format: Optional[str] = typer.Option(
        None,
        "--log-format",
        help="Log format: console, plain or json (defaults to CONSOLE_OUTPUT_FORMAT).",
    ),
) -> None:
    """Start every configured service and keep serving until interrupted."""

    logger = configure_logging(log_level(verbose), get_log_format(log_format))
    typer.echo(BANNER)

    config_dir = config_dir.resolve()
    fleet = FleetManager(config_dir, host=host, stop_timeout=shutdown_timeout)
    try:
        _validate_config_dir(config_dir)
        logger.info("config_dir_selected", config_dir=str(config_dir))
        runtimes = fleet.bootstrap()
    except MockFleetError as exc:
        logger.error("startup_failed", reason=str(exc))
        typer.secho(f"Startup failed: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    for runtime in runtimes:
        for line in runtime.summary_lines():
            typer.echo(line)

    reloader: HotReloader | None = None
    if not no_hot_reload:
        reloader = HotReloader(fleet, debounce=debounce_ms / 1000)
        try:
            reloader.start()
        except OSError as exc:
            logger.warning("hot_reload_unavailable", reason=str(exc))
            reloader.stop()
            reloader = None
        else:
            typer.secho("Hot reload enabled, config changes are applied automatically", fg=typer.colors.CYAN)
    if verbose:
        logger.debug("verbose_mode", detail="every request is logged")

    stop_event = threading.Event()
    _install_signal_handlers(stop_event)
    while not stop_event.wait(timeout=1.0):
        pass

    logger.info("shutdown_requested")
    if reloader is not None:
        reloader.stop()
    fleet.stop_all(shutdown_timeout)
    typer.secho("All servers stopped. Goodbye!", fg=typer.colors.GREEN)


def run() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run()

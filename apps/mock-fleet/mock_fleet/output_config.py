"""Log output format selection for mock-fleet."""

from __future__ import annotations

import os
from typing import Literal, Mapping, get_args

LogFormat = Literal["json", "console", "plain"]

ENV_VAR_NAME = "CONSOLE_OUTPUT_FORMAT"

# The shared console output formats map onto log renderers.
_ENV_ALIASES: dict[str, LogFormat] = {
    "json": "json",
    "plain": "plain",
    "console": "console",
    "auto": "console",
    "rich": "console",
}


def get_log_format(cli_override: str | None = None, environ: Mapping[str, str] | None = None) -> LogFormat:
    """Resolve the log format: CLI option, then ``CONSOLE_OUTPUT_FORMAT``, then ``console``."""

    if cli_override and cli_override.lower() in get_args(LogFormat):
        return cli_override.lower()  # type: ignore[return-value]
    env_value = (os.environ if environ is None else environ).get(ENV_VAR_NAME, "")
    return _ENV_ALIASES.get(env_value.lower(), "console")


def log_level(verbose: bool) -> str:
    return "DEBUG" if verbose else "INFO"

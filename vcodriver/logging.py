"""Logging for vcodriver, through loguru.

Records stay disabled until ``setup_logging`` is called, so importing the
driver never adds output to a host application. Driver records carry a
``component`` and, where known, the ``machine`` and ``execution`` they
concern; both handlers render that context after the level.

The ``[logging]`` table of ``vcodriver.toml`` maps onto ``LogConfig``:

    [logging]
    level = "DEBUG"
    file = "vcodriver.log"
    rotation = "1 day"
"""

from __future__ import annotations

import sys
from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any, Literal, get_args

from loguru import logger

from vcodriver.core.exceptions import ConfigurationError

logger.disable("vcodriver")

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]

_CONTEXT_KEYS = ("machine", "execution")

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> <level>{level: <7}</level> "
    "<cyan>{extra[vco_context]}</cyan> {message}\n{exception}"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} {level: <7} [{extra[vco_context]}] "
    "{name}:{line} {message}\n{exception}"
)


def _context(extra: Mapping[str, Any]) -> str:
    parts = [str(extra.get("component", "vcodriver"))]
    parts.extend(f"{key}={extra[key]}" for key in _CONTEXT_KEYS if key in extra)
    return " ".join(parts)


def _formatter(template: str):
    def render(record: Any) -> str:
        record["extra"]["vco_context"] = _context(record["extra"])
        return template

    return render


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Where driver logs go.

    Attributes:
        level: Minimum console level.
        file: Optional log file; it always receives DEBUG and above.
        console: Write to stderr.
        rotation: When the log file rotates ("50 MB", "1 day").
        retention: Rotated files to keep.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> LogConfig:
        if not raw:
            return cls()
        known = {f.name for f in fields(cls)}
        unknown = set(raw) - known
        if unknown:
            raise ConfigurationError(f"Unknown logging option(s): {', '.join(sorted(unknown))}")
        level = str(raw.get("level", "INFO")).upper()
        if level not in get_args(LogLevel.__value__):
            raise ConfigurationError(f"Invalid log level '{level}'")
        return cls(**{**raw, "level": level})


def setup_logging(config: LogConfig | None = None) -> list[int]:
    """Enable driver records and attach handlers. Returns their ids for ``teardown_logging``."""
    config = config or LogConfig()
    logger.enable("vcodriver")
    handlers: list[int] = []

    if config.console:
        handlers.append(logger.add(
            sys.stderr,
            level=config.level,
            format=_formatter(CONSOLE_FORMAT),
            colorize=True,
            filter="vcodriver",
        ))
    if config.file:
        handlers.append(logger.add(
            config.file,
            level="DEBUG",
            format=_formatter(FILE_FORMAT),
            rotation=config.rotation,
            retention=config.retention,
            diagnose=False,
            enqueue=True,
            filter="vcodriver",
        ))
    return handlers


def teardown_logging(handler_ids: list[int]) -> None:
    for handler_id in handler_ids:
        logger.remove(handler_id)
    logger.disable("vcodriver")

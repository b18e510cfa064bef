"""kubestack log sinks.

Every kubestack module logs through a ``logger.bind(component=...)`` child of
the loguru logger. The ``kubestack`` namespace stays silent until a caller
(usually the CLI or a provisioning script) adds sinks with ``setup_logging``;
``teardown_logging`` removes them and silences the namespace again.

Example:
    ids = setup_logging(LogConfig(level="DEBUG", file="kubestack.log"))
    try:
        controller.create_cluster(cluster, assets)
    finally:
        teardown_logging(ids)
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Literal

from loguru import logger

logger.disable("kubestack")

type LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

LOG_LEVELS: tuple[LogLevel, ...] = ("DEBUG", "INFO", "WARNING", "ERROR")

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{name}:{function}:{line} | {extra[component]} - {message}"
)


@dataclass(frozen=True, slots=True)
class LogConfig:
    """The ``[logging]`` table.

    Stack polling logs at DEBUG, so a long create is quiet on the console at
    INFO while the file still shows every status transition.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    file_level: LogLevel = "DEBUG"
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def _sinks(config: LogConfig) -> Iterator[dict[str, Any]]:
    if config.console:
        yield {"sink": sys.stderr, "level": config.level, "format": CONSOLE_FORMAT, "colorize": True}
    if config.file:
        yield {
            "sink": config.file,
            "level": config.file_level,
            "format": FILE_FORMAT,
            "rotation": config.rotation,
            "retention": config.retention,
            # botocore errors can echo request parameters
            "diagnose": False,
        }


def setup_logging(config: LogConfig) -> list[int]:
    """Add the configured sinks and return their handler ids."""
    logger.enable("kubestack")
    logger.configure(extra={"component": "kubestack"})
    return [logger.add(filter="kubestack", **options) for options in _sinks(config)]


def teardown_logging(handler_ids: list[int]) -> None:
    for handler_id in handler_ids:
        logger.remove(handler_id)
    logger.disable("kubestack")

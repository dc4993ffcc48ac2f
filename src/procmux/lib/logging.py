"""Diagnostics setup for the procmux CLI.

Child stdout is multiplexed byte for byte onto our own stdout, so every
diagnostic procmux itself emits goes to one stderr stream. structlog events
and stdlib records (the config loader logs through stdlib) share a single
renderer there, console or JSON.
"""

from __future__ import annotations

import logging as std_logging
import sys
from typing import TextIO

import structlog

_VERBOSITY_LEVELS = (std_logging.WARNING, std_logging.INFO, std_logging.DEBUG)


def level_from_verbosity(verbosity: int) -> int:
    """Map a `-v` count to a stdlib logging level."""

    index = min(max(verbosity, 0), len(_VERBOSITY_LEVELS) - 1)
    return _VERBOSITY_LEVELS[index]


def _renderer(json_mode: bool, target: TextIO) -> structlog.typing.Processor:
    if json_mode:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=target.isatty())


def _stdlib_handler(
    target: TextIO,
    renderer: structlog.typing.Processor,
    shared: list[structlog.typing.Processor],
) -> std_logging.Handler:
    handler = std_logging.StreamHandler(target)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[structlog.stdlib.add_logger_name, *shared],
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    return handler


def configure_logging(
    json_mode: bool = False,
    verbosity: int = 0,
    *,
    stream: TextIO | None = None,
) -> None:
    """Send structlog and stdlib diagnostics to stderr (or `stream`)."""

    level = level_from_verbosity(verbosity)
    target = stream or sys.stderr
    renderer = _renderer(json_mode, target)
    shared: list[structlog.typing.Processor] = [
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_mode:
        # Tracebacks from sink failures must stay one JSON object per line.
        shared.append(structlog.processors.format_exc_info)

    std_logging.basicConfig(
        level=level,
        handlers=[_stdlib_handler(target, renderer, shared)],
        force=True,
    )
    structlog.configure(
        processors=[structlog.contextvars.merge_contextvars, *shared, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=target),
        cache_logger_on_first_use=True,
    )

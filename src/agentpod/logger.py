"""Structured logging singleton shared by the CLI and the in-session watchdog.

Reads os.environ directly; the logger must initialize before pydantic
Settings so config errors are logged too. The watchdog has no Settings at
all.

Both processes share one processor chain and differ only in the renderer:
the CLI writes console lines for a human or a pipeline log, the watchdog
writes one JSON object per line because its stderr ends up in
``<engine> logs`` and in readiness-failure diagnostics. :func:`configure`
also binds ``component`` into the context, and callers bind ``session``
for the duration of one operation via :func:`bound_session`.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Literal

import structlog

Component = Literal["cli", "watchdog"]


def _level_from_env() -> int:
    return getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)


def configure(component: Component = "cli", *, json: bool = False) -> None:
    """(Re)configure structlog for one process role.

    Safe to call more than once: loggers are not cached, so module-level
    ``logger`` objects pick up the new chain on their next call.
    """
    level = _level_from_env()
    # Configure stdlib root logger first so structlog's filter_by_level works
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr, force=True)

    renderer: structlog.typing.Processor
    if json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            *([structlog.processors.format_exc_info] if json else []),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(component=component)


@contextmanager
def bound_session(session_id: str | None, **extra: object) -> Iterator[None]:
    """Attach the session id (and *extra*) to every log line in the block."""
    fields = {k: v for k, v in extra.items() if v is not None}
    if session_id:
        fields["session"] = session_id
    with structlog.contextvars.bound_contextvars(**fields):
        yield


configure()
logger: structlog.stdlib.BoundLogger = structlog.get_logger()


def set_level(level_name: str) -> None:
    """Apply the configured level once Settings are loaded."""
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.getLogger().setLevel(level)


def _uncaught_exception_handler(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: object,
) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
        return
    logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_tb))
    sys.exit(1)


sys.excepthook = _uncaught_exception_handler

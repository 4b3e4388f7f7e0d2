"""Structured logging for indexing runs.

structlog events are rendered by stdlib handlers, one handler per entry in
``LoggingConfig.outputs``. Every record logged inside an index or refresh
run carries that run's ``run_id``. Console handlers go quiet while a Rich
live display owns the terminal.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING, Any, TextIO
from uuid import uuid4

import structlog

if TYPE_CHECKING:
    from codegraph.config.models import LoggingConfig, LogOutputConfig

_run_id: ContextVar[str | None] = ContextVar("run_id", default=None)

_CONSOLE_STREAMS = ("stderr", "stdout")


def get_run_id() -> str | None:
    return _run_id.get()


def set_run_id(run_id: str | None = None) -> str:
    """Bind a run correlation id to the current context, generating one if absent."""
    rid = run_id or uuid4().hex[:12]
    _run_id.set(rid)
    return rid


def clear_run_id() -> None:
    _run_id.set(None)


def _add_run_id(
    _logger: structlog.types.WrappedLogger,
    _method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    if rid := _run_id.get():
        event_dict.setdefault("run_id", rid)
    return event_dict


_PRE_CHAIN: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", key="timestamp"),
    _add_run_id,  # type: ignore[list-item]
]


def _level_number(name: str) -> int:
    return logging.getLevelNamesMapping().get(name.upper(), logging.INFO)


class ConsoleSuppressingFilter(logging.Filter):
    """Drop console records while a progress display owns the terminal."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: ARG002
        from codegraph.core.progress import is_console_suppressed

        return not is_console_suppressed()


def _output_handler(output: LogOutputConfig, root_level: str) -> logging.Handler:
    handler: logging.Handler
    stream: TextIO | None = None
    if output.destination in _CONSOLE_STREAMS:
        stream = sys.stderr if output.destination == "stderr" else sys.stdout
        handler = logging.StreamHandler(stream)
        handler.addFilter(ConsoleSuppressingFilter())
    else:
        log_path = Path(output.destination)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")

    renderer: structlog.types.Processor
    if output.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=stream is not None and stream.isatty(),
            pad_event_to=0,
            pad_level=False,
        )
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=_PRE_CHAIN)
    )
    handler.setLevel(_level_number(output.level or root_level))
    return handler


def configure_logging(*, config: LoggingConfig | None = None, level: str = "INFO") -> None:
    """Install one handler per configured output on the root logger.

    Without ``config``, a single console output on stderr at ``level`` is
    used. Calling again replaces (and closes) the previous handlers. An
    output may be more verbose than the root level; records are filtered
    at the most verbose handler and again per handler.
    """
    from codegraph.config.models import LoggingConfig

    if config is None:
        config = LoggingConfig(level=level)  # type: ignore[arg-type]

    handlers = [_output_handler(output, config.level) for output in config.outputs]
    threshold = min((h.level for h in handlers), default=_level_number(config.level))

    structlog.configure(
        processors=[*_PRE_CHAIN, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    root_logger = logging.getLogger()
    for previous in list(root_logger.handlers):
        root_logger.removeHandler(previous)
        previous.close()
    root_logger.setLevel(threshold)
    for handler in handlers:
        root_logger.addHandler(handler)

    # watchfiles reports every filtered change at DEBUG
    logging.getLogger("watchfiles").setLevel(logging.WARNING)

"""Logging for pipeline runs: one line per event, run id up front, extras as JSON."""

import json
import logging
import sys
from collections.abc import Mapping, MutableMapping
from datetime import date, datetime
from typing import Any, TextIO

ROOT_LOGGER_NAME = "keyword_pipeline"
RUN_ID_ATTR = "batch_run_id"


def _json_default(value: Any) -> Any:
    # numpy scalars from clustering and scoring
    item = getattr(value, "item", None)
    if callable(item):
        try:
            return item()
        except (TypeError, ValueError):
            pass
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class JSONExtrasFormatter(logging.Formatter):
    """Readable log line with the batch run id hoisted and the remaining extras as JSON.

    Output format:
        2024-01-15 10:30:45 | INFO     | keyword_pipeline.module | [run 3f2a] Message {"key": "value"}
    """

    RESERVED_ATTRS = frozenset(
        {
            "args",
            "asctime",
            "created",
            "exc_info",
            "exc_text",
            "filename",
            "funcName",
            "levelname",
            "levelno",
            "lineno",
            "message",
            "module",
            "msecs",
            "msg",
            "name",
            "pathname",
            "process",
            "processName",
            "relativeCreated",
            "stack_info",
            "taskName",
            "thread",
            "threadName",
        }
    )

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        timestamp = self.formatTime(record, self.datefmt)

        extras = {
            k: v
            for k, v in record.__dict__.items()
            if k not in self.RESERVED_ATTRS and not k.startswith("_")
        }
        run_id = extras.pop(RUN_ID_ATTR, None)
        message = f"[run {run_id}] {record.message}" if run_id else record.message
        base = f"{timestamp} | {record.levelname:<8} | {record.name} | {message}"

        if extras:
            try:
                extras_str = json.dumps(extras, default=_json_default, ensure_ascii=False)
                base = f"{base} {extras_str}"
            except (TypeError, ValueError):
                pass

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            base = f"{base}\n{record.exc_text}"

        return base


class RunLoggerAdapter(logging.LoggerAdapter):
    """Stamps every record with the batch run id, merged into per-call extras."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_run_logger(name: str, batch_run_id: str, **context: Any) -> RunLoggerAdapter:
    """Logger whose records all carry ``batch_run_id`` plus any fixed context."""
    extra: Mapping[str, Any] = {RUN_ID_ATTR: batch_run_id, **context}
    return RunLoggerAdapter(logging.getLogger(name), dict(extra))


def setup_logging(level: str | int | None = None, stream: TextIO | None = None) -> None:
    """Configure the package logger; later calls only adjust the level."""
    if level is None:
        from keyword_pipeline.config import settings

        level = settings.log_level

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JSONExtrasFormatter(datefmt="%Y-%m-%d %H:%M:%S"))

    logger.addHandler(handler)
    logger.propagate = False

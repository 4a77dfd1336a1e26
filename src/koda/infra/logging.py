"""Root logger setup for the assistant and its terminal client.

``setup_logging`` installs a single stream handler on the root logger.
Records are rendered as JSON lines (``python-json-logger``) or as plain
text for the terminal, and carry the ids of the active OpenTelemetry span
so log lines can be joined with traces.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

from opentelemetry import trace
from pythonjsonlogger.json import JsonFormatter

from koda.configs.system import LoggingConfig

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "opentelemetry")

_JSON_FIELDS = "%(asctime)s %(levelname)s %(name)s %(message)s %(trace_id)s %(span_id)s"
_JSON_RENAMES = {"asctime": "timestamp", "levelname": "level", "name": "logger"}

_PLAIN_FORMAT = "%(levelname)-8s %(asctime)s %(name)s  %(message)s"
_PLAIN_DATEFMT = "%H:%M:%S"


class SpanIdFilter(logging.Filter):
    """Stamps ``trace_id``/``span_id`` of the current span on each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = trace.get_current_span().get_span_context()
        valid = context is not None and context.is_valid
        record.trace_id = f"{context.trace_id:032x}" if valid else ""  # type: ignore[attr-defined]
        record.span_id = f"{context.span_id:016x}" if valid else ""  # type: ignore[attr-defined]
        return True


def _formatter(json_output: bool) -> logging.Formatter:
    if json_output:
        return JsonFormatter(
            fmt=_JSON_FIELDS,
            rename_fields=_JSON_RENAMES,
            defaults={"trace_id": "", "span_id": ""},
        )
    return logging.Formatter(fmt=_PLAIN_FORMAT, datefmt=_PLAIN_DATEFMT)


def setup_logging(
    config: LoggingConfig | None = None, stream: TextIO | None = None
) -> None:
    """Route all records to *stream* (stdout by default).

    Replaces any handlers already on the root logger, so it is safe to
    call again with a different config.
    """
    config = config or LoggingConfig()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.addFilter(SpanIdFilter())
    handler.setFormatter(_formatter(config.json_output))

    root = logging.getLogger()
    root.setLevel(config.level.upper())
    root.handlers = [handler]

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

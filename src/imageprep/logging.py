"""Logging setup for imageprep.

One ``setup_logging`` call configures the ``imageprep`` logger; modules
obtain children with ``get_logger``.  Messages emitted while a template is
being transformed go through ``template_logger`` so every line names the
template it belongs to.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, MutableMapping

ROOT_LOGGER = "imageprep"
DEFAULT_FORMAT = "%(levelname)-5s | %(name)-18s | %(message)s"
VERBOSE_FORMAT = "%(asctime)s | %(levelname)-5s | %(name)-18s | %(message)s"
_SETUP_LOCK = threading.Lock()


class JsonFormatter(logging.Formatter):
    """Emit one JSON object per record, for log aggregation in CI builds."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        template = getattr(record, "template", None)
        if template:
            payload["template"] = template
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class TemplateLoggerAdapter(logging.LoggerAdapter):
    """Prefix messages with the template filename and expose it as ``record.template``."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        template = self.extra["template"] if self.extra else ""
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("template", template)
        kwargs["extra"] = extra
        return f"[{template}] {msg}", kwargs


def _formatter(json_logs: bool, fmt: str) -> logging.Formatter:
    return JsonFormatter() if json_logs else logging.Formatter(fmt)


def setup_logging(
    level: int = logging.INFO,
    verbose: bool = False,
    log_file: str | Path | None = None,
    json_logs: bool = False,
) -> None:
    """Configure handlers on the ``imageprep`` logger.

    Safe to call repeatedly: the stderr handler and any file handler for
    the same path are reused instead of stacked.

    Args:
        level: Logging level (default: INFO).
        verbose: Include timestamps on the console.
        log_file: Optional file that receives a copy of every record.
        json_logs: Emit JSON lines instead of plain text.
    """
    with _SETUP_LOCK:
        logger = logging.getLogger(ROOT_LOGGER)
        logger.setLevel(level)

        console = [
            h
            for h in logger.handlers
            if type(h) is logging.StreamHandler
        ]
        if console:
            stream_handler = console[0]
            stream_handler.setStream(sys.stderr)
            for duplicate in console[1:]:
                logger.removeHandler(duplicate)
        else:
            stream_handler = logging.StreamHandler(sys.stderr)
            logger.addHandler(stream_handler)
        stream_handler.setFormatter(
            _formatter(json_logs, VERBOSE_FORMAT if verbose else DEFAULT_FORMAT)
        )

        if log_file is None:
            return

        target = str(Path(log_file).resolve())
        file_handler = next(
            (
                h
                for h in logger.handlers
                if isinstance(h, logging.FileHandler) and h.baseFilename == target
            ),
            None,
        )
        if file_handler is None:
            file_handler = logging.FileHandler(target, encoding="utf-8")
            logger.addHandler(file_handler)
        file_handler.setFormatter(_formatter(json_logs, VERBOSE_FORMAT))


def get_logger(name: str) -> logging.Logger:
    """Return the ``imageprep.<name>`` logger (e.g. ``"gate"``, ``"rewriter"``)."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def template_logger(name: str, filename: str) -> TemplateLoggerAdapter:
    """Return a logger bound to one template for the duration of a pass."""
    return TemplateLoggerAdapter(get_logger(name), {"template": filename})

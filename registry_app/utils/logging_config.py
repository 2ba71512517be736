"""
Logging setup for the registry application.

Console output is human readable; the optional rotating file handler writes
one JSON object per line so ``extra={...}`` fields (``importer_run_id`` and
friends) survive for later analysis.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

_STDLIB_KEYS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()) | {"message", "taskName"}

CONSOLE_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record):
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def _resolve_level(value, default=logging.INFO):
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value or "").strip().upper())
    return level if isinstance(level, int) else default


def setup_logging(app):
    """Attach console and file handlers to ``app.logger`` based on config."""
    level = _resolve_level(app.config.get("LOG_LEVEL", "INFO"))
    app.logger.setLevel(level)

    # Re-running setup (tests do) must not stack handlers.
    for handler in list(app.logger.handlers):
        if getattr(handler, "_registry_handler", False):
            app.logger.removeHandler(handler)
            handler.close()

    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        console._registry_handler = True
        app.logger.addHandler(console)

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_file = app.config.get("LOG_FILE") or os.path.join("logs", "registry.log")
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
        file_handler.setLevel(level)
        file_handler.setFormatter(JSONFormatter())
        file_handler._registry_handler = True
        app.logger.addHandler(file_handler)

    app.logger.debug("Logging configured", extra={"log_level": logging.getLevelName(level)})
    return app.logger

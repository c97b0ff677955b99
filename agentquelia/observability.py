from __future__ import annotations

import json
import logging
import logging.handlers
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import LoggingSettings, default_log_dir

LOG_FILE_NAME = "agentquelia.log"
TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def _utc_iso(ts: float | None = None) -> str:
    dt = datetime.fromtimestamp(ts or time.time(), tz=timezone.utc)
    return dt.isoformat()


def parse_level(name: str) -> int:
    return _LEVELS.get(name.strip().lower(), logging.INFO)


@dataclass
class JsonLogConfig:
    service_name: str = "agentquelia"
    instance_id: str | None = None


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Structured values passed as extra={"fields": {...}} land under "fields".
    """

    def __init__(self, config: JsonLogConfig) -> None:
        super().__init__()
        self.config = config

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": _utc_iso(record.created),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.config.service_name,
        }
        if self.config.instance_id:
            payload["instance_id"] = self.config.instance_id

        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            payload["fields"] = fields

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def _build_formatter(log_format: str, *, instance_id: str | None) -> logging.Formatter:
    if log_format.strip().lower() == "json":
        return JsonFormatter(JsonLogConfig(instance_id=instance_id))
    return logging.Formatter(TEXT_FORMAT)


def _build_file_handler(settings: LoggingSettings, directory: Path) -> logging.Handler:
    path = directory / LOG_FILE_NAME
    if settings.rotation == "daily":
        return logging.handlers.TimedRotatingFileHandler(
            path,
            when="midnight",
            backupCount=settings.max_files,
            encoding="utf-8",
            utc=True,
        )
    if settings.rotation == "hourly":
        return logging.handlers.TimedRotatingFileHandler(
            path,
            when="H",
            backupCount=settings.max_files,
            encoding="utf-8",
            utc=True,
        )
    return logging.FileHandler(path, encoding="utf-8")


def configure_logging(
    settings: LoggingSettings,
    *,
    verbose: bool = False,
    instance_id: str | None = None,
) -> Path | None:
    """Configure agent logging: rotating file output plus optional console.

    Returns the log file path, or None when the log directory is unusable
    (logging then falls back to the console).
    """

    level = logging.DEBUG if verbose else parse_level(settings.level)

    root = logging.getLogger()
    root.setLevel(level)

    # Replace handlers to avoid duplicate logs when called multiple times.
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = _build_formatter(settings.format, instance_id=instance_id)

    log_path: Path | None = None
    directory = settings.directory or default_log_dir()
    try:
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = _build_file_handler(settings, directory)
    except OSError as exc:
        print(f"Warning: failed to create log directory {directory}: {exc}", file=sys.stderr)
    else:
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        log_path = directory / LOG_FILE_NAME

    if settings.console_output or log_path is None:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
        root.addHandler(console)

    # requests/urllib3 are chatty at DEBUG.
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))

    return log_path


def configure_console_logging(level: str = "info") -> None:
    """Console-only logging for one-shot commands (update, service management)."""

    root = logging.getLogger()
    root.setLevel(parse_level(level))
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)

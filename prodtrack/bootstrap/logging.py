from __future__ import annotations

import json
import logging
import os
import platform
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import TracebackType
from typing import Any, Callable

from prodtrack.core.observability import get_correlation_id, get_request_id

DEFAULT_LOG_MAX_BYTES = 1_048_576
DEFAULT_LOG_BACKUP_COUNT = 10
MAIN_LOG_NAME = "prodtrack.log"
ERROR_OPERATIVO_LOG_NAME = "error_operativo.log"
CRASH_LOG_NAME = "crash.log"

_RECORD_CONTEXT_FIELDS = ("request_id", "incident_id", "cell")


class JsonLinesFormatter(logging.Formatter):
    """Una línea JSON por registro, con correlation_id y request_id de la operación en curso."""

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "mensaje": record.getMessage(),
            "origen": f"{record.module}.{record.funcName}:{record.lineno}",
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
        }
        context = {name: getattr(record, name, None) for name in _RECORD_CONTEXT_FIELDS}
        context["request_id"] = context["request_id"] or get_request_id()
        event.update({name: value for name, value in context.items() if value})

        payload = getattr(record, "extra", None)
        if isinstance(payload, dict) and payload:
            event["extra"] = payload
        if record.exc_info:
            event["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(event, ensure_ascii=False, default=str)


@dataclass(frozen=True)
class _LogTarget:
    file_name: str
    level: int
    accepts: Callable[[logging.LogRecord], bool] | None = None


def _log_targets(level: int) -> tuple[_LogTarget, ...]:
    # error_operativo.log recoge solo ERROR; los CRITICAL van únicamente a crash.log.
    return (
        _LogTarget(MAIN_LOG_NAME, level),
        _LogTarget(ERROR_OPERATIVO_LOG_NAME, logging.ERROR, lambda record: record.levelno == logging.ERROR),
        _LogTarget(CRASH_LOG_NAME, logging.CRITICAL),
    )


def _max_bytes_from_env() -> int:
    raw_value = os.getenv("PRODTRACK_LOG_MAX_BYTES", "").strip()
    if not raw_value:
        return DEFAULT_LOG_MAX_BYTES
    try:
        return max(int(raw_value), 1024)
    except ValueError:
        return DEFAULT_LOG_MAX_BYTES


def configure_logging(
    log_dir: Path,
    *,
    max_bytes: int | None = None,
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
    level: int = logging.INFO,
) -> None:
    log_dir.mkdir(parents=True, exist_ok=True)
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(level)

    formatter = JsonLinesFormatter()
    for target in _log_targets(level):
        handler = RotatingFileHandler(
            log_dir / target.file_name,
            maxBytes=max_bytes or _max_bytes_from_env(),
            backupCount=backup_count,
            encoding="utf-8",
        )
        handler.setLevel(target.level)
        handler.setFormatter(formatter)
        if target.accepts is not None:
            handler.addFilter(target.accepts)
        root_logger.addHandler(handler)


def write_crash_log(
    exc_type: type[BaseException], exc: BaseException, tb: TracebackType | None, log_dir: Path
) -> Path:
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.getLogger("prodtrack.crash").critical(
        "Excepción no controlada en prodtrack",
        exc_info=(exc_type, exc, tb),
        extra={"extra": {"python": platform.python_version(), "argv": list(sys.argv), "cwd": str(Path.cwd())}},
    )
    return log_dir / CRASH_LOG_NAME


def install_exception_hook(log_dir: Path) -> None:
    def _handler(exc_type: type[BaseException], exc: BaseException, tb: TracebackType | None) -> None:
        try:
            write_crash_log(exc_type, exc, tb, log_dir)
        except OSError:
            sys.__excepthook__(exc_type, exc, tb)

    sys.excepthook = _handler

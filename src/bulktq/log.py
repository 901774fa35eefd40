"""JSON-per-line logging for CloudWatch Logs Insights."""

import json
import os
import traceback
from datetime import UTC, datetime
from typing import Any

LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40}

LOG_LEVEL_ENV_VAR = "BULKTQ_LOG_LEVEL"


class StructuredLogger:
    """JSON-formatted logger for CloudWatch Logs Insights."""

    def __init__(self, name: str):
        self._name = name

    def _enabled(self, level: str) -> bool:
        threshold = os.environ.get(LOG_LEVEL_ENV_VAR, "INFO").upper()
        return LEVELS[level] >= LEVELS.get(threshold, LEVELS["INFO"])

    def _log(self, level: str, message: str, **extra: Any) -> None:
        if not self._enabled(level):
            return
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": level,
            "logger": self._name,
            "message": message,
            **extra,
        }
        print(json.dumps(log_entry, default=str))

    def debug(self, message: str, **extra: Any) -> None:
        self._log("DEBUG", message, **extra)

    def info(self, message: str, **extra: Any) -> None:
        self._log("INFO", message, **extra)

    def warning(self, message: str, exc_info: bool = False, **extra: Any) -> None:
        if exc_info:
            extra["exception"] = traceback.format_exc()
        self._log("WARNING", message, **extra)

    def error(self, message: str, exc_info: bool = False, **extra: Any) -> None:
        if exc_info:
            extra["exception"] = traceback.format_exc()
        self._log("ERROR", message, **extra)
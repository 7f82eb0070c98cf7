from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

SUCCESS = 25
LOG_FILE_PREFIX = "provisioning_"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# Level vocabulary scraped by downstream tooling; must not change.
_LEVEL_LABELS = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    SUCCESS: "SUCCESS",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "ERROR",
}

logging.addLevelName(SUCCESS, "SUCCESS")


class _CloudProvisionFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("cloud_provision"):
            return True
        return record.levelno >= logging.WARNING


class RunLogFormatter(logging.Formatter):
    """Render records as ``[timestamp] [LEVEL] message``."""

    def __init__(self) -> None:
        super().__init__("[%(asctime)s] [%(level_label)s] %(message)s", datefmt=TIMESTAMP_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        record.level_label = _LEVEL_LABELS.get(record.levelno, record.levelname)
        return super().format(record)


class _AppendOnlyFileHandler(logging.FileHandler):
    def handleError(self, record: logging.LogRecord) -> None:
        # Log file writes are best-effort; the console handler still carries the line.
        return


def log_file_name(started_at: datetime) -> str:
    return f"{LOG_FILE_PREFIX}{started_at.strftime(LOG_FILE_TIMESTAMP_FORMAT)}.log"


def _resolve_level() -> int:
    level_name = os.getenv("CLOUD_PROVISION_LOG_LEVEL", "").strip()
    if level_name:
        level = logging.getLevelName(level_name.upper())
        return level if isinstance(level, int) else logging.INFO
    enable_debug = os.getenv("CLOUD_PROVISION_DEBUG", "").lower() in {"1", "true", "yes"}
    return logging.DEBUG if enable_debug else logging.INFO


def configure_logging(log_file: Optional[Path] = None) -> Optional[Path]:
    """Initialize console logging and, when ``log_file`` is given, the run log file.

    Returns the log file path actually in use, or None when the run is console-only.
    """
    root_level = _resolve_level()
    formatter = RunLogFormatter()
    run_filter = _CloudProvisionFilter()

    handler = logging.StreamHandler()
    handler.setLevel(root_level)
    handler.setFormatter(formatter)
    handler.addFilter(run_filter)

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
        existing.close()
    root.addHandler(handler)
    root.setLevel(root_level)

    if log_file is None:
        return None

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = _AppendOnlyFileHandler(log_file, mode="a", encoding="utf-8")
    except OSError as exc:
        logging.getLogger("cloud_provision.logging").warning(
            "Could not open log file %s (%s); logging to console only", log_file, exc
        )
        return None
    file_handler.setLevel(root_level)
    file_handler.setFormatter(formatter)
    file_handler.addFilter(run_filter)
    root.addHandler(file_handler)
    return log_file

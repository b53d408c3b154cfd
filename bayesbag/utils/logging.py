"""
Logging for the bagging engine.

Every logger lives under the "bayesbag" namespace. Records can carry draw
provenance (object_id, attribute, draw_index, bagged_model_index,
test_set_index), either passed with extra= or attached to the logged
exception by errors.tag_draw_failure; the formatters below render it so
a failing ensemble member can be traced from the log alone.

Usage:
    from bayesbag.utils.logging import setup_logging, get_logger

    setup_logging(json_format=True)

    logger = get_logger(__name__)
    logger.info("Fitting", extra={"object_id": "A", "draw_index": 3})
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from bayesbag.config import settings


ROOT_LOGGER = "bayesbag"

PROVENANCE_FIELDS = (
    "object_id",
    "attribute",
    "draw_index",
    "bagged_model_index",
    "test_set_index",
)


def record_provenance(record: logging.LogRecord) -> Dict[str, Any]:
    """
    Provenance fields of a record.

    Values passed with extra= win over those attached to the exception.
    """
    exc = record.exc_info[1] if record.exc_info else None
    fields = {}
    for name in PROVENANCE_FIELDS:
        value = getattr(record, name, None)
        if value is None and exc is not None:
            value = getattr(exc, name, None)
        if value is not None:
            fields[name] = value
    return fields


# =============================================================================
# Log Formatters
# =============================================================================

class ProvenanceFormatter(logging.Formatter):
    """Plain formatter that appends provenance as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        fields = record_provenance(record)
        if fields:
            context = " ".join(f"{k}={v!r}" for k, v in fields.items())
            message = f"{message} [{context}]"
        return message


class ColoredFormatter(ProvenanceFormatter):
    """Colored console formatter for interactive runs."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # Other handlers share the record
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, "")
        record.levelname = f"{color}{record.levelname:8}{self.RESET}"
        return super().format(record)


class JSONFormatter(logging.Formatter):
    """One JSON object per record, provenance fields at top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_record.update(record_provenance(record))

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
            notes = getattr(record.exc_info[1], "__notes__", None)
            if notes:
                log_record["notes"] = list(notes)

        return json.dumps(log_record, default=str)


# =============================================================================
# Setup Functions
# =============================================================================

_logging_configured = False


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[Path] = None,
    json_format: bool = False,
    force: bool = False,
) -> logging.Logger:
    """
    Configure the bayesbag logger tree.

    Args:
        level: Log level name. Defaults to config.
        log_file: Optional file path (plain text with provenance). Defaults to config.
        json_format: JSON lines on the console instead of colored text.
        force: Reconfigure even if already configured.

    Returns:
        The "bayesbag" logger
    """
    global _logging_configured

    root_logger = logging.getLogger(ROOT_LOGGER)
    if _logging_configured and not force:
        return root_logger

    level = level or settings.log_level
    log_file = log_file or settings.log_file

    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in root_logger.handlers:
        handler.close()
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    if json_format:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(ColoredFormatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
    root_logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(ProvenanceFormatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        root_logger.addHandler(file_handler)

    _logging_configured = True
    root_logger.debug(f"Logging configured at {level.upper()}")

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the bayesbag namespace.

    Both "bagging.engine" and "bayesbag.bagging.engine" map to
    "bayesbag.bagging.engine".
    """
    if name == ROOT_LOGGER:
        return logging.getLogger(ROOT_LOGGER)
    if name.startswith(f"{ROOT_LOGGER}."):
        name = name[len(ROOT_LOGGER) + 1:]

    return logging.getLogger(f"{ROOT_LOGGER}.{name}")

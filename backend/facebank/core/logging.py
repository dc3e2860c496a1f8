import logging
import logging.handlers
import sys
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from facebank.core.config import settings

# --- Logging Configuration ---

LOG_FILE_NAME    = "facebank.log"
LOG_MAX_BYTES    = 10 * 1024 * 1024  # 10 MB
LOG_BACKUP_COUNT = 5

# Attributes passed through ``extra=`` that the JSON formatter forwards.
CONTEXT_FIELDS = ("owner_id", "identity_id", "face_index", "image_id", "strategy", "duration_ms")


class DevFormatter(logging.Formatter):

    LEVEL_COLORS = {
        "DEBUG"    : "\033[94m",   # BLUE
        "INFO"     : "\033[92m",   # GREEN
        "WARNING"  : "\033[93m",   # YELLOW
        "ERROR"    : "\033[91m",   # RED
        "CRITICAL" : "\033[95m",   # MAGENTA
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:

        color     = self.LEVEL_COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        level     = f"{color}{record.levelname:<8}{self.RESET}"
        name      = record.name[:40]

        message = record.getMessage()

        # Traceback goes on the following lines
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return f"{timestamp} | {level} | {name:<40} | {message}"


class JSONFormatter(logging.Formatter):

    """
    Production formatter: one JSON object per line so log aggregators can
    query individual fields.

    Example line:
    {
        "timestamp": "2026-02-25T10:32:11.123000+00:00",
        "level": "INFO",
        "logger": "facebank.services.resolver",
        "message": "Single-reference gate accepted face #0",
        "environment": "production",
        "service": "facebank",
        "owner_id": 7,
        "face_index": 0
    }
    """

    def __init__(self, environment: Optional[str] = None):
        super().__init__()
        self.environment = environment or settings.ENVIRONMENT

    def format(self, record: logging.LogRecord) -> str:

        log_entry: dict[str, Any] = {
            "timestamp"   : datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level"       : record.levelname,
            "logger"      : record.name,
            "message"     : record.getMessage(),
            "environment" : self.environment,
            "service"     : "facebank",
        }

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


# Main SetUp

def setup_logging(log_dir: Optional[str] = None) -> None:

    """
    Initialize the logging system. Call once at process start-up.

    Configures two handlers:

    - StreamHandler: stdout
    - RotatingFileHandler: <LOG_DIR>/facebank.log, skipped when the
      directory cannot be created or written
    """

    environment   = settings.ENVIRONMENT
    level_name    = settings.LOG_LEVEL.upper()
    numeric_level = getattr(logging, level_name, logging.INFO)
    log_path      = Path(log_dir or settings.LOG_DIR) / LOG_FILE_NAME

    if environment == "production":
        formatter = JSONFormatter(environment)
    else:
        formatter = DevFormatter()

    # --- Handler 1: stdout ---
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(numeric_level)
    stream_handler.setFormatter(formatter)

    # --- Handler 2: rotating file ---
    file_error = None
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename    = log_path,
            maxBytes    = LOG_MAX_BYTES,
            backupCount = LOG_BACKUP_COUNT,
            encoding    = "utf-8"
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        handlers = [stream_handler, file_handler]
    except OSError as e:
        # Read-only volume or missing mount: keep going on stdout only
        handlers = [stream_handler]
        file_error = e

    logging.basicConfig(
        level    = numeric_level,
        handlers = handlers,
        force    = True
    )

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("alembic").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    if file_error is not None:
        logger.warning(
            f"Could not open log file {log_path} ({file_error}). Continuing with stdout only."
        )
    logger.info(
        f"Logging initialized. env={environment} level={level_name} file={log_path}"
    )


def get_logger(name: str) -> logging.Logger:
    """
    Returns a logger named after the calling module.
    """
    return logging.getLogger(name)

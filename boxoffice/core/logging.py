"""
Logging configuration
"""

import logging
import logging.config
import json
import os
from datetime import datetime, timezone
from typing import Dict, Any

from boxoffice.config import Settings

# Attributes every LogRecord carries; anything else arrived through `extra=`
_RESERVED_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Fields passed through logger.info(..., extra={...})
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS and not key.startswith("_"):
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(settings: Settings):
    """
    Configure application logging
    """
    handlers = ["console"]
    handler_config: Dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": settings.LOG_LEVEL,
            "formatter": "json" if settings.LOG_FORMAT == "json" else "default",
            "stream": "ext://sys.stdout"
        }
    }

    if not settings.is_testing:
        os.makedirs(settings.LOG_DIR, exist_ok=True)
        handler_config["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": settings.LOG_LEVEL,
            "formatter": "json",
            "filename": os.path.join(settings.LOG_DIR, "boxoffice.log"),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5
        }
        handlers.append("file")

    log_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            },
            "json": {
                "()": JSONFormatter
            }
        },
        "handlers": handler_config,
        "loggers": {
            "boxoffice": {
                "level": settings.LOG_LEVEL,
                "handlers": handlers,
                "propagate": False
            },
            "uvicorn": {
                "level": "INFO",
                "handlers": ["console"],
                "propagate": False
            },
            "sqlalchemy": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False
            }
        },
        "root": {
            "level": settings.LOG_LEVEL,
            "handlers": ["console"]
        }
    }

    logging.config.dictConfig(log_config)

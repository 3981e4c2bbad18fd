"""
Logger configuration module.
"""
import json
import logging
import sys

from config import get_settings
from database import utcnow


class JsonFormatter(logging.Formatter):
    """Custom formatter to output logs in JSON format."""

    def format(self, record):
        settings = get_settings()
        log_data = {
            "timestamp": utcnow().isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "path": record.pathname,
            "line": record.lineno,
            "environment": settings.environment,
        }

        if record.exc_info:
            log_data["exception"] = {
                "type": str(record.exc_info[0].__name__),
                "message": str(record.exc_info[1]),
            }

        return json.dumps(log_data)


def setup_logging() -> logging.Logger:
    """Configure the logging system."""
    settings = get_settings()
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    if settings.debug:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    else:
        formatter = JsonFormatter()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # APScheduler 每次 tick 都會 log，太吵
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    app_logger = logging.getLogger("forex_spin")
    app_logger.setLevel(level)
    return app_logger

# pump_agent/core/logging_config.py
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from pump_agent.core.config import settings

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s]  %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

# Named logger for convenience imports (e.g., `from pump_agent.core.logging_config import logger`).
logger = logging.getLogger("pump_agent")


def configure_logging(level: int = logging.INFO) -> Path:
    """Attach console + rotating file handlers to the root logger. Called once from main."""
    log_dir = settings.resolve_path(settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file_path = log_dir / "logs.log"

    file_handler = TimedRotatingFileHandler(
        log_file_path,
        when="midnight",
        interval=1,
        backupCount=7,
        encoding="utf-8",
        delay=True,  # create file lazily
    )
    file_handler.suffix = "%Y-%m-%d"
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # paho logs through its own logger when enabled; keep it quiet unless debugging.
    logging.getLogger("paho").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logger.setLevel(level)

    root_logger.info(f"✅ Logging initialized. Writing logs to: {log_file_path}")
    root_logger.info(f"logging start time UTC: {datetime.now(timezone.utc).isoformat()}")
    return log_file_path


__all__ = ["configure_logging", "logger"]

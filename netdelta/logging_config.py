"""
Centralized logging configuration for netdelta.

One setup for the Flask app, the background scheduling loop, the dispatch
worker threads and the diff engine:
- colored console output
- rotating app.log / error.log
- a separate scheduler.log for scheduling and dispatch events
"""

import logging
import logging.handlers
import os
from pathlib import Path


# Loggers whose records also go to scheduler.log
SCHEDULER_LOGGERS = (
    "netdelta.scheduler",
    "netdelta.services.schedule_service",
    "netdelta.services.dispatch_service",
)

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
CONSOLE_FORMAT = "[%(asctime)s] [%(levelname_colored)s] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAX_LOG_BYTES = 10 * 1024 * 1024


class ColoredFormatter(logging.Formatter):
    """Console formatter that adds an ANSI-colored ``levelname_colored`` field"""

    LEVEL_COLORS = {
        logging.DEBUG: "36",  # cyan
        logging.INFO: "32",  # green
        logging.WARNING: "33",  # yellow
        logging.ERROR: "31",  # red
        logging.CRITICAL: "35",  # magenta
    }

    def format(self, record):
        color = self.LEVEL_COLORS.get(record.levelno)
        if color:
            record.levelname_colored = f"\033[{color}m{record.levelname}\033[0m"
        else:
            record.levelname_colored = record.levelname
        return super().format(record)


def _rotating_handler(path: Path, level, backup_count=5):
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=MAX_LOG_BYTES, backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def _resolve_level(log_level) -> int:
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")
    return getattr(logging, str(log_level).upper(), logging.INFO)


def setup_logging(app=None, log_level=None, log_dir=None, to_files=True):
    """
    Configure logging for the whole process.

    Calling it again replaces the handlers installed by the previous call,
    so every application factory call can set up logging safely.

    Args:
        app: Flask application instance (optional)
        log_level: Logging level name; defaults to $LOG_LEVEL or INFO
        log_dir: Directory for the log files; defaults to $LOG_DIR or ./logs
        to_files: Write rotating log files in addition to the console

    Returns:
        logging.Logger: Configured root logger
    """
    level = _resolve_level(log_level)
    log_dir = Path(log_dir or os.getenv("LOG_DIR", "./logs"))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    for name in SCHEDULER_LOGGERS:
        logging.getLogger(name).handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(fmt=CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(console_handler)

    if to_files:
        log_dir.mkdir(parents=True, exist_ok=True)
        root_logger.addHandler(_rotating_handler(log_dir / "app.log", level))
        root_logger.addHandler(_rotating_handler(log_dir / "error.log", logging.ERROR))

        scheduler_handler = _rotating_handler(
            log_dir / "scheduler.log", logging.INFO, backup_count=3
        )
        for name in SCHEDULER_LOGGERS:
            logging.getLogger(name).addHandler(scheduler_handler)

    if app:
        # Flask's logger shares the root handlers instead of propagating
        app.logger.handlers.clear()
        app.logger.setLevel(level)
        for handler in root_logger.handlers:
            app.logger.addHandler(handler)
        app.logger.propagate = False

    # Keep request and job bookkeeping noise out of the scan logs
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    logging.getLogger("apscheduler.scheduler").setLevel(logging.INFO)
    logging.getLogger("apscheduler.executors").setLevel(logging.WARNING)

    files = str(log_dir.absolute()) if to_files else "disabled"
    root_logger.info(f"Logging initialised: level={logging.getLevelName(level)}, files={files}")
    return root_logger


def get_logger(name):
    """Logger for a module, typically ``get_logger(__name__)``"""
    return logging.getLogger(name)

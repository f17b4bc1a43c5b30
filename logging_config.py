"""
Centralized logging configuration for the storybook print service.

Every log line carries the name of the thread that produced it. Webhook
requests run on Flask worker threads, order pipelines on their own
"Order-xxxxxxxx" threads, and image fetches on pool threads, so the thread
name is the quickest way to follow one order through the logs.

Log Format:
    2026-03-02 10:15:30 [INFO    ] [MainThread] storybook_print.app - Starting
    2026-03-02 10:15:31 [INFO    ] [Order-a1b2c3d4] storybook_print.order.a1b2c3d4 - Interior rendered
    2026-03-02 10:15:32 [WARNING ] [render_0] storybook_print.modules.pdf_renderer - Image fetch failed

Usage:
    # At application startup
    from logging_config import setup_logging, get_logger
    setup_logging(log_level=logging.INFO, enable_file_logging=True)

    # In modules
    logger = get_logger(__name__)

    # In an order pipeline thread
    order_logger = get_order_logger(order_id)
"""

import logging
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


APP_LOGGER_NAME = "storybook_print"


# =============================================================================
# THREAD CONTEXT FILTER
# =============================================================================

class ThreadContextFilter(logging.Filter):
    """
    Logging filter that adds thread context to all log records.

    Adds `thread_name` and `thread_id` to each record; never drops a record.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        current_thread = threading.current_thread()
        record.thread_name = current_thread.name
        record.thread_id = threading.get_ident()
        return True


# =============================================================================
# LOGGING SETUP
# =============================================================================

def _rotating_handler(path: Path, level: int, formatter: logging.Formatter,
                      thread_filter: logging.Filter) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        filename=path,
        maxBytes=10 * 1024 * 1024,  # 10 MB per file
        backupCount=5,
        encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(thread_filter)
    return handler


def setup_logging(
    app_name: str = APP_LOGGER_NAME,
    log_level: int = logging.INFO,
    log_dir: Optional[Path] = None,
    enable_file_logging: bool = True,
) -> logging.Logger:
    """
    Configure application logging with thread context.

    This sets up:
    1. Console handler (always enabled)
    2. Rotating file handler (optional) - all levels
    3. Error file handler (optional) - ERROR/CRITICAL only

    Args:
        app_name: Name of the application root logger
        log_level: Minimum log level (default: INFO)
        log_dir: Directory for log files (default: ./logs next to this file)
        enable_file_logging: Whether to write to log files

    Returns:
        Configured application root logger
    """
    logger = logging.getLogger(app_name)
    logger.setLevel(log_level)
    logger.propagate = False  # Prevent duplicate logs to root logger

    # Allows re-configuration (tests create several apps)
    logger.handlers.clear()

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)-8s] [%(thread_name)s] %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    thread_filter = ThreadContextFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(thread_filter)
    logger.addHandler(console_handler)

    if enable_file_logging:
        if log_dir is None:
            log_dir = Path(__file__).parent / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)

        app_log_file = log_dir / f"{app_name}.log"
        logger.addHandler(_rotating_handler(app_log_file, log_level, formatter, thread_filter))
        logger.addHandler(_rotating_handler(
            log_dir / f"{app_name}_error.log", logging.ERROR, formatter, thread_filter
        ))

        logger.info(f"File logging enabled: {app_log_file}")

    logger.info(f"Logging configured at level {logging.getLevelName(log_level)}")
    return logger


# =============================================================================
# LOGGER FACTORY FUNCTIONS
# =============================================================================

def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger under the application namespace.

    Example:
        get_logger("services.fulfillment_service")
        # -> "storybook_print.services.fulfillment_service"
    """
    if not name.startswith(APP_LOGGER_NAME):
        name = f"{APP_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def get_order_logger(order_id: str) -> logging.Logger:
    """
    Get a logger for one order's pipeline run.

    Only the first 8 characters of the order id are used in the name,
    which is enough to grep a single order out of the log.
    """
    short_id = order_id[:8] if len(order_id) >= 8 else order_id
    return logging.getLogger(f"{APP_LOGGER_NAME}.order.{short_id}")


def set_thread_name(name: str) -> None:
    """Set the current thread's name (shown in the [thread_name] field)."""
    threading.current_thread().name = name

"""
logging_config.py - Centralized Logging Configuration for the License Service

This module configures unified logging behavior for the entire application.
It ensures that all modules log messages consistently, tagged with the
correlation id of the request being processed.

Features:
    • Console output, plus a log file when LOG_FILE is set
    • Process ID and correlation ID tagging
    • Standardized log format for all modules
    • Reduced verbosity for external dependencies (e.g., httpx)
"""

import logging
import os
import sys
from contextvars import ContextVar

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")

LOG_FORMAT = "%(asctime)s - %(levelname)s - [PID:%(process)d] - [%(correlation_id)s] - %(name)s - %(message)s"


class CorrelationIdFilter(logging.Filter):
    """Stamps every record with the correlation id of the current request context."""

    def filter(self, record):
        record.correlation_id = correlation_id_var.get()
        return True


def setup_logging(level: str = None):
    """
    Configures the global logging system for the application.

    The configuration includes:
        - Log level: LOG_LEVEL environment variable, INFO by default
        - Log format: timestamp, level, process ID, correlation ID, logger and message
        - Output destinations: stdout, and the file named by LOG_FILE if set
        - Reduced verbosity for third-party libraries such as httpx
    """
    handlers = [logging.StreamHandler(sys.stdout)]
    log_file = os.environ.get("LOG_FILE")
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    correlation_filter = CorrelationIdFilter()
    for handler in handlers:
        handler.addFilter(correlation_filter)

    logging.basicConfig(
        level=(level or os.environ.get("LOG_LEVEL", "INFO")).upper(),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

    # Reduce verbosity from external libraries
    for noisy in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name):
    """
    Returns a logger instance for a given module or component name.

    Args:
        name (str): The logger name, typically the module's __name__.

    Returns:
        logging.Logger: A logger that follows the global format and handlers.
    """
    return logging.getLogger(name)

# planflow/utils/logging.py
"""
Logging configuration for planflow.
"""
import sys
import logging

from loguru import logger
from planflow.constants import LOG_DIR, LOG_FORMAT, LOG_ROTATION, LOG_RETENTION
from planflow.utils.enhanced_logging import EnhancedLogger

# Dictionary to store enhanced logger instances
_enhanced_loggers = {}


class _LoguruForwarder(logging.Handler):
    """Hands standard library log records over to the loguru sinks."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(exception=record.exc_info).log(level, record.getMessage())


def setup_logging(debug: bool = False, log_to_file: bool = True) -> None:
    """
    Configure the application logging.
    
    Args:
        debug: Whether to enable debug logging.
        log_to_file: Whether to add the rotating file sinks under LOG_DIR.
    """
    # Remove default handlers
    logger.remove()
    
    # Add console handler with appropriate level
    log_level = "DEBUG" if debug else "INFO"
    logger.add(
        sys.stderr,
        format=LOG_FORMAT,
        level=log_level,
        diagnose=debug,  # Include variable values in traceback if debug is True
    )
    
    if log_to_file:
        # Ensure log directory exists
        LOG_DIR.mkdir(parents=True, exist_ok=True)

        log_file = LOG_DIR / "planflow.log"
        logger.add(
            log_file,
            format=LOG_FORMAT,
            level="INFO",
            rotation=LOG_ROTATION,
            retention=LOG_RETENTION,
            compression="zip",
        )
        
        # Add structured JSON log file
        json_log_file = LOG_DIR / "planflow_structured.log"
        logger.add(
            json_log_file,
            serialize=True,  # Output as JSON
            level="INFO",
            rotation=LOG_ROTATION,
            retention=LOG_RETENTION,
            compression="zip",
        )
        logger.debug(f"Logging initialized. Log files: {log_file}, {json_log_file}")

    # Route the EnhancedLogger (stdlib) records into the sinks above
    root = logging.getLogger("planflow")
    root.handlers = [_LoguruForwarder()]
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    root.propagate = False


def get_logger(name: str = "planflow") -> EnhancedLogger:
    """
    Get a logger instance with the given name.
    
    Args:
        name: The name for the logger.
        
    Returns:
        An enhanced logger instance.
    """
    if name in _enhanced_loggers:
        return _enhanced_loggers[name]
    
    enhanced_logger = EnhancedLogger(name)
    _enhanced_loggers[name] = enhanced_logger
    
    return enhanced_logger

"""
Logging Configuration Module.

Provides structured logging using Loguru with text or JSON formatting,
optional file rotation, and helpers for broker-specific log records.
"""

import sys
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

# Remove default logger
logger.remove()
logger.configure(extra={"name": "brokerlink"})


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: str = "text",
    rotation: str = "100 MB",
    retention: str = "14 days",
    enable_console: bool = True,
) -> None:
    """
    Configure logging with Loguru.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (optional)
        log_format: Log format ("text" or "json")
        rotation: Log rotation policy
        retention: Log retention policy
        enable_console: Enable console output
    """
    logger.remove()

    if enable_console:
        if log_format == "json":
            logger.add(sys.stderr, level=log_level, serialize=True)
        else:
            console_format = (
                "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "<level>{message}</level>"
            )
            logger.add(
                sys.stderr,
                format=console_format,
                level=log_level,
                colorize=True,
                backtrace=True,
                diagnose=False,
            )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_file,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
                "{extra[name]}:{function}:{line} | {message} | {extra}"
            ),
            level=log_level,
            rotation=rotation,
            retention=retention,
            compression="zip",
            serialize=log_format == "json",
            backtrace=True,
            diagnose=False,
            enqueue=True,  # Async logging
        )


def get_logger(name: str, **kwargs: Any) -> Any:
    """
    Get a logger instance with optional context.

    Args:
        name: Logger name (typically __name__)
        **kwargs: Additional context to bind to logger

    Returns:
        Configured logger instance
    """
    return logger.bind(name=name, **kwargs)


def log_suppressed_error(
    operation: str,
    broker: str,
    error: BaseException,
    **kwargs: Any,
) -> None:
    """
    Log an error that an operation absorbed into a boolean result.

    ``test_connection`` and ``cancel_order`` report failure as ``False``;
    the underlying error is recorded here so operators can still see it.

    Args:
        operation: Operation that swallowed the error (e.g. 'cancel_order')
        broker: Broker identifier
        error: The absorbed exception
        **kwargs: Additional context (order id, account id, ...)
    """
    context: Dict[str, Any] = {
        "operation": operation,
        "broker": broker,
        "error_type": type(error).__name__,
        "error": str(error),
        **kwargs,
    }

    status_code = getattr(error, "status_code", None)
    if status_code is not None:
        context["status_code"] = status_code

    logger.bind(name="brokerlink.suppressed", **context).warning(
        f"{broker} {operation} failed: {type(error).__name__}: {error}"
    )


# Initialize logging on module import
try:
    import os
    from dotenv import load_dotenv

    load_dotenv()

    setup_logging(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_file=os.getenv("LOG_FILE_PATH"),
        log_format=os.getenv("LOG_FORMAT", "text"),
        rotation=os.getenv("LOG_ROTATION", "100 MB"),
        retention=os.getenv("LOG_RETENTION", "14 days"),
    )
except Exception as e:
    # Fallback to basic logging
    logger.add(sys.stderr, level="INFO")
    logger.warning(f"Failed to load logging configuration from .env: {e}")

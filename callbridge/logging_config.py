"""Logging configuration using Loguru.

Console output during development, rotating call logs in production.
Caller speech and model output are truncated before they reach a sink.
"""

import sys
from pathlib import Path

from loguru import logger

_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"


def setup_logging(
    level: str = "INFO",
    log_dir: str = "logs",
    enable_file: bool = True,
    serialize: bool = False,
) -> None:
    """Configure application logging.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for call logs
        enable_file: Whether to write rotating call logs
        serialize: Emit file records as JSON lines
    """
    logger.remove()

    logger.add(
        sys.stderr,
        format=(
            "<green>{time:HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=level == "DEBUG",
    )

    if not enable_file:
        logger.info(f"Logging initialized at {level} level (console only)")
        return

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    logger.add(
        log_path / "callbridge_{time:YYYY-MM-DD}.log",
        format=_FILE_FORMAT,
        level=level,
        rotation="100 MB",
        retention="14 days",
        compression="gz",
        enqueue=True,
        serialize=serialize,
        backtrace=True,
        diagnose=False,
    )

    # Upstream failures only
    logger.add(
        log_path / "upstream_errors_{time:YYYY-MM-DD}.log",
        format=_FILE_FORMAT + "\n{exception}",
        level="ERROR",
        rotation="50 MB",
        retention="30 days",
        compression="gz",
        enqueue=True,
        backtrace=True,
        diagnose=False,
    )

    logger.info(f"Logging initialized at {level} level, writing to {log_path}")


def get_logger(name: str) -> "logger":
    """Get a logger bound to a module name.

    Usage:
        from callbridge.logging_config import get_logger
        logger = get_logger(__name__)
    """
    return logger.bind(name=name)


def truncate_for_log(text: str, limit: int = 50) -> str:
    """Shorten caller speech or model output before logging it."""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}..."

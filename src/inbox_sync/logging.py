"""Logging configuration for inbox-sync.

Provides centralized logging setup with file output to ~/inbox-sync/logs/.
"""

import logging
import sys
from pathlib import Path

DEFAULT_LOG_DIR = Path.home() / "inbox-sync" / "logs"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    name: str,
    log_dir: Path | None = None,
    level: int = logging.INFO,
    console: bool = True,
) -> logging.Logger:
    """Configure logging for an inbox-sync component.

    Attaches handlers to the package root logger ``inbox_sync`` so every
    module logger obtained through get_logger() shares them. Log files are
    written to <log_dir>/<name>.log.

    Args:
        name: Component name (used for log filename)
        log_dir: Directory for log files (defaults to ~/inbox-sync/logs/)
        level: Logging level (defaults to INFO)
        console: Whether to also log to stderr (defaults to True)

    Returns:
        The configured component logger
    """
    if log_dir is None:
        log_dir = DEFAULT_LOG_DIR

    log_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger("inbox_sync")
    root.setLevel(level)

    # Already configured by an earlier call in this process
    if root.handlers:
        return get_logger(name)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    file_handler = logging.FileHandler(log_dir / f"{name}.log", encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    return get_logger(name)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for an inbox-sync component.

    Args:
        name: Logger name (will be prefixed with 'inbox_sync.')

    Returns:
        Logger instance
    """
    return logging.getLogger(f"inbox_sync.{name}")

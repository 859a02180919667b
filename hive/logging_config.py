"""
Centralized logging configuration.

Usage:
    from hive.logging_config import setup_logging

    setup_logging(log_level="DEBUG", log_file="./logs/hive.log")

    # Then in any module:
    import logging
    logger = logging.getLogger(__name__)
"""

import logging
import logging.handlers
from pathlib import Path
from typing import Optional


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    max_bytes: int = 5_000_000,
    backup_count: int = 3,
) -> None:
    """
    Configure the root logger for the relay process.

    Args:
        log_level: Minimum level to log (DEBUG, INFO, WARNING, ERROR).
        log_file: Path to a rotating log file. None means console only.
        max_bytes: Max size per log file before rotation.
        backup_count: Number of rotated files to keep.
    """
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=str(log_path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # uvicorn's access log is noisy at poll frequency
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

"""
Logging configuration for the group deduplication tool.

Uses loguru for structured logging. Every API attempt, retry, sleep and
per-group outcome is emitted through the shared loguru logger.
"""

import os
import sys
from datetime import datetime
from pathlib import Path

from loguru import logger

from groupdedup.config import settings


def setup_logging(
    level: str | None = None,
    log_file: Path | None = None,
    rotation: str = "10 MB",
    retention: str = "1 week",
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file path for logging to file
        rotation: Log rotation setting (e.g., "10 MB", "1 day")
        retention: Log retention setting (e.g., "1 week", "10 files")
    """
    level = level or settings.pipeline.log_level

    # Remove default handler
    logger.remove()

    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        colorize=True,
    )

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_file,
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            rotation=rotation,
            retention=retention,
            compression="gz",
        )

    logger.info(f"Logging configured: level={level}" + (f", file={log_file}" if log_file else ""))


def run_log_path(log_dir: Path, now: datetime | None = None) -> Path:
    """Timestamped log file for a single run."""
    now = now or datetime.now()
    return Path(log_dir) / f"groupdedup_{now.strftime('%Y%m%d_%H%M%S')}.log"


# Only configure logging if not explicitly disabled
if os.environ.get("DISABLE_LOGGING") != "1":
    setup_logging()

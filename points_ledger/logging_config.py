"""
Logging configuration with loguru
"""
import logging
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from .config import ENVIRONMENT, LOG_DIR, LOG_LEVEL


def setup_logging(level: Optional[str] = None, log_dir: Optional[str] = None) -> None:
    level = level or LOG_LEVEL
    log_dir = LOG_DIR if log_dir is None else log_dir

    logger.remove()

    logger.add(
        sys.stdout,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        level=level,
        colorize=True,
    )

    if log_dir:
        logs_path = Path(log_dir)
        logs_path.mkdir(parents=True, exist_ok=True)
        logger.add(
            logs_path / "ledger_{time:YYYY-MM-DD}.log",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}",
            level="DEBUG",
            rotation="00:00",
            retention="7 days",
            compression="zip",
            encoding="utf-8",
        )

    # SQL echo is controlled by DATABASE_ECHO, not the root logger
    logging.getLogger("sqlalchemy.engine").setLevel(logging.ERROR)

    logger.info(f"Points ledger logging ready | Environment: {ENVIRONMENT} | Log level: {level}")

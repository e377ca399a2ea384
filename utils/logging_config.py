# utils/logging_config.py
"""
Logging setup shared by the reconciliation helpers, pages and scripts.

Console output always; a daily-rotating file under LOG_DIR when it is set.

Usage:
    from utils.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("registered 3 -> 2")
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

from config import LOG_DIR, LOG_LEVEL, LOG_RETENTION_DAYS

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False


def cleanup_old_logs(log_dir: Path, retention_days: int = LOG_RETENTION_DAYS):
    if not log_dir.exists():
        return
    cutoff = datetime.now() - timedelta(days=retention_days)
    for log_file in log_dir.glob("*.log*"):
        if log_file.stat().st_mtime < cutoff.timestamp():
            try:
                log_file.unlink()
            except OSError:
                pass  # another process may hold it


def configure(level: Optional[str] = None, log_dir: Optional[str] = None, console_output: bool = True):
    """
    Attach handlers to the project's parent loggers ("utils", "scripts").

    Safe to call repeatedly; only the first call installs handlers.
    """
    global _configured
    if _configured:
        return
    _configured = True

    log_level = getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers = []

    if console_output:
        console = logging.StreamHandler()
        console.setLevel(log_level)
        console.setFormatter(formatter)
        handlers.append(console)

    target = log_dir if log_dir is not None else LOG_DIR
    if target:
        path = Path(target)
        path.mkdir(parents=True, exist_ok=True)
        cleanup_old_logs(path)
        file_handler = TimedRotatingFileHandler(
            filename=path / "reconcile.log",
            when="midnight",
            interval=1,
            backupCount=LOG_RETENTION_DAYS,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    for name in ("utils", "scripts"):
        logger = logging.getLogger(name)
        logger.setLevel(log_level)
        for h in handlers:
            logger.addHandler(h)


def get_logger(name: str) -> logging.Logger:
    """Module logger; handlers live on the parent so records still propagate."""
    return logging.getLogger(name)

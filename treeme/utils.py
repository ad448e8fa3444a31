"""
Logging Setup and Small Helpers

This module provides common utility functions used throughout the treeme
package: logging configuration, output paths and small formatting
helpers.

Key Utilities:
1. Logging Configuration
   - Centralized logging setup for the ``treeme`` package logger
   - Colored console output through rich
   - Optional plain-text log file

2. File Handling
   - Output directory creation

3. General Helpers
   - Timestamps and human-readable file sizes

Example Usage:
    >>> from treeme.utils import setup_logging, format_file_size
    >>> logger = setup_logging(log_level="DEBUG")
    >>> format_file_size(1536)
    '1.5 KB'
"""

from typing import Optional, Union
from pathlib import Path
import logging
from datetime import datetime

from rich.console import Console
from rich.logging import RichHandler

# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# Logging Configuration
# ============================================================================

def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """
    Configure logging for treeme.

    Sets up the package logger with a colored console handler and an optional
    file handler. Console output goes through rich so warnings and errors
    stand out; the log file keeps a plain, timestamped format.

    Parameters
    ----------
    log_level : str, optional
        Logging level: DEBUG, INFO, WARNING, ERROR, or CRITICAL (default: INFO)
    log_file : str, optional
        Path to log file. If None, logs only to console (default: None)
    format_string : str, optional
        Custom format string for the log file. If None, uses default format

    Returns
    -------
    logging.Logger
        Configured logger instance

    Examples
    --------
    >>> logger = setup_logging(log_level="DEBUG", log_file="treeme.log")
    >>> logger.info("Starting")

    Notes
    -----
    The default file format includes timestamp, level, and message:
    [2025-11-03 10:30:45] INFO: Starting
    """
    level = getattr(logging, log_level.upper())

    package_logger = logging.getLogger("treeme")
    package_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    package_logger.handlers.clear()

    if format_string is None:
        format_string = "[%(asctime)s] %(levelname)s: %(message)s"

    console_handler = RichHandler(
        console=Console(stderr=True),
        level=level,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    console_handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    package_logger.addHandler(console_handler)

    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S")
        )
        package_logger.addHandler(file_handler)

        package_logger.info(f"Logging to file: {log_file}")

    return package_logger


# ============================================================================
# Output Paths
# ============================================================================

def create_output_directory(output_dir: Union[str, Path]) -> Path:
    """Make ``output_dir`` and its parents; OSError is logged and re-raised."""
    path = Path(output_dir)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Cannot create output directory {path}: {e}")
        raise
    logger.debug(f"Output directory ready: {path}")
    return path


# ============================================================================
# General Helpers
# ============================================================================

def format_file_size(size_bytes: int) -> str:
    """
    Human-readable size of a written file.

    Examples
    --------
    >>> format_file_size(1536)
    '1.5 KB'
    """
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if size_bytes < 1024.0:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} PB"


def get_timestamp() -> str:
    """Local time as an ISO 8601 string, used to stamp run logs."""
    return datetime.now().strftime("%Y-%m-%dT%H:%M:%S")

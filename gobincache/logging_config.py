"""
Centralized logging configuration for gobincache.

Diagnostics go to stderr so that stdout stays free for --json output
and exit codes remain the primary signal. Records logged with
`extra={"stage": ...}` carry the pipeline stage (manifest, artifact,
toolchain, resolve) that produced them.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from .common import is_debug_enabled


LOGGER_NAME = "gobincache"

CONSOLE_FORMAT = LOGGER_NAME + ": %(level_tag)s: %(stage_tag)s%(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(stage_tag)s%(message)s"

# Global logger instance
_logger: Optional[logging.Logger] = None


def effective_level(level: str = "WARNING", verbose: bool = False, quiet: bool = False) -> int:
    """
    Resolve the console log level.

    --verbose and GOBINCACHE_DEBUG=1 both force DEBUG and win over --quiet.

    Raises:
        ValueError: If level is not a logging level name
    """
    if verbose or is_debug_enabled():
        return logging.DEBUG
    if quiet:
        return logging.ERROR
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"Invalid log level: {level}")
    return value


def setup_logging(
    level: str = "WARNING",
    log_file: Optional[str] = None,
    verbose: bool = False,
    quiet: bool = False,
    propagate: bool = False,
) -> logging.Logger:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path; the file receives every record
        verbose: Enable verbose (DEBUG) output
        quiet: Suppress console output (file only)
        propagate: Allow log propagation (useful for testing)

    Returns:
        Configured logger instance
    """
    global _logger

    console_level = effective_level(level, verbose, quiet)
    show_console = console_level == logging.DEBUG or not quiet

    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.setLevel(console_level)

    if show_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(console_level)
        console_handler.setFormatter(StageFormatter(CONSOLE_FORMAT, use_colors=sys.stderr.isatty()))
        logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(StageFormatter(FILE_FORMAT, use_colors=False))
        logger.addHandler(file_handler)
        logger.setLevel(logging.DEBUG)

    logger.propagate = propagate

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    """
    Get the configured logger instance.

    If logging hasn't been set up, initializes with defaults.
    """
    global _logger
    if _logger is None:
        _logger = setup_logging()
    return _logger


class StageFormatter(logging.Formatter):
    """
    Formatter that tags records with their pipeline stage.

    Provides `%(level_tag)s` (lower-case level name, colored for
    terminals) and `%(stage_tag)s` ("[stage] ", or empty when the record
    has no stage) to the format string.
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str, use_colors: bool = False):
        super().__init__(fmt, datefmt="%Y-%m-%d %H:%M:%S")
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        tag = record.levelname.lower()
        if self.use_colors and record.levelno in self.LEVEL_COLORS:
            tag = f"{self.LEVEL_COLORS[record.levelno]}{tag}{self.RESET}"
        record.level_tag = tag
        stage = getattr(record, "stage", None)
        record.stage_tag = f"[{stage}] " if stage else ""
        return super().format(record)

"""
Logging setup for extraction runs.

The console stays quiet unless --verbose is given, so the tqdm bars and the
diagnostics report own stdout. Problems that do not stop a run (lossy
payloads, dangling join rows, missing attachment files) are logged at
WARNING by the module that finds them and collected by FailureTracker; only
a run-ending SourceReadFailure reaches the console at ERROR in quiet mode.

Example:
    >>> from common.logging_config import setup_logging, get_logger
    >>> setup_logging(verbose=True, log_file=default_log_file())
    >>> get_logger("extraction.pipeline").info("Read 1,204 messages")
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

VERBOSE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
QUIET_FORMAT = "%(levelname)s: %(message)s"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# python-dotenv logs every unparsable .env line at WARNING through this logger
NOISY_LOGGERS: Tuple[str, ...] = ("dotenv.main",)


def _console_handler(verbose: bool) -> logging.Handler:
    handler = logging.StreamHandler()
    if verbose:
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter(VERBOSE_FORMAT, datefmt=TIMESTAMP_FORMAT))
    else:
        handler.setLevel(logging.ERROR)
        handler.setFormatter(logging.Formatter(QUIET_FORMAT))
    return handler


def setup_logging(
    verbose: bool = False, log_file: Optional[str] = None
) -> logging.Logger:
    """Install console (and optionally file) handlers on the root logger.

    Calling it twice replaces the previous handlers. The file handler, when
    given, records DEBUG output such as per-row decode failures and path
    checks regardless of the console level.

    Args:
        verbose: Show INFO on the console instead of only ERROR
        log_file: Path of a log file to append to

    Returns:
        The root logger
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()
    root.addHandler(_console_handler(verbose))

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(VERBOSE_FORMAT, datefmt=TIMESTAMP_FORMAT))
        root.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)

    return root


def default_log_file(logs_dir: Path = Path("logs")) -> Path:
    """Return logs/extraction_<YYYYmmdd_HHMMSS>.log, creating logs/ if needed."""
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir / f"extraction_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass __name__."""
    return logging.getLogger(name)

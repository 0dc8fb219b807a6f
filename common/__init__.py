"""
Common modules shared across the extraction engine.

This package contains configuration, logging, progress, error and failure
tracking helpers used by every extraction phase.
"""

from .config import ExtractionConfig
from .errors import (
    ExtractionCancelled,
    ExtractionError,
    MalformedStream,
    SourceReadFailure,
)
from .failure_tracker import FailureTracker
from .logging_config import setup_logging

__version__ = "0.1.0"
__all__ = [
    "ExtractionConfig",
    "ExtractionCancelled",
    "ExtractionError",
    "FailureTracker",
    "MalformedStream",
    "SourceReadFailure",
    "setup_logging",
]

#!/usr/bin/env python3
"""
Extraction Configuration Module

Centralized run settings. Values come from CLI arguments first, then
environment variables (MSGRECOVER_*), then a .env file loaded by
common.env_loader.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from common.utils import default_worker_count, parse_bool_env, parse_int_env

# Environment variable names
ENV_WORKERS = "MSGRECOVER_WORKERS"
ENV_BATCH_SIZE = "MSGRECOVER_BATCH_SIZE"
ENV_ATTACHMENT_ROOT = "MSGRECOVER_ATTACHMENT_ROOT"
ENV_CHECK_ATTACHMENTS = "MSGRECOVER_CHECK_ATTACHMENTS"
ENV_SHOW_PROGRESS = "MSGRECOVER_SHOW_PROGRESS"

DEFAULT_BATCH_SIZE = 500


@dataclass
class ExtractionConfig:
    """Settings for one extraction run.

    Attributes:
        workers: Size of the decode and attachment-check worker pools
        batch_size: Message rows handed to a worker at a time
        attachment_root: Directory that replaces ~/Library/Messages (or SMS)
            when resolving attachment paths; None expands ~ as-is
        check_attachments: Check the filesystem for attachment files
        show_progress: Display tqdm progress bars
    """

    workers: int = field(default_factory=default_worker_count)
    batch_size: int = DEFAULT_BATCH_SIZE
    attachment_root: Optional[Path] = None
    check_attachments: bool = True
    show_progress: bool = False

    def __post_init__(self):
        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.attachment_root is not None:
            self.attachment_root = Path(self.attachment_root).expanduser()

    @classmethod
    def from_env(cls, **overrides) -> "ExtractionConfig":
        """Build a config from environment variables.

        Keyword arguments whose value is not None take precedence over the
        environment, which is how CLI flags are layered on top.

        Example:
            >>> config = ExtractionConfig.from_env(workers=2)
            >>> config.workers
            2
        """
        values = {
            "workers": parse_int_env(ENV_WORKERS),
            "batch_size": parse_int_env(ENV_BATCH_SIZE),
            "attachment_root": os.getenv(ENV_ATTACHMENT_ROOT) or None,
        }
        if os.getenv(ENV_CHECK_ATTACHMENTS):
            values["check_attachments"] = parse_bool_env(os.environ[ENV_CHECK_ATTACHMENTS])
        if os.getenv(ENV_SHOW_PROGRESS):
            values["show_progress"] = parse_bool_env(os.environ[ENV_SHOW_PROGRESS])

        for key, value in overrides.items():
            if value is not None:
                values[key] = value

        return cls(**{key: value for key, value in values.items() if value is not None})

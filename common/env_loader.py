#!/usr/bin/env python3
"""
.env loader built on python-dotenv.

Loads key=value pairs into os.environ without overriding existing env vars.
"""

import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def load_dotenv_file(path: Optional[str]) -> bool:
    """Load a .env file if present, without overwriting existing env vars.

    Args:
        path: Path to .env; if None, tries project root `.env` (cwd).

    Returns:
        True if a file was found and loaded
    """
    env_path = Path(path) if path else Path.cwd() / ".env"
    if not env_path.exists():
        if path:
            logger.warning(f"Env file not found: {env_path}")
        return False

    load_dotenv(dotenv_path=env_path, override=False)
    logger.debug(f"Loaded environment from {env_path}")
    return True

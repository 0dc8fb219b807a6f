#!/usr/bin/env python3
"""
Attachment filesystem check.

Attachment rows record paths as the device saw them, e.g.
~/Library/Messages/Attachments/ab/11/GUID/IMG_0001.HEIC on a Mac or
~/Library/SMS/Attachments/... on a phone. When the database was copied off
the device, an attachment root points at the directory that now holds
those files.

The check only answers "does it exist" and "how big is it"; it never opens
or copies files.
"""

import logging
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

MAC_PREFIX = "~/Library/Messages/"
IPHONE_PREFIX = "~/Library/SMS/"


class AttachmentFilesystem:
    """Resolves declared attachment paths and stats them.

    Args:
        attachment_root: Directory standing in for ~/Library/Messages (Mac)
            or the parent of SMS/ (phone backups). None resolves paths
            against the current user's home directory.

    Example:
        >>> fs = AttachmentFilesystem("/mnt/export")
        >>> fs.resolve("~/Library/Messages/Attachments/00/00/a.jpg")
        PosixPath('/mnt/export/Attachments/00/00/a.jpg')
    """

    def __init__(self, attachment_root: Optional[Union[str, Path]] = None):
        self.attachment_root = Path(attachment_root).expanduser() if attachment_root else None

    def resolve(self, declared_path: Optional[str]) -> Optional[Path]:
        """Map a declared path onto the local filesystem."""
        if not declared_path:
            return None

        if self.attachment_root is not None:
            if declared_path.startswith(MAC_PREFIX):
                return self.attachment_root / declared_path[len(MAC_PREFIX):]
            if declared_path.startswith(IPHONE_PREFIX):
                return self.attachment_root / "SMS" / declared_path[len(IPHONE_PREFIX):]
            if declared_path.startswith("~/"):
                return self.attachment_root / declared_path[2:]

        return Path(declared_path).expanduser()

    def size_of(self, path: Path) -> Optional[int]:
        """Size of a regular file in bytes, or None if it does not exist."""
        try:
            if not path.is_file():
                return None
            return path.stat().st_size
        except OSError as e:
            logger.debug(f"Could not stat {path}: {e}")
            return None

#!/usr/bin/env python3
"""
Error types raised during extraction.

Only structural failures are exceptions. An unrecognized archived class is
decoded into a passthrough token and an unresolved reply/reaction target is a
marker on the message, so neither appears here.
"""

from typing import Optional


class ExtractionError(Exception):
    """Base class for all extraction errors."""


class MalformedStream(ExtractionError):
    """A typedstream payload is structurally corrupt.

    Raised per payload. The builder catches it, falls back to the plain-text
    column and marks the message lossy, so one bad blob never aborts a run.

    Attributes:
        offset: Byte offset in the payload where decoding failed
        expected: The construct the decoder was trying to read
        detail: Optional extra context (table sizes, lengths)
    """

    def __init__(self, offset: int, expected: str, detail: Optional[str] = None):
        self.offset = offset
        self.expected = expected
        self.detail = detail
        message = f"Malformed typedstream at offset {offset}: expected {expected}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class SourceReadFailure(ExtractionError):
    """The backing database cannot be opened or queried.

    Fatal for the run: no partial report is produced.
    """

    def __init__(self, reason: str, table: Optional[str] = None):
        self.reason = reason
        self.table = table
        if table:
            super().__init__(f"Cannot read table '{table}': {reason}")
        else:
            super().__init__(f"Cannot read source database: {reason}")


class ExtractionCancelled(ExtractionError):
    """The run was cancelled before the report was produced."""

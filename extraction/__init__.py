"""
Message extraction engine.

Decodes, links, deduplicates and checks the contents of a messaging
database. ExtractionPipeline runs every phase; the modules can also be used
on their own.
"""

from extraction.filesystem import AttachmentFilesystem
from extraction.pipeline import ExtractionPipeline, ExtractionResult
from extraction.source import SQLiteSource

__all__ = [
    "AttachmentFilesystem",
    "ExtractionPipeline",
    "ExtractionResult",
    "SQLiteSource",
]

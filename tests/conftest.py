"""
Shared fixtures for msgrecover tests.

The sample export is generated once per session and read by several test
modules, so tests must treat it as read-only. Tests that need to alter a
database build their own under tmp_path with tests.fixtures.generators.
"""

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from common.config import ExtractionConfig  # noqa: E402
from extraction.filesystem import AttachmentFilesystem  # noqa: E402
from extraction.pipeline import ExtractionPipeline, ExtractionResult  # noqa: E402
from extraction.source import SQLiteSource  # noqa: E402


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Directory holding msgrecover.py; CLI tests run from here."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def sample_export(tmp_path_factory) -> Path:
    """chat.db plus an Attachments tree covering every diagnostics category."""
    from tests.fixtures.generators import create_sample_export
    return create_sample_export(tmp_path_factory.mktemp("sample_export"))


@pytest.fixture(scope="session")
def sample_result(sample_export) -> ExtractionResult:
    config = ExtractionConfig(workers=2, batch_size=3, attachment_root=sample_export)
    with SQLiteSource(sample_export / "chat.db") as source:
        return ExtractionPipeline(
            source, AttachmentFilesystem(sample_export), config
        ).run()


@pytest.fixture
def temp_output_dir(tmp_path) -> Path:
    """Empty directory for reports written by a single test."""
    output_dir = tmp_path / "output"
    output_dir.mkdir()
    return output_dir


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: builds and reads a chat.db on disk"
    )

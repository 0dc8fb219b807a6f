"""
Integration tests for the read-only SQLite source.

Tests cover:
- Databases that cannot be opened
- Older schemas missing optional columns
- Missing tables and required columns
- Row counts and file size
- Read-only access
"""

import sqlite3

import pytest

from common.errors import SourceReadFailure
from extraction.source import TABLE_COLUMNS, SQLiteSource
from tests.fixtures.databases import (
    MODERN_SCHEMA,
    create_chat_db,
    create_minimal_sqlite_db,
    insert_rows,
)


@pytest.mark.integration
class TestOpen:
    """Tests for opening a source."""

    def test_missing_file(self, tmp_path):
        """Should raise SourceReadFailure for a missing database."""
        with pytest.raises(SourceReadFailure, match="not found"):
            SQLiteSource(tmp_path / "chat.db").open()

    def test_not_a_database(self, tmp_path):
        """Should raise SourceReadFailure for a file that is not SQLite."""
        path = tmp_path / "chat.db"
        path.write_bytes(b"this is not an sqlite database, just text" * 10)

        with pytest.raises(SourceReadFailure):
            SQLiteSource(path).open()

    def test_context_manager(self, tmp_path):
        """Should open on enter and close on exit."""
        db_path = create_chat_db(tmp_path / "chat.db")
        source = SQLiteSource(db_path)

        with source:
            assert source._conn is not None
        assert source._conn is None

    def test_read_only(self, tmp_path):
        """Should refuse writes to the database."""
        db_path = create_chat_db(tmp_path / "chat.db")

        with SQLiteSource(db_path) as source:
            with pytest.raises(sqlite3.OperationalError):
                source.conn.execute("INSERT INTO handle (ROWID, id) VALUES (1, 'x')")

        conn = sqlite3.connect(db_path)
        assert conn.execute("SELECT COUNT(*) FROM handle").fetchone()[0] == 0
        conn.close()


@pytest.mark.integration
class TestRows:
    """Tests for the row iterators."""

    def test_modern_rows(self, tmp_path):
        """Should read every column of a modern database."""
        db_path = create_chat_db(tmp_path / "chat.db")
        insert_rows(db_path, "handle", [{"ROWID": 1, "id": "a@b.c", "person_centric_id": "P"}])

        with SQLiteSource(db_path) as source:
            rows = list(source.iter_handles())

        assert rows == [{"ROWID": 1, "id": "a@b.c", "person_centric_id": "P", "service": None}]

    def test_legacy_optional_columns(self, tmp_path):
        """Should read columns an older schema lacks as None."""
        db_path = create_chat_db(tmp_path / "chat.db", legacy=True)
        insert_rows(
            db_path,
            "message",
            [{"ROWID": 1, "guid": "G1", "text": "old", "handle_id": 1, "date": 500_000_000}],
        )

        with SQLiteSource(db_path) as source:
            (row,) = list(source.iter_messages())

        assert row["text"] == "old"
        assert row["associated_message_emoji"] is None
        assert row["message_summary_info"] is None
        assert row["thread_originator_guid"] is None
        assert row["group_title"] is None
        assert row["balloon_bundle_id"] is None
        assert set(row) == set(TABLE_COLUMNS["message"][0]) | set(TABLE_COLUMNS["message"][1])

    def test_ordered_by_rowid(self, tmp_path):
        """Should return rows in ROWID order."""
        db_path = create_chat_db(tmp_path / "chat.db")
        insert_rows(db_path, "handle", [{"ROWID": i, "id": str(i)} for i in (5, 2, 9)])

        with SQLiteSource(db_path) as source:
            assert [row["ROWID"] for row in source.iter_handles()] == [2, 5, 9]

    def test_missing_table(self, tmp_path):
        """Should raise SourceReadFailure naming the missing table."""
        schema = MODERN_SCHEMA.replace("CREATE TABLE IF NOT EXISTS chat_handle_join", "CREATE TABLE renamed")
        db_path = create_minimal_sqlite_db(tmp_path / "chat.db", schema)

        with SQLiteSource(db_path) as source:
            with pytest.raises(SourceReadFailure) as exc_info:
                list(source.iter_participants())

        assert exc_info.value.table == "chat_handle_join"

    def test_missing_required_column(self, tmp_path):
        """Should raise SourceReadFailure when a required column is absent."""
        db_path = create_minimal_sqlite_db(
            tmp_path / "chat.db", "CREATE TABLE handle (ROWID INTEGER PRIMARY KEY, service TEXT);"
        )

        with SQLiteSource(db_path) as source:
            with pytest.raises(SourceReadFailure, match="missing required columns"):
                list(source.iter_handles())


@pytest.mark.integration
class TestStatistics:
    """Tests for table counts and database size."""

    def test_table_row_counts(self, sample_export):
        """Should count rows in every table read."""
        with SQLiteSource(sample_export / "chat.db") as source:
            counts = source.table_row_counts()

        assert set(counts) == set(TABLE_COLUMNS)
        assert counts["message"] == 10
        assert counts["handle"] == 6
        assert counts["chat"] == 5
        assert counts["attachment"] == 3
        assert counts["chat_message_join"] == 11

    def test_database_size(self, sample_export):
        """Should report the file size."""
        db_path = sample_export / "chat.db"
        with SQLiteSource(db_path) as source:
            assert source.database_size() == db_path.stat().st_size

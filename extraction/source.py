#!/usr/bin/env python3
"""
Read-only SQLite source for chat.db / sms.db.

Column sets differ between OS releases (person_centric_id, edit history,
reaction emoji and app balloons only exist on newer databases), so optional
columns that a table lacks are selected as NULL. Missing tables or required columns make
the source unusable and raise SourceReadFailure.

The database is opened with mode=ro; nothing is ever written to it.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from common.errors import SourceReadFailure

logger = logging.getLogger(__name__)

# Logical table -> (required columns, optional columns)
TABLE_COLUMNS: Dict[str, Sequence[Sequence[str]]] = {
    "message": (
        ("ROWID", "guid"),
        (
            "text",
            "attributedBody",
            "handle_id",
            "date",
            "is_from_me",
            "service",
            "associated_message_guid",
            "associated_message_type",
            "associated_message_emoji",
            "thread_originator_guid",
            "thread_originator_part",
            "date_edited",
            "message_summary_info",
            "item_type",
            "group_title",
            "group_action_type",
            "balloon_bundle_id",
        ),
    ),
    "handle": (("ROWID", "id"), ("person_centric_id", "service")),
    "chat": (("ROWID",), ("guid", "chat_identifier", "display_name", "service_name", "style")),
    "chat_message_join": (("chat_id", "message_id"), ()),
    "chat_handle_join": (("chat_id", "handle_id"), ()),
    "attachment": (("ROWID",), ("guid", "filename", "total_bytes", "mime_type", "transfer_name")),
    "message_attachment_join": (("message_id", "attachment_id"), ()),
}

ORDER_BY = {
    "message": "ROWID",
    "handle": "ROWID",
    "chat": "ROWID",
    "attachment": "ROWID",
    "chat_message_join": "chat_id, message_id",
    "chat_handle_join": "chat_id, handle_id",
    "message_attachment_join": "message_id, attachment_id",
}

Row = Dict[str, Any]


class SQLiteSource:
    """Row iterators over a messaging database.

    Args:
        db_path: Path to chat.db or sms.db

    Example:
        >>> with SQLiteSource("chat.db") as source:  # doctest: +SKIP
        ...     handles = list(source.iter_handles())
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._columns: Dict[str, List[str]] = {}

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    def open(self) -> "SQLiteSource":
        if self._conn is not None:
            return self
        if not self.db_path.is_file():
            raise SourceReadFailure(f"database not found: {self.db_path}")

        uri = f"{self.db_path.resolve().as_uri()}?mode=ro"
        try:
            conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            # Fails here rather than on first query if the file is not a database
            conn.execute("SELECT name FROM sqlite_master LIMIT 1").fetchall()
        except sqlite3.Error as e:
            raise SourceReadFailure(str(e)) from e

        self._conn = conn
        logger.info(f"Opened {self.db_path} read-only")
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "SQLiteSource":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.open()
        return self._conn

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def _table_columns(self, table: str) -> List[str]:
        if table not in self._columns:
            try:
                rows = self.conn.execute(f"PRAGMA table_info({table})").fetchall()
            except sqlite3.Error as e:
                raise SourceReadFailure(str(e), table) from e
            if not rows:
                raise SourceReadFailure("table does not exist", table)
            self._columns[table] = [row["name"] for row in rows]
        return self._columns[table]

    def _select_sql(self, table: str) -> str:
        required, optional = TABLE_COLUMNS[table]
        available = {name.lower() for name in self._table_columns(table)}

        missing = [name for name in required if name.lower() not in available]
        if missing:
            raise SourceReadFailure(f"missing required columns {missing}", table)

        expressions = list(required)
        for name in optional:
            if name.lower() in available:
                expressions.append(name)
            else:
                logger.debug(f"Column {table}.{name} not present; reading as NULL")
                expressions.append(f"NULL AS {name}")

        return f"SELECT {', '.join(expressions)} FROM {table} ORDER BY {ORDER_BY[table]}"

    def _iter_table(self, table: str) -> Iterator[Row]:
        sql = self._select_sql(table)
        try:
            cursor = self.conn.execute(sql)
            for row in cursor:
                yield dict(row)
        except sqlite3.Error as e:
            raise SourceReadFailure(str(e), table) from e

    # -------------------------------------------------------------------------
    # Row iterators
    # -------------------------------------------------------------------------

    def iter_messages(self) -> Iterator[Row]:
        return self._iter_table("message")

    def iter_handles(self) -> Iterator[Row]:
        return self._iter_table("handle")

    def iter_conversations(self) -> Iterator[Row]:
        return self._iter_table("chat")

    def iter_memberships(self) -> Iterator[Row]:
        return self._iter_table("chat_message_join")

    def iter_participants(self) -> Iterator[Row]:
        return self._iter_table("chat_handle_join")

    def iter_attachments(self) -> Iterator[Row]:
        return self._iter_table("attachment")

    def iter_message_attachments(self) -> Iterator[Row]:
        return self._iter_table("message_attachment_join")

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def table_row_counts(self) -> Dict[str, int]:
        """Row count for each table this source reads."""
        counts = {}
        for table in TABLE_COLUMNS:
            self._table_columns(table)
            try:
                counts[table] = self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            except sqlite3.Error as e:
                raise SourceReadFailure(str(e), table) from e
        return counts

    def database_size(self) -> int:
        """Size of the database file in bytes."""
        try:
            return self.db_path.stat().st_size
        except OSError as e:
            raise SourceReadFailure(str(e)) from e

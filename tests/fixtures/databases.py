"""
Minimal chat.db schemas for testing.

MODERN_SCHEMA has every column the extraction reads. LEGACY_SCHEMA mirrors
an older database without reaction emoji, edit history, person_centric_id
or attachment sizes, so optional-column handling can be exercised.
"""

import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

MODERN_SCHEMA = """
CREATE TABLE IF NOT EXISTS message (
    ROWID INTEGER PRIMARY KEY,
    guid TEXT UNIQUE,
    text TEXT,
    attributedBody BLOB,
    handle_id INTEGER DEFAULT 0,
    date INTEGER,
    is_from_me INTEGER DEFAULT 0,
    service TEXT,
    associated_message_guid TEXT,
    associated_message_type INTEGER DEFAULT 0,
    associated_message_emoji TEXT,
    thread_originator_guid TEXT,
    thread_originator_part TEXT,
    date_edited INTEGER DEFAULT 0,
    message_summary_info BLOB,
    item_type INTEGER DEFAULT 0,
    group_title TEXT,
    group_action_type INTEGER DEFAULT 0,
    balloon_bundle_id TEXT,
    cache_has_attachments INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS handle (
    ROWID INTEGER PRIMARY KEY,
    id TEXT,
    service TEXT,
    person_centric_id TEXT
);

CREATE TABLE IF NOT EXISTS chat (
    ROWID INTEGER PRIMARY KEY,
    guid TEXT UNIQUE,
    chat_identifier TEXT,
    display_name TEXT,
    service_name TEXT,
    style INTEGER
);

CREATE TABLE IF NOT EXISTS chat_message_join (
    chat_id INTEGER,
    message_id INTEGER,
    PRIMARY KEY (chat_id, message_id)
);

CREATE TABLE IF NOT EXISTS chat_handle_join (
    chat_id INTEGER,
    handle_id INTEGER,
    PRIMARY KEY (chat_id, handle_id)
);

CREATE TABLE IF NOT EXISTS attachment (
    ROWID INTEGER PRIMARY KEY,
    guid TEXT UNIQUE,
    filename TEXT,
    total_bytes INTEGER DEFAULT 0,
    mime_type TEXT,
    transfer_name TEXT
);

CREATE TABLE IF NOT EXISTS message_attachment_join (
    message_id INTEGER,
    attachment_id INTEGER,
    PRIMARY KEY (message_id, attachment_id)
);
"""

LEGACY_SCHEMA = """
CREATE TABLE IF NOT EXISTS message (
    ROWID INTEGER PRIMARY KEY,
    guid TEXT UNIQUE,
    text TEXT,
    attributedBody BLOB,
    handle_id INTEGER DEFAULT 0,
    date INTEGER,
    is_from_me INTEGER DEFAULT 0,
    service TEXT
);

CREATE TABLE IF NOT EXISTS handle (
    ROWID INTEGER PRIMARY KEY,
    id TEXT,
    service TEXT
);

CREATE TABLE IF NOT EXISTS chat (
    ROWID INTEGER PRIMARY KEY,
    guid TEXT UNIQUE,
    chat_identifier TEXT,
    display_name TEXT
);

CREATE TABLE IF NOT EXISTS chat_message_join (
    chat_id INTEGER,
    message_id INTEGER
);

CREATE TABLE IF NOT EXISTS chat_handle_join (
    chat_id INTEGER,
    handle_id INTEGER
);

CREATE TABLE IF NOT EXISTS attachment (
    ROWID INTEGER PRIMARY KEY,
    guid TEXT,
    filename TEXT,
    mime_type TEXT,
    transfer_name TEXT
);

CREATE TABLE IF NOT EXISTS message_attachment_join (
    message_id INTEGER,
    attachment_id INTEGER
);
"""


def create_minimal_sqlite_db(
    db_path: Path,
    schema: Optional[str] = None,
    data: Optional[list] = None
) -> Path:
    """Create a minimal valid SQLite database.

    Args:
        db_path: Path where to create the database
        schema: Optional SQL schema to execute
        data: Optional list of (sql, params) tuples to execute

    Returns:
        Path to the created database
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)

    if schema:
        conn.executescript(schema)

    if data:
        cursor = conn.cursor()
        for sql, params in data:
            cursor.execute(sql, params)

    conn.commit()
    conn.close()
    return db_path


def create_chat_db(db_path: Path, legacy: bool = False) -> Path:
    """Create an empty chat.db with the modern (or legacy) schema."""
    return create_minimal_sqlite_db(db_path, LEGACY_SCHEMA if legacy else MODERN_SCHEMA)


def insert_rows(db_path: Path, table: str, rows: Iterable[Dict[str, Any]]) -> None:
    """Insert rows given as column -> value dicts."""
    conn = sqlite3.connect(db_path)
    try:
        for row in rows:
            columns = ", ".join(row)
            placeholders = ", ".join("?" for _ in row)
            conn.execute(
                f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
        conn.commit()
    finally:
        conn.close()

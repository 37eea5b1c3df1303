"""SQLite connection and schema management for the shadow store."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from shadowmsg.config import Config, load_config

logger = logging.getLogger(__name__)

_SCHEMA_PATH = Path(__file__).parent / "schema.sql"

SYNCED_TABLES = ("handle", "message", "attachment", "message_attachment_join")


def _casefold(value: str | None) -> str | None:
    return value.casefold() if value is not None else None


def register_functions(conn: sqlite3.Connection) -> None:
    """Register Python SQL functions (Unicode-aware case folding for search)."""
    conn.create_function("casefold", 1, _casefold, deterministic=True)


def get_db(config: Config | None = None, db_path: str | Path | None = None) -> sqlite3.Connection:
    """Return a configured SQLite connection.

    Autocommit mode (transactions are explicit, see ShadowStore.transaction),
    WAL, and row_factory=sqlite3.Row for dict-like access.
    """
    if db_path is None:
        if config is None:
            config = load_config()
        config.storage.dir_path.mkdir(parents=True, exist_ok=True)
        db_path = config.storage.db_path

    conn = sqlite3.connect(str(db_path), timeout=10, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    register_functions(conn)
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    """Create all tables from schema.sql. Safe to call on an initialized store."""
    schema = _SCHEMA_PATH.read_text()
    conn.executescript(schema)


def is_initialized(db_path: str | Path) -> bool:
    """True when the shadow database exists and has the messages table."""
    if not Path(db_path).exists():
        return False
    try:
        conn = sqlite3.connect(str(db_path))
        try:
            row = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='messages'"
            ).fetchone()
        finally:
            conn.close()
    except sqlite3.Error:
        return False
    return row is not None


def migrate_db(conn: sqlite3.Connection) -> list[str]:
    """Bring a shadow database created by an older release up to the current schema.

    Missing columns are added in place; missing tables come from schema.sql.
    Returns a description of each column added.
    """
    migrations: list[str] = []

    # (table, column, declared type)
    expected_columns = [
        ("messages", "tokenized_text", "TEXT"),
        ("messages", "deleted_at", "TEXT"),
        ("messages", "has_attachments", "INTEGER NOT NULL DEFAULT 0"),
        ("push_state", "total_pushed", "INTEGER NOT NULL DEFAULT 0"),
    ]

    for table, column, col_type in expected_columns:
        existing = conn.execute(f"PRAGMA table_info({table})").fetchall()
        if not existing:
            continue
        existing_names = {row["name"] for row in existing}
        if column not in existing_names:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}")
            migrations.append(f"Added {table}.{column} ({col_type})")

    for action in migrations:
        logger.info("migration: %s", action)

    # Tables added after the first release
    init_db(conn)
    return migrations


def db_stats(conn: sqlite3.Connection) -> dict[str, int]:
    """Row count per shadow table, -1 where the table is missing."""
    tables = [
        "handles", "messages", "attachments", "message_attachments",
        "contacts", "sender_aliases", "sync_state", "push_state",
    ]
    stats = {}
    for table in tables:
        try:
            row = conn.execute(f"SELECT COUNT(*) as cnt FROM {table}").fetchone()
            stats[table] = row["cnt"]
        except sqlite3.OperationalError:
            stats[table] = -1
    return stats

"""Read-only access to the Messages source database (chat.db)."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Protocol, runtime_checkable

from shadowmsg.models import Attachment, Handle, MessageAttachmentLink, SourceMessage

logger = logging.getLogger(__name__)


class SourceUnavailableError(RuntimeError):
    """The source store could not be opened (missing, no permission, locked)."""


@runtime_checkable
class SourceReader(Protocol):
    """What the sync engine needs from a source store.

    Row readers return rows with cursor < key <= upper, ascending by key.
    """

    def max_key(self, table: str) -> int | None:
        """Highest ROWID currently in the table, or None if empty."""
        ...

    def handles(self, cursor: int, upper: int) -> list[Handle]:
        ...

    def messages(self, cursor: int, upper: int) -> list[SourceMessage]:
        ...

    def attachments(self, cursor: int, upper: int) -> list[Attachment]:
        ...

    def links(self, cursor: int, upper: int) -> list[MessageAttachmentLink]:
        ...

    def message_ids(self) -> list[int]:
        """Every message id currently in the source."""
        ...

    def close(self) -> None:
        ...


class SqliteSourceReader:
    """SourceReader over a read-only connection to chat.db."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def max_key(self, table: str) -> int | None:
        row = self.conn.execute(f"SELECT MAX(ROWID) AS max_key FROM {table}").fetchone()
        return row["max_key"]

    def handles(self, cursor: int, upper: int) -> list[Handle]:
        rows = self.conn.execute(
            """SELECT ROWID, id, service FROM handle
               WHERE ROWID > ? AND ROWID <= ? ORDER BY ROWID""",
            (cursor, upper),
        ).fetchall()
        return [Handle(handle_id=r["ROWID"], address=r["id"] or "", service=r["service"]) for r in rows]

    def messages(self, cursor: int, upper: int) -> list[SourceMessage]:
        rows = self.conn.execute(
            """SELECT ROWID, guid, handle_id, date, is_from_me, text,
                      attributedBody, cache_has_attachments
               FROM message
               WHERE ROWID > ? AND ROWID <= ? ORDER BY ROWID""",
            (cursor, upper),
        ).fetchall()
        return [
            SourceMessage(
                message_id=r["ROWID"],
                guid=r["guid"],
                handle_id=r["handle_id"],
                date=r["date"] or 0,
                is_from_me=bool(r["is_from_me"]),
                text=r["text"],
                attributed_body=r["attributedBody"],
                has_attachments=bool(r["cache_has_attachments"]),
            )
            for r in rows
        ]

    def attachments(self, cursor: int, upper: int) -> list[Attachment]:
        rows = self.conn.execute(
            """SELECT ROWID, guid, filename, mime_type, total_bytes FROM attachment
               WHERE ROWID > ? AND ROWID <= ? ORDER BY ROWID""",
            (cursor, upper),
        ).fetchall()
        return [
            Attachment(r["ROWID"], r["guid"], r["filename"], r["mime_type"], r["total_bytes"])
            for r in rows
        ]

    def links(self, cursor: int, upper: int) -> list[MessageAttachmentLink]:
        rows = self.conn.execute(
            """SELECT message_id, attachment_id FROM message_attachment_join
               WHERE ROWID > ? AND ROWID <= ? ORDER BY ROWID""",
            (cursor, upper),
        ).fetchall()
        return [MessageAttachmentLink(r["message_id"], r["attachment_id"]) for r in rows]

    def message_ids(self) -> list[int]:
        return [r[0] for r in self.conn.execute("SELECT ROWID FROM message")]

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> SqliteSourceReader:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def open_readonly(path: str | Path, busy_timeout_ms: int = 2500) -> sqlite3.Connection:
    """Open an existing SQLite file read-only with a bounded lock wait."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Database not found: {path}")
    conn = sqlite3.connect(
        f"{path.resolve().as_uri()}?mode=ro",
        uri=True,
        timeout=busy_timeout_ms / 1000,
    )
    conn.row_factory = sqlite3.Row
    conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
    return conn


def open_source(path: str | Path, busy_timeout_ms: int = 2500) -> SqliteSourceReader:
    """Open chat.db for reading. Raises SourceUnavailableError on any failure."""
    try:
        conn = open_readonly(path, busy_timeout_ms)
        # Touch the schema so permission and corruption errors surface here.
        conn.execute("SELECT 1 FROM message LIMIT 1").fetchall()
    except (OSError, sqlite3.Error) as e:
        raise SourceUnavailableError(f"Cannot open Messages database at {path}: {e}") from e
    logger.debug("opened source %s", path)
    return SqliteSourceReader(conn)

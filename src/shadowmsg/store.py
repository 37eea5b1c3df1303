"""Shadow store: typed reads/writes, transactions and watermarks."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterable, Iterator

from shadowmsg.database import SYNCED_TABLES, register_functions
from shadowmsg.models import (
    Attachment,
    Contact,
    Handle,
    Message,
    MessageAttachmentLink,
    MessageView,
    PushWatermark,
    SyncWatermark,
)

logger = logging.getLogger(__name__)

# Joins shared by every read that needs a resolved sender.
# Display name precedence: alias > non-blank contact name > organization > address.
MESSAGE_VIEW_SELECT = """
    SELECT
        m.message_id, m.guid, m.handle_id, m.date, m.is_from_me,
        m.extracted_text, m.has_attachments,
        h.address AS sender_address,
        COALESCE(sa.alias, NULLIF(TRIM(c.name), ''), c.organization, h.address) AS sender_name,
        h.service
    FROM messages m
    LEFT JOIN handles h ON m.handle_id = h.handle_id
    LEFT JOIN contacts c ON h.address = c.phone_normalized
    LEFT JOIN sender_aliases sa ON h.address = sa.phone_normalized
"""

MESSAGE_VIEW_FROM = """
    FROM messages m
    LEFT JOIN handles h ON m.handle_id = h.handle_id
    LEFT JOIN contacts c ON h.address = c.phone_normalized
    LEFT JOIN sender_aliases sa ON h.address = sa.phone_normalized
"""

FTS_TABLES = ("messages_fts_trigram", "messages_fts_char")


def row_to_view(row: sqlite3.Row) -> MessageView:
    return MessageView(
        message_id=row["message_id"],
        date=row["date"] or 0,
        is_from_me=bool(row["is_from_me"]),
        extracted_text=row["extracted_text"],
        has_attachments=bool(row["has_attachments"]),
        guid=row["guid"],
        handle_id=row["handle_id"],
        sender_address=row["sender_address"],
        sender_name=row["sender_name"],
        service=row["service"],
    )


class ShadowStore:
    """Owns a shadow DB connection; every component is handed one of these."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        register_functions(conn)

    # --- Transactions ---

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """All-or-nothing scope: COMMIT on success, ROLLBACK on any exception."""
        self.conn.execute("BEGIN")
        try:
            yield self.conn
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        else:
            self.conn.execute("COMMIT")

    # --- Upserts (replace on primary-key conflict) ---

    def upsert_handles(self, handles: Iterable[Handle]) -> int:
        cursor = self.conn.executemany(
            "INSERT OR REPLACE INTO handles (handle_id, address, service) VALUES (?, ?, ?)",
            [(h.handle_id, h.address, h.service) for h in handles],
        )
        return max(cursor.rowcount, 0)

    def upsert_messages(self, messages: Iterable[Message]) -> int:
        cursor = self.conn.executemany(
            """INSERT OR REPLACE INTO messages
               (message_id, guid, handle_id, date, is_from_me, raw_text,
                extracted_text, tokenized_text, has_attachments, deleted_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    m.message_id, m.guid, m.handle_id, m.date, int(m.is_from_me),
                    m.raw_text, m.extracted_text, m.tokenized_text,
                    int(m.has_attachments), m.deleted_at,
                )
                for m in messages
            ],
        )
        return max(cursor.rowcount, 0)

    def upsert_attachments(self, attachments: Iterable[Attachment]) -> int:
        cursor = self.conn.executemany(
            """INSERT OR REPLACE INTO attachments
               (attachment_id, guid, filename, mime_type, total_bytes)
               VALUES (?, ?, ?, ?, ?)""",
            [(a.attachment_id, a.guid, a.filename, a.mime_type, a.total_bytes) for a in attachments],
        )
        return max(cursor.rowcount, 0)

    def upsert_links(self, links: Iterable[MessageAttachmentLink]) -> int:
        cursor = self.conn.executemany(
            "INSERT OR REPLACE INTO message_attachments (message_id, attachment_id) VALUES (?, ?)",
            [(link.message_id, link.attachment_id) for link in links],
        )
        return max(cursor.rowcount, 0)

    def replace_contacts(self, contacts: Iterable[Contact]) -> int:
        """Clear the contacts table and insert the given rows."""
        self.conn.execute("DELETE FROM contacts")
        count = 0
        for contact in contacts:
            self.conn.execute(
                """INSERT OR REPLACE INTO contacts
                   (phone_normalized, name, organization, phone_original)
                   VALUES (?, ?, ?, ?)""",
                (contact.phone_normalized, contact.name, contact.organization,
                 contact.phone_original),
            )
            count += 1
        return count

    def rebuild_fts(self) -> None:
        """Re-read both external-content FTS indexes from the messages table."""
        for table in FTS_TABLES:
            self.conn.execute(f"INSERT INTO {table}({table}) VALUES('rebuild')")

    # --- Sync watermarks ---

    def get_sync_watermark(self, table_name: str) -> SyncWatermark:
        row = self.conn.execute(
            "SELECT table_name, last_rowid, last_sync_at FROM sync_state WHERE table_name = ?",
            (table_name,),
        ).fetchone()
        if row is None:
            return SyncWatermark(table_name=table_name)
        return SyncWatermark(row["table_name"], row["last_rowid"], row["last_sync_at"])

    def list_sync_watermarks(self) -> list[SyncWatermark]:
        rows = self.conn.execute(
            "SELECT table_name, last_rowid, last_sync_at FROM sync_state ORDER BY table_name"
        ).fetchall()
        return [SyncWatermark(r["table_name"], r["last_rowid"], r["last_sync_at"]) for r in rows]

    def advance_sync_watermark(self, table_name: str, rowid: int) -> None:
        """Move a table's cursor forward to rowid; never moves it backward."""
        self.conn.execute(
            """INSERT INTO sync_state (table_name, last_rowid, last_sync_at)
               VALUES (?, ?, CURRENT_TIMESTAMP)
               ON CONFLICT(table_name) DO UPDATE SET
                   last_rowid = MAX(sync_state.last_rowid, excluded.last_rowid),
                   last_sync_at = excluded.last_sync_at""",
            (table_name, rowid),
        )

    def reset_sync_watermarks(self) -> None:
        for table in SYNCED_TABLES:
            self.conn.execute(
                """INSERT INTO sync_state (table_name, last_rowid, last_sync_at)
                   VALUES (?, 0, NULL)
                   ON CONFLICT(table_name) DO UPDATE SET last_rowid = 0, last_sync_at = NULL""",
                (table,),
            )

    # --- Push watermarks ---

    def get_push_watermark(self, endpoint: str) -> PushWatermark:
        row = self.conn.execute(
            """SELECT endpoint, last_pushed_rowid, last_push_at, total_pushed
               FROM push_state WHERE endpoint = ?""",
            (endpoint,),
        ).fetchone()
        if row is None:
            return PushWatermark(endpoint=endpoint)
        return PushWatermark(
            row["endpoint"], row["last_pushed_rowid"], row["last_push_at"], row["total_pushed"]
        )

    def record_push(self, endpoint: str, last_rowid: int, pushed: int) -> None:
        """Persist a delivered batch: advance the cursor and add to the running total."""
        self.conn.execute(
            """INSERT INTO push_state (endpoint, last_pushed_rowid, last_push_at, total_pushed)
               VALUES (?, ?, CURRENT_TIMESTAMP, ?)
               ON CONFLICT(endpoint) DO UPDATE SET
                   last_pushed_rowid = MAX(push_state.last_pushed_rowid, excluded.last_pushed_rowid),
                   last_push_at = excluded.last_push_at,
                   total_pushed = push_state.total_pushed + excluded.total_pushed""",
            (endpoint, last_rowid, pushed),
        )

    def reset_push_watermark(self, endpoint: str) -> None:
        self.conn.execute(
            """INSERT INTO push_state (endpoint, last_pushed_rowid, total_pushed)
               VALUES (?, 0, 0)
               ON CONFLICT(endpoint) DO UPDATE SET last_pushed_rowid = 0, total_pushed = 0""",
            (endpoint,),
        )

    # --- Reads ---

    def fetch_messages_after(self, after_rowid: int, limit: int) -> list[MessageView]:
        """Non-deleted messages with id > after_rowid, ascending by id."""
        rows = self.conn.execute(
            MESSAGE_VIEW_SELECT
            + """ WHERE m.deleted_at IS NULL AND m.message_id > ?
                  ORDER BY m.message_id ASC LIMIT ?""",
            (after_rowid, limit),
        ).fetchall()
        return [row_to_view(r) for r in rows]

    def count_pending(self, after_rowid: int) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) AS cnt FROM messages WHERE deleted_at IS NULL AND message_id > ?",
            (after_rowid,),
        ).fetchone()
        return row["cnt"]

    def get_message(self, message_id: int) -> Message | None:
        row = self.conn.execute(
            "SELECT * FROM messages WHERE message_id = ?", (message_id,)
        ).fetchone()
        if row is None:
            return None
        return Message(
            message_id=row["message_id"],
            guid=row["guid"],
            handle_id=row["handle_id"],
            date=row["date"],
            is_from_me=bool(row["is_from_me"]),
            raw_text=row["raw_text"],
            extracted_text=row["extracted_text"],
            tokenized_text=row["tokenized_text"],
            has_attachments=bool(row["has_attachments"]),
            deleted_at=row["deleted_at"],
        )

    def attachments_for(self, message_id: int) -> list[Attachment]:
        rows = self.conn.execute(
            """SELECT a.attachment_id, a.guid, a.filename, a.mime_type, a.total_bytes
               FROM message_attachments ma
               JOIN attachments a ON a.attachment_id = ma.attachment_id
               WHERE ma.message_id = ?
               ORDER BY a.attachment_id""",
            (message_id,),
        ).fetchall()
        return [
            Attachment(r["attachment_id"], r["guid"], r["filename"], r["mime_type"], r["total_bytes"])
            for r in rows
        ]

    # --- Maintenance ---

    def soft_delete_missing(self, source_ids: Iterable[int]) -> int:
        """Mark live shadow messages whose ids are absent from source_ids as deleted."""
        self.conn.execute("CREATE TEMP TABLE IF NOT EXISTS source_message_ids (id INTEGER PRIMARY KEY)")
        self.conn.execute("DELETE FROM source_message_ids")
        self.conn.executemany(
            "INSERT OR IGNORE INTO source_message_ids (id) VALUES (?)",
            ((i,) for i in source_ids),
        )
        cursor = self.conn.execute(
            """UPDATE messages SET deleted_at = CURRENT_TIMESTAMP
               WHERE deleted_at IS NULL
                 AND message_id NOT IN (SELECT id FROM source_message_ids)"""
        )
        self.conn.execute("DELETE FROM source_message_ids")
        return cursor.rowcount

    def clear_synced_data(self) -> None:
        """Drop everything copied from the source. Aliases and push state survive."""
        for table in ("messages", "handles", "attachments", "message_attachments", "contacts"):
            self.conn.execute(f"DELETE FROM {table}")
        self.reset_sync_watermarks()
        self.rebuild_fts()

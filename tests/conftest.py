"""Shared test fixtures."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import pytest

from shadowmsg.database import get_db, init_db
from shadowmsg.dates import to_source_timestamp
from shadowmsg.models import Handle, Message
from shadowmsg.store import ShadowStore

# 2024-03-15 09:30 UTC in Messages nanoseconds
BASE_DATE = to_source_timestamp(datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc))
MINUTE = 60 * 1_000_000_000


@pytest.fixture
def store():
    """In-memory shadow store with schema initialized."""
    conn = get_db(db_path=":memory:")
    init_db(conn)
    yield ShadowStore(conn)
    conn.close()


def insert_message(
    store: ShadowStore,
    message_id: int,
    text: str | None,
    address: str = "+821012345678",
    handle_id: int = 1,
    date: int | None = None,
    is_from_me: bool = False,
    service: str | None = "iMessage",
) -> None:
    """Insert a handle (if needed) and a decoded message into the shadow store."""
    store.upsert_handles([Handle(handle_id=handle_id, address=address, service=service)])
    store.upsert_messages([Message(
        message_id=message_id,
        guid=f"guid-{message_id}",
        handle_id=handle_id,
        date=BASE_DATE + message_id * MINUTE if date is None else date,
        is_from_me=is_from_me,
        raw_text=text,
        extracted_text=text,
        tokenized_text=" ".join(text) if text else None,
    )])


# --- Source databases on disk ---

SOURCE_SCHEMA = """
CREATE TABLE handle (ROWID INTEGER PRIMARY KEY AUTOINCREMENT, id TEXT NOT NULL, service TEXT);
CREATE TABLE message (
    ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
    guid TEXT,
    handle_id INTEGER DEFAULT 0,
    date INTEGER,
    is_from_me INTEGER DEFAULT 0,
    text TEXT,
    attributedBody BLOB,
    cache_has_attachments INTEGER DEFAULT 0
);
CREATE TABLE attachment (
    ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
    guid TEXT,
    filename TEXT,
    mime_type TEXT,
    total_bytes INTEGER
);
CREATE TABLE message_attachment_join (message_id INTEGER, attachment_id INTEGER);
"""


class SourceDB:
    """A writable stand-in for chat.db."""

    def __init__(self, path: Path):
        self.path = path
        self.conn = sqlite3.connect(str(path), isolation_level=None)
        self.conn.executescript(SOURCE_SCHEMA)

    def add_handle(self, rowid: int, address: str, service: str = "iMessage") -> None:
        self.conn.execute(
            "INSERT INTO handle (ROWID, id, service) VALUES (?, ?, ?)", (rowid, address, service)
        )

    def add_message(
        self,
        rowid: int,
        text: str | None = None,
        handle_id: int = 1,
        blob: bytes | None = None,
        is_from_me: bool = False,
        date: int | None = None,
        has_attachments: bool = False,
    ) -> None:
        self.conn.execute(
            """INSERT INTO message
               (ROWID, guid, handle_id, date, is_from_me, text, attributedBody, cache_has_attachments)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                rowid, f"guid-{rowid}", handle_id,
                BASE_DATE + rowid * MINUTE if date is None else date,
                int(is_from_me), text, blob, int(has_attachments),
            ),
        )

    def add_attachment(self, rowid: int, filename: str, mime_type: str = "image/jpeg") -> None:
        self.conn.execute(
            "INSERT INTO attachment (ROWID, guid, filename, mime_type, total_bytes) VALUES (?, ?, ?, ?, ?)",
            (rowid, f"att-{rowid}", filename, mime_type, 1024),
        )

    def add_link(self, message_id: int, attachment_id: int) -> None:
        self.conn.execute(
            "INSERT INTO message_attachment_join (message_id, attachment_id) VALUES (?, ?)",
            (message_id, attachment_id),
        )

    def delete_message(self, rowid: int) -> None:
        self.conn.execute("DELETE FROM message WHERE ROWID = ?", (rowid,))

    def close(self) -> None:
        self.conn.close()


@pytest.fixture
def source_db(tmp_path):
    """Empty chat.db-shaped database on disk."""
    db = SourceDB(tmp_path / "chat.db")
    yield db
    db.close()


ADDRESS_BOOK_SCHEMA = """
CREATE TABLE ZABCDRECORD (
    Z_PK INTEGER PRIMARY KEY,
    ZFIRSTNAME TEXT,
    ZLASTNAME TEXT,
    ZORGANIZATION TEXT
);
CREATE TABLE ZABCDPHONENUMBER (
    Z_PK INTEGER PRIMARY KEY,
    ZOWNER INTEGER,
    ZFULLNUMBER TEXT
);
"""


def create_address_book(sources_dir: Path, account: str, contacts: list[tuple]) -> Path:
    """Write one AddressBook database with (first, last, organization, phone) rows."""
    account_dir = sources_dir / account
    account_dir.mkdir(parents=True, exist_ok=True)
    path = account_dir / "AddressBook-v22.abcddb"
    conn = sqlite3.connect(str(path))
    conn.executescript(ADDRESS_BOOK_SCHEMA)
    for pk, (first, last, org, phone) in enumerate(contacts, 1):
        conn.execute(
            "INSERT INTO ZABCDRECORD (Z_PK, ZFIRSTNAME, ZLASTNAME, ZORGANIZATION) VALUES (?, ?, ?, ?)",
            (pk, first, last, org),
        )
        conn.execute(
            "INSERT INTO ZABCDPHONENUMBER (ZOWNER, ZFULLNUMBER) VALUES (?, ?)", (pk, phone)
        )
    conn.commit()
    conn.close()
    return path


# --- attributedBody blobs ---

BLOB_HEADER = (
    b"\x04\x0bstreamtyped\x81\xe8\x03\x84\x01@\x84\x84\x84"
    b"\x19NSMutableAttributedString\x00\x84\x84\x12NSAttributedString\x00"
    b"\x84\x84\x08NSObject\x00\x85\x92\x84\x84\x84\x08NSString\x01\x95\x84\x01+"
)
BLOB_TRAILER = (
    b"\x86\x84\x02iI\x01\x05\x92\x84\x84\x84\x0cNSDictionary\x00\x95\x84\x01i\x01"
    b"\x92\x84\x98\x98\x1d__kIMMessagePartAttributeName\x86\x92\x84\x84\x84\x08NSNumber\x00"
)


def make_blob(text: str, extended: bool | None = None) -> bytes:
    """Build a streamtyped attributedBody holding ``text``.

    Lengths below 0x80 use the single-byte form unless ``extended`` forces
    the escape byte + 2-byte little-endian form.
    """
    body = text.encode("utf-8")
    if extended is None:
        extended = len(body) >= 0x80
    if extended:
        prefix = b"\x81" + len(body).to_bytes(2, "little")
    else:
        prefix = bytes([len(body)])
    return BLOB_HEADER + prefix + body + BLOB_TRAILER

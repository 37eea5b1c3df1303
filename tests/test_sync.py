"""Tests for the sync engine against an on-disk source database."""

import sqlite3

import pytest

from shadowmsg.autosync import last_sync_at
from shadowmsg.database import db_stats
from shadowmsg.source.contacts import find_address_book_dbs, read_contacts
from shadowmsg.source.reader import SourceUnavailableError, open_source
from shadowmsg.source.sync import SyncEngine
from tests.conftest import create_address_book, make_blob


def _seed(source_db):
    source_db.add_handle(1, "+821012345678", "SMS")
    source_db.add_handle(2, "friend@example.com", "iMessage")
    source_db.add_message(1, text="안녕하세요 반갑습니다", handle_id=1)
    source_db.add_message(2, text="\ufffc", handle_id=2, blob=make_blob("Photo from the trip"), has_attachments=True)
    source_db.add_message(3, text=None, handle_id=1, blob=make_blob("결제 승인 12,000원"))
    source_db.add_message(4, text="Sounds good", handle_id=2, is_from_me=True)
    source_db.add_attachment(1, "~/Library/Messages/Attachments/IMG_0001.jpeg")
    source_db.add_link(2, 1)


def _sync(store, source_db, **kwargs):
    with open_source(source_db.path) as source:
        return SyncEngine(store, source, **kwargs).sync()


def test_sync_copies_and_decodes(store, source_db):
    """Messages are decoded from text or blob and tokenized per character."""
    _seed(source_db)

    result = _sync(store, source_db)

    assert (result.handles, result.messages, result.attachments, result.links) == (2, 4, 1, 1)
    texts = {
        r["message_id"]: (r["extracted_text"], r["tokenized_text"])
        for r in store.conn.execute("SELECT message_id, extracted_text, tokenized_text FROM messages")
    }
    assert texts[1][0] == "안녕하세요 반갑습니다"
    assert texts[2] == ("Photo from the trip", " ".join("Photo from the trip"))
    assert texts[3][0] == "결제 승인 12,000원"
    msg = store.get_message(2)
    assert msg.has_attachments is True
    assert msg.raw_text == "\ufffc"
    assert [a.attachment_id for a in store.attachments_for(2)] == [1]


def test_sync_message_without_text(store, source_db):
    """Undecodable messages are stored with no extracted text."""
    source_db.add_handle(1, "+821012345678")
    source_db.add_message(1, text=None, blob=b"\x00" * 10)

    _sync(store, source_db)

    msg = store.get_message(1)
    assert msg.extracted_text is None
    assert msg.tokenized_text is None


def test_sync_is_idempotent(store, source_db):
    """Re-syncing an unchanged source changes no watermark or row count."""
    _seed(source_db)
    _sync(store, source_db)
    watermarks = [(w.table_name, w.last_rowid) for w in store.list_sync_watermarks()]
    counts = db_stats(store.conn)

    for _ in range(3):
        result = _sync(store, source_db)
        assert (result.handles, result.messages, result.attachments, result.links) == (0, 0, 0, 0)

    assert [(w.table_name, w.last_rowid) for w in store.list_sync_watermarks()] == watermarks
    assert db_stats(store.conn) == counts


def test_watermark_is_source_max(store, source_db):
    """Watermarks land on the source's highest key, even with sparse ids."""
    source_db.add_handle(3, "+821011112222")
    source_db.add_message(10, text="first", handle_id=3)
    source_db.add_message(25, text="second", handle_id=3)
    source_db.add_message(40, text="third", handle_id=3)
    source_db.add_attachment(7, "a.jpg")
    source_db.add_link(40, 7)

    _sync(store, source_db)

    marks = {w.table_name: w.last_rowid for w in store.list_sync_watermarks()}
    assert marks == {"handle": 3, "message": 40, "attachment": 7, "message_attachment_join": 1}


def test_incremental_sync_pulls_only_new_rows(store, source_db):
    _seed(source_db)
    _sync(store, source_db)

    source_db.add_message(5, text="new one", handle_id=1)
    result = _sync(store, source_db)

    assert result.messages == 1
    assert result.handles == 0
    assert store.get_sync_watermark("message").last_rowid == 5


def test_sync_updates_fts(store, source_db):
    _seed(source_db)
    _sync(store, source_db)

    rows = store.conn.execute(
        "SELECT rowid FROM messages_fts_trigram WHERE messages_fts_trigram MATCH ?", ('"the trip"',)
    ).fetchall()
    assert [r[0] for r in rows] == [2]


class _FailingSource:
    """Delegates to a real reader but fails while reading attachments."""

    def __init__(self, inner):
        self.inner = inner

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def attachments(self, cursor, upper):
        raise sqlite3.OperationalError("database is locked")


def test_failed_sync_rolls_back(store, source_db):
    """A failure mid-transfer leaves no rows and no watermark movement."""
    _seed(source_db)

    with open_source(source_db.path) as source:
        engine = SyncEngine(store, _FailingSource(source))
        with pytest.raises(sqlite3.OperationalError):
            engine.sync()

    assert store.conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0] == 0
    assert store.conn.execute("SELECT COUNT(*) FROM handles").fetchone()[0] == 0
    assert all(w.last_rowid == 0 for w in store.list_sync_watermarks())


def test_open_source_missing(tmp_path):
    with pytest.raises(SourceUnavailableError) as exc:
        open_source(tmp_path / "missing.db")
    assert isinstance(exc.value.__cause__, FileNotFoundError)


def test_open_source_is_read_only(source_db):
    with open_source(source_db.path) as source:
        with pytest.raises(sqlite3.OperationalError):
            source.conn.execute("DELETE FROM message")


def test_contacts_imported_and_normalized(store, source_db, tmp_path):
    _seed(source_db)
    sources = tmp_path / "Sources"
    create_address_book(sources, "A1", [
        ("Minji", "Kim", None, "010-1234-5678"),
        (None, None, "Acme Bank", "+82 2-123-4567"),
    ])
    create_address_book(sources, "B2", [("John", "Doe", None, "+1 (415) 555-0100")])

    result = _sync(store, source_db, contact_paths=find_address_book_dbs(sources))

    assert result.contacts == 3
    rows = {
        r["phone_normalized"]: (r["name"], r["organization"])
        for r in store.conn.execute("SELECT * FROM contacts")
    }
    assert rows["+821012345678"] == ("Minji Kim", None)
    assert rows["+8221234567"] == ("", "Acme Bank")
    assert rows["+14155550100"] == ("John Doe", None)


def test_contacts_replaced_each_sync(store, source_db, tmp_path):
    sources = tmp_path / "Sources"
    path = create_address_book(sources, "A1", [("Old", "Name", None, "010-0000-0001")])
    _sync(store, source_db, contact_paths=[path])

    path.unlink()
    create_address_book(sources, "A1", [("New", "Name", None, "010-0000-0002")])
    _sync(store, source_db, contact_paths=[path])

    names = [r[0] for r in store.conn.execute("SELECT name FROM contacts")]
    assert names == ["New Name"]


def test_unreadable_contact_source_skipped(store, source_db, tmp_path):
    """One broken address book does not stop the others or the message sync."""
    _seed(source_db)
    sources = tmp_path / "Sources"
    good = create_address_book(sources, "good", [("Minji", "Kim", None, "010-1234-5678")])
    broken = sources / "broken" / "AddressBook-v22.abcddb"
    broken.parent.mkdir(parents=True)
    broken.write_bytes(b"this is not a database" * 10)

    with open_source(source_db.path) as source:
        engine = SyncEngine(store, source, contact_paths=[broken, good])
        result = engine.sync()
        report = engine.sync_contacts()

    assert result.messages == 4
    assert result.contacts == 1
    assert report.failed_sources == [str(broken)]
    assert report.imported == 1


def test_all_contact_sources_failing_keeps_contacts(store, source_db, tmp_path):
    sources = tmp_path / "Sources"
    path = create_address_book(sources, "A1", [("Minji", "Kim", None, "010-1234-5678")])
    _sync(store, source_db, contact_paths=[path])

    path.write_bytes(b"garbage" * 20)
    result = _sync(store, source_db, contact_paths=[path])

    assert result.contacts == 0
    assert store.conn.execute("SELECT COUNT(*) FROM contacts").fetchone()[0] == 1


def test_read_contacts(tmp_path):
    path = create_address_book(tmp_path, "acct", [("Jun", None, "Studio", "010-9999-0000")])
    contacts = read_contacts(path)
    assert [(c.name, c.organization, c.phone) for c in contacts] == [("Jun", "Studio", "010-9999-0000")]


def test_cleanup_soft_deletes_missing(store, source_db):
    """Messages gone from the source are soft-deleted, not removed."""
    _seed(source_db)
    _sync(store, source_db)
    source_db.delete_message(3)

    with open_source(source_db.path) as source:
        result = SyncEngine(store, source).sync(cleanup=True)

    assert result.cleanup.completed
    assert result.cleanup.deleted == 1
    assert store.get_message(3).deleted_at is not None
    assert store.get_message(1).deleted_at is None
    # Watermark still reflects what the source held before
    assert store.get_sync_watermark("message").last_rowid == 4


class _BrokenIds:
    def __init__(self, inner):
        self.inner = inner

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def message_ids(self):
        raise sqlite3.OperationalError("disk I/O error")


def test_cleanup_failure_is_reported_not_raised(store, source_db):
    """Cleanup errors leave the committed sync intact."""
    _seed(source_db)

    with open_source(source_db.path) as source:
        result = SyncEngine(store, _BrokenIds(source)).sync(cleanup=True)

    assert result.messages == 4
    assert result.cleanup.status == "skipped"
    assert "disk I/O error" in result.cleanup.error
    assert store.conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0] == 4


def test_sync_records_last_sync(store, source_db, tmp_path):
    state = tmp_path / "state.json"
    assert last_sync_at(state) is None

    _sync(store, source_db, state_path=state)

    assert last_sync_at(state) is not None


def test_no_cleanup_by_default(store, source_db):
    _seed(source_db)
    assert _sync(store, source_db).cleanup is None


def test_link_added_to_synced_message(store, source_db):
    """An attachment linked later to an already-synced message is still copied."""
    _seed(source_db)
    _sync(store, source_db)

    source_db.add_attachment(2, "~/Library/Messages/Attachments/IMG_0002.jpeg")
    source_db.add_link(2, 2)
    result = _sync(store, source_db)

    assert result.links == 1
    assert [a.attachment_id for a in store.attachments_for(2)] == [1, 2]
    assert store.get_sync_watermark("message_attachment_join").last_rowid == 2

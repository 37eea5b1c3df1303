"""Tests for the shadow store: transactions, upserts and watermarks."""

import pytest

from shadowmsg.models import Attachment, Contact, Handle, Message, MessageAttachmentLink
from tests.conftest import insert_message


def test_transaction_commits(store):
    with store.transaction():
        store.upsert_handles([Handle(1, "+821011112222", "SMS")])
    assert store.conn.execute("SELECT COUNT(*) FROM handles").fetchone()[0] == 1


def test_transaction_rolls_back_on_error(store):
    """Nothing written inside a failed transaction survives."""
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.upsert_handles([Handle(1, "+821011112222")])
            store.advance_sync_watermark("handle", 1)
            raise RuntimeError("boom")

    assert store.conn.execute("SELECT COUNT(*) FROM handles").fetchone()[0] == 0
    assert store.get_sync_watermark("handle").last_rowid == 0


def test_upsert_replaces_on_conflict(store):
    """Re-inserting a primary key replaces the row."""
    store.upsert_messages([Message(1, extracted_text="first")])
    store.upsert_messages([Message(1, extracted_text="second")])

    rows = store.conn.execute("SELECT extracted_text FROM messages").fetchall()
    assert [r[0] for r in rows] == ["second"]


def test_get_message_round_trip(store):
    store.upsert_messages([Message(
        message_id=5, guid="g5", handle_id=2, date=123, is_from_me=True,
        raw_text=None, extracted_text="hi", tokenized_text="h i", has_attachments=True,
    )])
    msg = store.get_message(5)
    assert msg.is_from_me is True
    assert msg.has_attachments is True
    assert msg.tokenized_text == "h i"
    assert store.get_message(6) is None


def test_attachments_for(store):
    store.upsert_attachments([Attachment(10, "a10", "~/photo.jpg", "image/jpeg", 2048)])
    store.upsert_links([MessageAttachmentLink(1, 10)])
    assert [a.filename for a in store.attachments_for(1)] == ["~/photo.jpg"]
    assert store.attachments_for(2) == []


def test_sync_watermark_never_decreases(store):
    store.advance_sync_watermark("message", 50)
    store.advance_sync_watermark("message", 20)
    wm = store.get_sync_watermark("message")
    assert wm.last_rowid == 50
    assert wm.last_sync_at is not None


def test_reset_sync_watermarks(store):
    store.advance_sync_watermark("message", 50)
    store.advance_sync_watermark("handle", 3)
    store.reset_sync_watermarks()
    assert all(w.last_rowid == 0 for w in store.list_sync_watermarks())


def test_push_watermark_defaults(store):
    wm = store.get_push_watermark("https://a.example")
    assert wm.last_pushed_rowid == 0
    assert wm.total_pushed == 0
    assert wm.last_push_at is None


def test_record_push_accumulates(store):
    store.record_push("https://a.example", 2, 2)
    store.record_push("https://a.example", 4, 2)
    wm = store.get_push_watermark("https://a.example")
    assert wm.last_pushed_rowid == 4
    assert wm.total_pushed == 4
    assert wm.last_push_at is not None


def test_reset_push_watermark_is_per_endpoint(store):
    store.record_push("https://a.example", 4, 4)
    store.record_push("https://b.example", 9, 9)

    store.reset_push_watermark("https://a.example")

    a = store.get_push_watermark("https://a.example")
    assert (a.last_pushed_rowid, a.total_pushed) == (0, 0)
    assert store.get_push_watermark("https://b.example").last_pushed_rowid == 9


def test_fetch_messages_after_skips_deleted(store):
    for i in range(1, 5):
        insert_message(store, i, f"message {i}")
    store.conn.execute("UPDATE messages SET deleted_at = CURRENT_TIMESTAMP WHERE message_id = 2")

    rows = store.fetch_messages_after(0, 10)
    assert [r.message_id for r in rows] == [1, 3, 4]
    assert [r.message_id for r in store.fetch_messages_after(1, 1)] == [3]
    assert store.count_pending(1) == 2


def test_display_name_precedence(store):
    """alias > contact name > organization > address."""
    insert_message(store, 1, "a", address="+821000000001", handle_id=1)
    insert_message(store, 2, "b", address="+821000000002", handle_id=2)
    insert_message(store, 3, "c", address="+821000000003", handle_id=3)
    insert_message(store, 4, "d", address="+821000000004", handle_id=4)
    store.replace_contacts([
        Contact("+821000000001", "Kim Minji", None, "010-0000-0001"),
        Contact("+821000000002", "Lee Jun", None, "010-0000-0002"),
        Contact("+821000000003", "  ", "Acme Bank", "010-0000-0003"),
    ])
    store.conn.execute(
        "INSERT INTO sender_aliases (phone_normalized, alias) VALUES ('+821000000001', 'Minji')"
    )

    names = {r.message_id: r.sender_name for r in store.fetch_messages_after(0, 10)}
    assert names == {1: "Minji", 2: "Lee Jun", 3: "Acme Bank", 4: "+821000000004"}


def test_replace_contacts_clears_previous(store):
    store.replace_contacts([Contact("+821000000001", "Old")])
    count = store.replace_contacts([Contact("+821000000002", "New")])
    rows = store.conn.execute("SELECT name FROM contacts").fetchall()
    assert count == 1
    assert [r[0] for r in rows] == ["New"]


def test_soft_delete_missing(store):
    for i in range(1, 5):
        insert_message(store, i, f"m{i}")

    deleted = store.soft_delete_missing([1, 3])

    assert deleted == 2
    live = [r.message_id for r in store.fetch_messages_after(0, 10)]
    assert live == [1, 3]
    # Already-deleted rows are not counted again
    assert store.soft_delete_missing([1, 3]) == 0


def test_rebuild_fts_indexes_text(store):
    insert_message(store, 1, "배송 완료 안내")
    insert_message(store, 2, "Payment received")
    store.rebuild_fts()

    trigram = store.conn.execute(
        "SELECT rowid FROM messages_fts_trigram WHERE messages_fts_trigram MATCH ?", ('"received"',)
    ).fetchall()
    assert [r[0] for r in trigram] == [2]

    char = store.conn.execute(
        "SELECT rowid FROM messages_fts_char WHERE messages_fts_char MATCH ?", ("배",)
    ).fetchall()
    assert [r[0] for r in char] == [1]


def test_clear_synced_data_keeps_aliases_and_push_state(store):
    insert_message(store, 1, "hello")
    store.replace_contacts([Contact("+821000000001", "Kim")])
    store.conn.execute(
        "INSERT INTO sender_aliases (phone_normalized, alias) VALUES ('+821000000001', 'K')"
    )
    store.record_push("https://a.example", 1, 1)
    store.advance_sync_watermark("message", 1)

    store.clear_synced_data()

    assert store.conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0] == 0
    assert store.conn.execute("SELECT COUNT(*) FROM contacts").fetchone()[0] == 0
    assert store.conn.execute("SELECT COUNT(*) FROM sender_aliases").fetchone()[0] == 1
    assert store.get_push_watermark("https://a.example").last_pushed_rowid == 1
    assert store.get_sync_watermark("message").last_rowid == 0

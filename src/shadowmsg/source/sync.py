"""Incremental, watermark-driven copy of the Messages database into the shadow store."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterable, Sequence

from shadowmsg.autosync import record_sync
from shadowmsg.models import CleanupResult, Contact, ContactImport, Message, SourceMessage, SyncResult
from shadowmsg.phone import DEFAULT_COUNTRY_CODE, normalize_phone
from shadowmsg.source.contacts import read_contacts
from shadowmsg.source.reader import SourceReader
from shadowmsg.store import ShadowStore
from shadowmsg.text.attributed import decode
from shadowmsg.text.syllable import to_syllables

logger = logging.getLogger(__name__)


def to_shadow_message(row: SourceMessage) -> Message:
    """Decode a source message row into its shadow form."""
    extracted = decode(row.text, row.attributed_body)
    return Message(
        message_id=row.message_id,
        guid=row.guid,
        handle_id=row.handle_id,
        date=row.date,
        is_from_me=row.is_from_me,
        raw_text=row.text,
        extracted_text=extracted,
        tokenized_text=to_syllables(extracted) if extracted else None,
        has_attachments=row.has_attachments,
    )


class SyncEngine:
    """Copies new source rows into the shadow store.

    The four linked tables (handle, message, attachment, link) move in one
    transaction. Contacts and cleanup run afterwards as separate passes, so
    their failures never undo committed message data.
    """

    def __init__(
        self,
        store: ShadowStore,
        source: SourceReader,
        contact_paths: Sequence[str | Path] = (),
        state_path: str | Path | None = None,
        country_code: str = DEFAULT_COUNTRY_CODE,
    ):
        self.store = store
        self.source = source
        self.contact_paths = list(contact_paths)
        self.state_path = state_path
        self.country_code = country_code

    def sync(self, cleanup: bool = False) -> SyncResult:
        """Run one sync pass. Returns per-table transfer counts."""
        result = SyncResult()
        upper_bounds: dict[str, int] = {}

        with self.store.transaction():
            result.handles = self._transfer(
                "handle", self.source.handles, self.store.upsert_handles, upper_bounds,
            )
            result.messages = self._transfer(
                "message",
                lambda cursor, upper: [to_shadow_message(r) for r in self.source.messages(cursor, upper)],
                self.store.upsert_messages,
                upper_bounds,
            )
            result.attachments = self._transfer(
                "attachment", self.source.attachments, self.store.upsert_attachments, upper_bounds,
            )
            result.links = self._transfer(
                "message_attachment_join", self.source.links, self.store.upsert_links, upper_bounds,
            )

            self.store.rebuild_fts()

            for table, upper in upper_bounds.items():
                self.store.advance_sync_watermark(table, upper)

        logger.info(
            "synced %d handles, %d messages, %d attachments, %d links",
            result.handles, result.messages, result.attachments, result.links,
        )

        result.contacts = self.sync_contacts().imported

        if cleanup:
            result.cleanup = self.cleanup()

        if self.state_path is not None:
            record_sync(self.state_path)

        return result

    def _transfer(
        self,
        table: str,
        fetch: Callable[[int, int], list],
        upsert: Callable[[Iterable], int],
        upper_bounds: dict[str, int],
    ) -> int:
        """Pull rows with cursor < key <= source max and upsert them.

        The source max is read before the rows so that the new watermark is
        the highest key the source held at sync time, even for sparse ids.
        """
        cursor = self.store.get_sync_watermark(table).last_rowid
        upper = self.source.max_key(table)
        if upper is None or upper <= cursor:
            logger.debug("%s: nothing new after %d", table, cursor)
            return 0

        rows = fetch(cursor, upper)
        upsert(rows)
        upper_bounds[table] = upper
        logger.debug("%s: %d rows in (%d, %d]", table, len(rows), cursor, upper)
        return len(rows)

    def sync_contacts(self) -> ContactImport:
        """Replace the contacts table from every readable address book.

        A source that cannot be read is logged and skipped. When no source
        could be read at all, the existing contacts are left in place.
        """
        result = ContactImport(sources=len(self.contact_paths))
        if not self.contact_paths:
            return result

        contacts: list[Contact] = []
        readable = 0
        for path in self.contact_paths:
            try:
                rows = read_contacts(path)
            except Exception:
                logger.warning("skipping unreadable contact source %s", path, exc_info=True)
                result.failed_sources.append(str(path))
                continue
            readable += 1
            for row in rows:
                normalized = normalize_phone(row.phone, self.country_code)
                if not normalized:
                    continue
                contacts.append(Contact(
                    phone_normalized=normalized,
                    name=row.name,
                    organization=row.organization,
                    phone_original=row.phone,
                ))

        if readable == 0:
            return result

        with self.store.transaction():
            result.imported = self.store.replace_contacts(contacts)
        logger.info("imported %d contacts from %d sources", result.imported, readable)
        return result

    def cleanup(self) -> CleanupResult:
        """Soft-delete shadow messages that no longer exist in the source.

        Advisory: a failure is logged and reported as a skipped result.
        """
        try:
            source_ids = self.source.message_ids()
            with self.store.transaction():
                deleted = self.store.soft_delete_missing(source_ids)
        except Exception as e:
            logger.warning("cleanup skipped: %s", e, exc_info=True)
            return CleanupResult(status="skipped", error=str(e))

        if deleted:
            logger.info("soft-deleted %d messages missing from source", deleted)
        return CleanupResult(status="completed", deleted=deleted)

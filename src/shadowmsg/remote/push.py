"""Batched, resumable push of shadow messages to a remote endpoint.

Delivery is at-least-once: each endpoint's watermark is persisted right
after its batch is acknowledged, so a failed call resumes from the last
acknowledged batch when retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from shadowmsg.dates import to_iso
from shadowmsg.models import MessageView, PushWatermark
from shadowmsg.remote.base import PushError, Transport
from shadowmsg.store import ShadowStore

logger = logging.getLogger(__name__)

DEFAULT_SERVICE = "SMS"


@dataclass
class PushEndpoint:
    url: str
    api_key: str = ""
    host: str = ""  # Host header override for reverse proxies

    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if self.host:
            headers["Host"] = self.host
        return headers


@dataclass
class BatchResult:
    batch: int
    sent: int
    imported: int
    skipped: int
    last_id: int


@dataclass
class PushResult:
    batches: int = 0
    imported: int = 0
    skipped: int = 0
    total: int = 0
    last_id: int = 0
    batch_results: list[BatchResult] = field(default_factory=list)


def build_payload(rows: list[MessageView]) -> dict:
    """Wire format for one batch."""
    return {
        "messages": [
            {
                "external_id": r.message_id,
                "sender": r.sender_address,
                "sender_name": r.sender_name,
                "body": r.extracted_text,
                "sent_at": to_iso(r.date),
                "service": r.service or DEFAULT_SERVICE,
                "is_from_me": r.is_from_me,
            }
            for r in rows
        ]
    }


class PushClient:
    """Pushes non-deleted shadow messages in ascending id order."""

    def __init__(self, store: ShadowStore, transport: Transport):
        self.store = store
        self.transport = transport

    def state(self, endpoint: PushEndpoint | str) -> PushWatermark:
        return self.store.get_push_watermark(_url(endpoint))

    def pending(self, endpoint: PushEndpoint | str) -> int:
        """Messages not yet acknowledged by this endpoint."""
        return self.store.count_pending(self.state(endpoint).last_pushed_rowid)

    def reset(self, endpoint: PushEndpoint | str) -> None:
        """Zero this endpoint's watermark and total so the next push resends everything."""
        self.store.reset_push_watermark(_url(endpoint))
        logger.info("reset push watermark for %s", _url(endpoint))

    def push(
        self,
        endpoint: PushEndpoint,
        batch_size: int = 500,
        dry_run: bool = False,
        on_batch: Callable[[BatchResult], None] | None = None,
    ) -> PushResult:
        """Send every pending message in batches of ``batch_size``.

        A rejected batch raises PushError immediately; batches acknowledged
        before it stay recorded. ``dry_run`` counts what would be sent and
        never touches the persisted watermark.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        cursor = self.store.get_push_watermark(endpoint.url).last_pushed_rowid
        result = PushResult(last_id=cursor)

        while True:
            rows = self.store.fetch_messages_after(cursor, batch_size)
            if not rows:
                break

            batch_last = rows[-1].message_id
            if dry_run:
                imported, skipped = len(rows), 0
            else:
                imported, skipped = self._send(endpoint, rows, result.batches + 1)
                self.store.record_push(endpoint.url, batch_last, len(rows))

            cursor = batch_last
            batch = BatchResult(
                batch=result.batches + 1,
                sent=len(rows),
                imported=imported,
                skipped=skipped,
                last_id=batch_last,
            )
            result.batches += 1
            result.total += len(rows)
            result.imported += imported
            result.skipped += skipped
            result.last_id = batch_last
            result.batch_results.append(batch)
            logger.debug(
                "batch %d: %d sent, %d imported, %d skipped (last id %d)",
                batch.batch, batch.sent, imported, skipped, batch_last,
            )
            if on_batch is not None:
                on_batch(batch)

        return result

    def _send(self, endpoint: PushEndpoint, rows: list[MessageView], batch: int) -> tuple[int, int]:
        resp = self.transport.post(endpoint.url, build_payload(rows), endpoint.headers())
        if not resp.ok:
            raise PushError(
                f"Push failed on batch {batch} (HTTP {resp.status_code}): {resp.text}",
                status_code=resp.status_code,
                body=resp.text,
            )

        data = resp.data or {}
        imported = data.get("imported")
        skipped = data.get("skipped")
        return (
            len(rows) if imported is None else int(imported),
            0 if skipped is None else int(skipped),
        )


def _url(endpoint: PushEndpoint | str) -> str:
    return endpoint.url if isinstance(endpoint, PushEndpoint) else endpoint

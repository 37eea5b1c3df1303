"""Message search and browsing over the shadow store.

Every query term must appear in the message text as a case-insensitive
substring. Terms are ANDed; quoted spans are single terms and no boolean
operators are interpreted, so ``OR``, ``NOT``, ``%`` and ``_`` match literally.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime

from shadowmsg.dates import NANOS_PER_DAY, to_source_timestamp
from shadowmsg.models import MessageView
from shadowmsg.store import MESSAGE_VIEW_FROM, MESSAGE_VIEW_SELECT, ShadowStore, row_to_view

_TERM_RE = re.compile(r'"([^"]+)"|(\S+)')


def parse_query_terms(query: str) -> list[str]:
    """Split a query into terms. Quoted spans are kept whole."""
    return [quoted or bare for quoted, bare in _TERM_RE.findall(query or "")]


@dataclass
class SearchOptions:
    sender: str | None = None  # substring of address, alias or contact name
    after: datetime | None = None
    before: datetime | None = None
    limit: int = 20
    offset: int = 0
    after_id: int | None = None  # forward pagination: only ids > after_id
    before_id: int | None = None
    sent_only: bool = False


@dataclass
class SearchResult:
    messages: list[MessageView] = field(default_factory=list)
    total: int = 0
    limit: int = 20
    offset: int = 0


def _build_filters(query: str, options: SearchOptions) -> tuple[str, list]:
    clauses = ["m.deleted_at IS NULL"]
    params: list = []

    for term in parse_query_terms(query):
        clauses.append("instr(casefold(m.extracted_text), casefold(?)) > 0")
        params.append(term)

    if options.sender:
        clauses.append(
            """(instr(casefold(h.address), casefold(?)) > 0
                OR instr(casefold(sa.alias), casefold(?)) > 0
                OR instr(casefold(c.name), casefold(?)) > 0)"""
        )
        params.extend([options.sender] * 3)

    if options.after is not None:
        clauses.append("m.date >= ?")
        params.append(to_source_timestamp(options.after))
    if options.before is not None:
        clauses.append("m.date <= ?")
        params.append(to_source_timestamp(options.before))
    if options.after_id is not None:
        clauses.append("m.message_id > ?")
        params.append(options.after_id)
    if options.before_id is not None:
        clauses.append("m.message_id < ?")
        params.append(options.before_id)
    if options.sent_only:
        clauses.append("m.is_from_me = 1")

    return " WHERE " + " AND ".join(clauses), params


def search_messages(
    store: ShadowStore, query: str = "", options: SearchOptions | None = None
) -> SearchResult:
    """Find messages matching every term, newest first.

    ``total`` counts all matches ignoring limit/offset. With ``after_id`` the
    rows closest to that id are selected, then returned newest first.
    """
    options = options or SearchOptions()
    where, params = _build_filters(query, options)

    ascending = options.after_id is not None
    order = "ASC" if ascending else "DESC"
    rows = store.conn.execute(
        MESSAGE_VIEW_SELECT + where
        + f" ORDER BY m.date {order}, m.message_id {order} LIMIT ? OFFSET ?",
        params + [options.limit, options.offset],
    ).fetchall()
    messages = [row_to_view(r) for r in rows]
    if ascending:
        messages.reverse()

    total = store.conn.execute(
        "SELECT COUNT(*) AS cnt" + MESSAGE_VIEW_FROM + where, params
    ).fetchone()["cnt"]

    return SearchResult(messages=messages, total=total, limit=options.limit, offset=options.offset)


def get_message(store: ShadowStore, message_id: int) -> MessageView | None:
    """One message with its resolved sender, including soft-deleted rows."""
    row = store.conn.execute(
        MESSAGE_VIEW_SELECT + " WHERE m.message_id = ?", (message_id,)
    ).fetchone()
    return row_to_view(row) if row else None


def message_context(
    store: ShadowStore, message_id: int, window: int = 5, days: int = 7
) -> list[MessageView] | None:
    """Messages from the same conversation around ``message_id``, oldest first.

    Looks at the same handle within ``days`` of the target and keeps up to
    ``window`` messages on each side. Returns None if the target is unknown.
    """
    target = store.conn.execute(
        "SELECT handle_id, date FROM messages WHERE message_id = ?", (message_id,)
    ).fetchone()
    if target is None:
        return None

    span = NANOS_PER_DAY * days
    rows = store.conn.execute(
        MESSAGE_VIEW_SELECT
        + """ WHERE m.handle_id IS ? AND m.deleted_at IS NULL
              AND m.date BETWEEN ? AND ?
              ORDER BY m.date ASC, m.message_id ASC""",
        (target["handle_id"], target["date"] - span, target["date"] + span),
    ).fetchall()
    messages = [row_to_view(r) for r in rows]

    index = next((i for i, m in enumerate(messages) if m.message_id == message_id), None)
    if index is None:
        return None
    return messages[max(0, index - window): index + window + 1]

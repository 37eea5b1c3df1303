"""Raw SQL against the shadow store, plus a few saved queries."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field

from shadowmsg.store import ShadowStore

_LOCAL_TIME = "m.date / 1000000000 + 978307200, 'unixepoch', 'localtime'"

SAVED_QUERIES: dict[str, str] = {
    "recent-orders": f"""
        SELECT
            datetime({_LOCAL_TIME}) AS sent_at,
            COALESCE(sa.alias, h.address) AS sender,
            SUBSTR(m.extracted_text, 1, 100) AS content
        FROM messages m
        LEFT JOIN handles h ON m.handle_id = h.handle_id
        LEFT JOIN sender_aliases sa ON h.address = sa.phone_normalized
        WHERE m.deleted_at IS NULL
          AND (m.extracted_text LIKE '%payment%' OR m.extracted_text LIKE '%order%')
        ORDER BY m.date DESC
        LIMIT 20""",
    "by-sender": """
        SELECT
            COALESCE(sa.alias, NULLIF(TRIM(c.name), ''), h.address) AS sender,
            COUNT(*) AS message_count
        FROM messages m
        LEFT JOIN handles h ON m.handle_id = h.handle_id
        LEFT JOIN contacts c ON h.address = c.phone_normalized
        LEFT JOIN sender_aliases sa ON h.address = sa.phone_normalized
        WHERE m.deleted_at IS NULL AND m.is_from_me = 0
        GROUP BY sender
        ORDER BY message_count DESC
        LIMIT 30""",
    "yearly-stats": f"""
        SELECT strftime('%Y', {_LOCAL_TIME}) AS year, COUNT(*) AS count
        FROM messages m
        WHERE m.deleted_at IS NULL
        GROUP BY year
        ORDER BY year""",
    "monthly-stats": f"""
        SELECT strftime('%Y-%m', {_LOCAL_TIME}) AS month, COUNT(*) AS count
        FROM messages m
        WHERE m.deleted_at IS NULL
        GROUP BY month
        ORDER BY month DESC
        LIMIT 24""",
}


class QueryError(RuntimeError):
    pass


@dataclass
class QueryResult:
    columns: list[str] = field(default_factory=list)
    rows: list[dict] = field(default_factory=list)
    changes: int | None = None

    @property
    def returns_rows(self) -> bool:
        return self.changes is None


def saved_query(name: str) -> str:
    try:
        return SAVED_QUERIES[name]
    except KeyError:
        raise QueryError(
            f"Unknown saved query: {name} (available: {', '.join(SAVED_QUERIES)})"
        ) from None


def run_query(store: ShadowStore, sql: str) -> QueryResult:
    """Execute one SQL statement.

    Statements that produce a result set return their rows; anything else
    reports the number of rows changed.
    """
    if not sql.strip():
        raise QueryError("Empty query")
    try:
        cursor = store.conn.execute(sql)
        if cursor.description is None:
            return QueryResult(changes=max(cursor.rowcount, 0))
        columns = [d[0] for d in cursor.description]
        rows = [dict(zip(columns, row)) for row in cursor.fetchall()]
    except sqlite3.Error as e:
        raise QueryError(f"SQL error: {e}") from e
    return QueryResult(columns=columns, rows=rows)

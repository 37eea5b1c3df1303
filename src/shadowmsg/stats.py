"""Message statistics over the shadow store."""

from __future__ import annotations

from dataclasses import dataclass, field

from shadowmsg.store import ShadowStore

# Seconds between the Unix epoch and 2001-01-01 UTC.
_EPOCH_OFFSET = 978307200
_LOCAL_TIME = f"date / 1000000000 + {_EPOCH_OFFSET}, 'unixepoch', 'localtime'"


@dataclass
class Overview:
    total: int = 0
    received: int = 0
    sent: int = 0
    handles: int = 0
    contacts: int = 0
    aliases: int = 0
    first_date: int | None = None
    last_date: int | None = None


@dataclass
class PeriodStats:
    period: str
    total: int
    received: int
    sent: int


def overview(store: ShadowStore) -> Overview:
    conn = store.conn
    row = conn.execute(
        """SELECT
               COUNT(*) AS total,
               COALESCE(SUM(CASE WHEN is_from_me = 0 THEN 1 ELSE 0 END), 0) AS received,
               COALESCE(SUM(CASE WHEN is_from_me = 1 THEN 1 ELSE 0 END), 0) AS sent,
               MIN(date) AS first_date,
               MAX(date) AS last_date
           FROM messages WHERE deleted_at IS NULL"""
    ).fetchone()
    return Overview(
        total=row["total"],
        received=row["received"],
        sent=row["sent"],
        handles=conn.execute("SELECT COUNT(*) FROM handles").fetchone()[0],
        contacts=conn.execute("SELECT COUNT(*) FROM contacts").fetchone()[0],
        aliases=conn.execute("SELECT COUNT(*) FROM sender_aliases").fetchone()[0],
        first_date=row["first_date"],
        last_date=row["last_date"],
    )


def _period_stats(store: ShadowStore, fmt: str, where: str = "", params: tuple = (),
                  order: str = "ASC", limit: int | None = None) -> list[PeriodStats]:
    sql = f"""SELECT
                  strftime('{fmt}', {_LOCAL_TIME}) AS period,
                  COUNT(*) AS total,
                  SUM(CASE WHEN is_from_me = 0 THEN 1 ELSE 0 END) AS received,
                  SUM(CASE WHEN is_from_me = 1 THEN 1 ELSE 0 END) AS sent
              FROM messages
              WHERE deleted_at IS NULL {where}
              GROUP BY period
              ORDER BY period {order}"""
    if limit is not None:
        sql += f" LIMIT {int(limit)}"
    rows = store.conn.execute(sql, params).fetchall()
    return [PeriodStats(r["period"], r["total"], r["received"], r["sent"]) for r in rows]


def yearly(store: ShadowStore) -> list[PeriodStats]:
    return _period_stats(store, "%Y")


def monthly(store: ShadowStore, year: int | None = None) -> list[PeriodStats]:
    """Per-month counts, newest first: one year, or the last 24 months."""
    if year is not None:
        return _period_stats(
            store, "%Y-%m",
            where=f"AND strftime('%Y', {_LOCAL_TIME}) = ?",
            params=(str(year),),
            order="DESC",
        )
    return _period_stats(store, "%Y-%m", order="DESC", limit=24)

"""Sender aliases and contact lookups."""

from __future__ import annotations

from dataclasses import dataclass

from shadowmsg.models import Contact, SenderAlias
from shadowmsg.phone import DEFAULT_COUNTRY_CODE, normalize_phone
from shadowmsg.store import ShadowStore


def normalize_sender(address: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Canonical handle address: phone numbers are normalized, emails lower-cased."""
    address = address.strip()
    if "@" in address:
        return address.lower()
    return normalize_phone(address, country_code)


# --- Aliases ---

def list_aliases(store: ShadowStore) -> list[SenderAlias]:
    rows = store.conn.execute(
        """SELECT phone_normalized, alias, created_at FROM sender_aliases
           ORDER BY created_at DESC, phone_normalized"""
    ).fetchall()
    return [SenderAlias(r["phone_normalized"], r["alias"], r["created_at"]) for r in rows]


def get_alias(store: ShadowStore, address: str, country_code: str = DEFAULT_COUNTRY_CODE) -> SenderAlias | None:
    row = store.conn.execute(
        "SELECT phone_normalized, alias, created_at FROM sender_aliases WHERE phone_normalized = ?",
        (normalize_sender(address, country_code),),
    ).fetchone()
    if row is None:
        return None
    return SenderAlias(row["phone_normalized"], row["alias"], row["created_at"])


def set_alias(
    store: ShadowStore, address: str, alias: str, country_code: str = DEFAULT_COUNTRY_CODE
) -> tuple[SenderAlias, bool]:
    """Add or update an alias. Returns (alias, created)."""
    alias = alias.strip()
    if not alias:
        raise ValueError("Alias must not be empty")
    normalized = normalize_sender(address, country_code)
    if not normalized:
        raise ValueError(f"Not a valid phone number or address: {address!r}")

    existing = get_alias(store, normalized, country_code)
    if existing:
        store.conn.execute(
            "UPDATE sender_aliases SET alias = ? WHERE phone_normalized = ?",
            (alias, normalized),
        )
    else:
        store.conn.execute(
            "INSERT INTO sender_aliases (phone_normalized, alias) VALUES (?, ?)",
            (normalized, alias),
        )
    return get_alias(store, normalized, country_code), existing is None


def remove_alias(
    store: ShadowStore, address: str, country_code: str = DEFAULT_COUNTRY_CODE
) -> SenderAlias | None:
    """Delete an alias. Returns the removed alias, or None if there was none."""
    existing = get_alias(store, address, country_code)
    if existing is None:
        return None
    store.conn.execute(
        "DELETE FROM sender_aliases WHERE phone_normalized = ?", (existing.phone_normalized,)
    )
    return existing


@dataclass
class AliasSuggestion:
    address: str
    message_count: int
    sample_message: str | None = None


def suggest_aliases(store: ShadowStore, limit: int = 10) -> list[AliasSuggestion]:
    """Frequent incoming senders that have neither an alias nor a contact entry."""
    rows = store.conn.execute(
        """SELECT
               h.address,
               COUNT(*) AS message_count,
               MAX(m.extracted_text) AS sample_message
           FROM messages m
           JOIN handles h ON m.handle_id = h.handle_id
           LEFT JOIN sender_aliases sa ON h.address = sa.phone_normalized
           LEFT JOIN contacts c ON h.address = c.phone_normalized
           WHERE sa.phone_normalized IS NULL
             AND c.phone_normalized IS NULL
             AND m.deleted_at IS NULL
             AND m.is_from_me = 0
           GROUP BY h.address
           ORDER BY message_count DESC, h.address
           LIMIT ?""",
        (limit,),
    ).fetchall()
    return [AliasSuggestion(r["address"], r["message_count"], r["sample_message"]) for r in rows]


# --- Contacts ---

@dataclass
class ContactSummary:
    contact: Contact
    message_count: int = 0


_CONTACT_SUMMARY_SELECT = """
    SELECT
        c.phone_normalized, c.name, c.organization, c.phone_original,
        COUNT(m.message_id) AS message_count
    FROM contacts c
    LEFT JOIN handles h ON c.phone_normalized = h.address
    LEFT JOIN messages m ON h.handle_id = m.handle_id AND m.deleted_at IS NULL
"""


def _to_summary(row) -> ContactSummary:
    return ContactSummary(
        contact=Contact(
            phone_normalized=row["phone_normalized"],
            name=row["name"] or "",
            organization=row["organization"],
            phone_original=row["phone_original"] or "",
        ),
        message_count=row["message_count"],
    )


def list_contacts(store: ShadowStore, limit: int = 50, by_messages: bool = False) -> list[ContactSummary]:
    """Contacts by name, or by message count when ``by_messages`` is set."""
    order = "message_count DESC, c.name" if by_messages else "c.name, c.phone_normalized"
    rows = store.conn.execute(
        _CONTACT_SUMMARY_SELECT + f" GROUP BY c.phone_normalized ORDER BY {order} LIMIT ?",
        (limit,),
    ).fetchall()
    return [_to_summary(r) for r in rows]


def search_contacts(store: ShadowStore, query: str, limit: int = 50) -> list[ContactSummary]:
    """Contacts whose name, organization or number contains ``query`` (case-insensitive)."""
    rows = store.conn.execute(
        _CONTACT_SUMMARY_SELECT
        + """ WHERE instr(casefold(c.name), casefold(?)) > 0
                 OR instr(casefold(c.organization), casefold(?)) > 0
                 OR instr(c.phone_normalized, ?) > 0
              GROUP BY c.phone_normalized
              ORDER BY message_count DESC, c.name
              LIMIT ?""",
        (query, query, query, limit),
    ).fetchall()
    return [_to_summary(r) for r in rows]


@dataclass
class SenderStats:
    address: str
    sender: str
    total: int
    received: int
    sent: int


def top_senders(store: ShadowStore, limit: int = 10) -> list[SenderStats]:
    """Conversations ranked by message count, with resolved display names."""
    rows = store.conn.execute(
        """SELECT
               h.address,
               COALESCE(sa.alias, NULLIF(TRIM(c.name), ''), c.organization, h.address) AS sender,
               COUNT(*) AS total,
               SUM(CASE WHEN m.is_from_me = 0 THEN 1 ELSE 0 END) AS received,
               SUM(CASE WHEN m.is_from_me = 1 THEN 1 ELSE 0 END) AS sent
           FROM messages m
           JOIN handles h ON m.handle_id = h.handle_id
           LEFT JOIN contacts c ON h.address = c.phone_normalized
           LEFT JOIN sender_aliases sa ON h.address = sa.phone_normalized
           WHERE m.deleted_at IS NULL
           GROUP BY h.address
           ORDER BY total DESC, h.address
           LIMIT ?""",
        (limit,),
    ).fetchall()
    return [SenderStats(r["address"], r["sender"], r["total"], r["received"], r["sent"]) for r in rows]

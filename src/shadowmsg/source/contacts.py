"""AddressBook discovery and contact extraction."""

from __future__ import annotations

import logging
from pathlib import Path

from shadowmsg.models import SourceContact
from shadowmsg.source.reader import open_readonly

logger = logging.getLogger(__name__)

ADDRESS_BOOK_DB = "AddressBook-v22.abcddb"


def find_address_book_dbs(sources_dir: str | Path) -> list[Path]:
    """Return every per-account AddressBook database under the Sources directory."""
    base = Path(sources_dir)
    if not base.is_dir():
        return []
    try:
        candidates = sorted(base.iterdir())
    except OSError as e:
        logger.warning("cannot list address book sources in %s: %s", base, e)
        return []
    return [p / ADDRESS_BOOK_DB for p in candidates if (p / ADDRESS_BOOK_DB).exists()]


def read_contacts(path: str | Path) -> list[SourceContact]:
    """Read name/organization/phone rows from one AddressBook database."""
    conn = open_readonly(path)
    try:
        rows = conn.execute(
            """SELECT
                   COALESCE(r.ZFIRSTNAME, '') || ' ' || COALESCE(r.ZLASTNAME, '') AS name,
                   r.ZORGANIZATION AS organization,
                   p.ZFULLNUMBER AS phone
               FROM ZABCDRECORD r
               JOIN ZABCDPHONENUMBER p ON p.ZOWNER = r.Z_PK
               WHERE p.ZFULLNUMBER IS NOT NULL"""
        ).fetchall()
    finally:
        conn.close()

    return [
        SourceContact(name=(r["name"] or "").strip(), organization=r["organization"], phone=r["phone"])
        for r in rows
    ]

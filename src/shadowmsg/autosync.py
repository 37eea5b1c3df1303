"""Last-successful-sync bookkeeping and the auto-sync policy."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


def _load_state(state_path: Path) -> dict:
    try:
        if state_path.exists():
            return json.loads(state_path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("ignoring unreadable sync state %s: %s", state_path, e)
    return {}


def _save_state(state_path: Path, state: dict) -> None:
    state_path.parent.mkdir(parents=True, exist_ok=True)
    state_path.write_text(json.dumps(state, indent=2))


def last_sync_at(state_path: str | Path) -> datetime | None:
    raw = _load_state(Path(state_path)).get("last_sync_at")
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


def record_sync(state_path: str | Path, when: datetime | None = None) -> datetime:
    """Persist the time of the last successful sync."""
    path = Path(state_path)
    when = when or datetime.now(timezone.utc)
    state = _load_state(path)
    state["last_sync_at"] = when.isoformat()
    _save_state(path, state)
    return when


def should_auto_sync(state_path: str | Path, interval: timedelta) -> bool:
    """True when no sync was ever recorded or the last one is older than interval."""
    last = last_sync_at(state_path)
    if last is None:
        return True
    if last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc) - last > interval


def format_time_ago(when: datetime) -> str:
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    seconds = int((datetime.now(timezone.utc) - when).total_seconds())
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60} minutes ago"
    if seconds < 86400:
        return f"{seconds // 3600} hours ago"
    return f"{seconds // 86400} days ago"

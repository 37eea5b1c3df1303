"""Command-line interface for ShadowMSG."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="shadowmsg",
    help="Searchable shadow copy of the macOS Messages database.",
    no_args_is_help=True,
)

NO_SYNC_HELP = "Skip auto-sync before running the command."


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
):
    """ShadowMSG: sync, search and push your Messages history."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# --- Shared helpers ---

def _open_store(config):
    """Open the shadow store, exiting if `shadowmsg init` has not been run."""
    from shadowmsg.database import get_db, is_initialized
    from shadowmsg.store import ShadowStore

    if not is_initialized(config.storage.db_path):
        typer.echo("Database not initialized. Run 'shadowmsg init' first.", err=True)
        raise typer.Exit(1)
    return ShadowStore(get_db(config))


def _sync_source(config, store, cleanup: bool = False):
    """Run one sync pass. Raises SourceUnavailableError if chat.db cannot be opened."""
    from shadowmsg.source.contacts import find_address_book_dbs
    from shadowmsg.source.reader import open_source
    from shadowmsg.source.sync import SyncEngine

    with open_source(config.source.messages_db_path, config.source.busy_timeout_ms) as source:
        engine = SyncEngine(
            store,
            source,
            contact_paths=find_address_book_dbs(config.source.address_book_path),
            state_path=config.storage.state_path,
            country_code=config.sync.default_country_code,
        )
        return engine.sync(cleanup=cleanup)


def _run_sync(config, store, cleanup: bool = False):
    """Sync for an explicit command. Exits on an unavailable source."""
    from shadowmsg.source.reader import SourceUnavailableError

    try:
        return _sync_source(config, store, cleanup=cleanup)
    except SourceUnavailableError as e:
        typer.echo(str(e), err=True)
        typer.echo("Make sure your terminal has Full Disk Access.", err=True)
        raise typer.Exit(1)


def _auto_sync(config, store, no_sync: bool) -> None:
    from datetime import timedelta

    from shadowmsg.autosync import should_auto_sync
    from shadowmsg.source.reader import SourceUnavailableError

    if no_sync:
        return
    interval = timedelta(minutes=config.sync.auto_sync_minutes)
    if not should_auto_sync(config.storage.state_path, interval):
        return
    typer.echo("Auto-syncing...", err=True)
    try:
        _sync_source(config, store)
    except SourceUnavailableError as e:
        typer.echo(f"Auto-sync skipped: {e}", err=True)


def _message_dict(m, target_id: int | None = None) -> dict:
    from shadowmsg.dates import to_iso
    from shadowmsg.text.attributed import clean_text

    data = {
        "id": m.message_id,
        "sent_at": to_iso(m.date),
        "sender": m.sender_name,
        "phone": m.sender_address,
        "service": m.service or "SMS",
        "content": clean_text(m.extracted_text),
        "is_from_me": m.is_from_me,
        "has_attachments": m.has_attachments,
    }
    if target_id is not None:
        data["is_target"] = m.message_id == target_id
    return data


def _echo_message(m, marker: str = "") -> None:
    from shadowmsg.dates import format_date
    from shadowmsg.text.attributed import clean_text

    sender = "Me" if m.is_from_me else (m.sender_name or m.sender_address or "Unknown")
    typer.echo(f"{marker}#{m.message_id} · {format_date(m.date)} · {sender} · {m.service or 'SMS'}")
    typer.echo("─" * 60)
    typer.echo(clean_text(m.extracted_text) or "(no content)")
    typer.echo("")


def _echo_short(m) -> None:
    from shadowmsg.dates import format_date
    from shadowmsg.text.attributed import clean_text

    sender = (m.sender_name or m.sender_address or "Unknown")[:12].ljust(12)
    content = (clean_text(m.extracted_text) or "").replace("\n", " ")[:50]
    typer.echo(f"#{m.message_id}  {format_date(m.date, short=True)}  {sender}  {content}")


def _parse_date_option(value: str | None, name: str):
    from shadowmsg.dates import parse_date

    if value is None:
        return None
    try:
        return parse_date(value)
    except ValueError:
        typer.echo(f"Invalid date for {name}: {value!r} (expected YYYY-MM-DD)", err=True)
        raise typer.Exit(1)


# --- Init ---

@app.command()
def init():
    """Create the shadow database (safe to re-run)."""
    from shadowmsg.config import load_config
    from shadowmsg.database import get_db, init_db, is_initialized, migrate_db

    config = load_config()
    already = is_initialized(config.storage.db_path)
    conn = get_db(config)
    init_db(conn)
    actions = migrate_db(conn)
    conn.close()

    if already:
        typer.echo(f"Database already initialized at {config.storage.db_path}")
        for action in actions:
            typer.echo(f"  migrated: {action}")
    else:
        typer.echo(f"Created database at {config.storage.db_path}")
    typer.echo("Run 'shadowmsg sync' to copy your messages.")


# --- Sync commands ---

sync_app = typer.Typer(help="Sync from the Messages database.")
app.add_typer(sync_app, name="sync")


def _sync_and_report(cleanup: bool) -> None:
    import time

    from shadowmsg.config import load_config

    config = load_config()
    store = _open_store(config)

    typer.echo("Syncing messages...")
    started = time.monotonic()
    result = _run_sync(config, store, cleanup=cleanup)
    elapsed_ms = int((time.monotonic() - started) * 1000)
    store.conn.close()

    typer.echo("Sync complete!")
    typer.echo(f"  Handles:     {result.handles:6d}")
    typer.echo(f"  Messages:    {result.messages:6d}")
    typer.echo(f"  Attachments: {result.attachments:6d}")
    typer.echo(f"  Contacts:    {result.contacts:6d}")
    if result.cleanup is not None:
        if result.cleanup.completed:
            typer.echo(f"  Cleaned up:  {result.cleanup.deleted:6d}")
        else:
            typer.echo(f"  Cleanup skipped: {result.cleanup.error}")
    typer.echo(f"  Time: {elapsed_ms}ms")


@sync_app.callback(invoke_without_command=True)
def sync_callback(
    ctx: typer.Context,
    cleanup: bool = typer.Option(False, "--cleanup", help="Soft-delete messages removed from the source."),
):
    """Sync new messages (runs `sync run` when no subcommand is given)."""
    if ctx.invoked_subcommand is None:
        _sync_and_report(cleanup)


@sync_app.command("run")
def sync_run(
    cleanup: bool = typer.Option(False, "--cleanup", help="Soft-delete messages removed from the source."),
):
    """Copy new messages, handles, attachments and contacts."""
    _sync_and_report(cleanup)


@sync_app.command("status")
def sync_status(
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
):
    """Show watermarks, row counts and the last sync time."""
    from shadowmsg.autosync import format_time_ago, last_sync_at
    from shadowmsg.config import load_config
    from shadowmsg.database import db_stats

    config = load_config()
    store = _open_store(config)
    watermarks = store.list_sync_watermarks()
    counts = db_stats(store.conn)
    last = last_sync_at(config.storage.state_path)
    store.conn.close()

    if as_json:
        typer.echo(json.dumps({
            "last_sync": last.isoformat() if last else None,
            "watermarks": {w.table_name: w.last_rowid for w in watermarks},
            "counts": counts,
        }, indent=2))
        return

    typer.echo("Sync Status")
    typer.echo("─" * 40)
    typer.echo(f"  Last sync: {format_time_ago(last) if last else 'Never'}")
    typer.echo("")
    typer.echo("Watermarks:")
    for w in watermarks:
        typer.echo(f"  {w.table_name:25s} {w.last_rowid:>10d}")
    typer.echo("")
    typer.echo("Row counts:")
    for table, count in counts.items():
        status = f"{count}" if count >= 0 else "missing"
        typer.echo(f"  {table:25s} {status:>10s}")


@sync_app.command("rebuild")
def sync_rebuild(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
):
    """Clear all synced data and sync from scratch. Aliases and push state are kept."""
    from shadowmsg.config import load_config

    if not yes:
        typer.confirm("This clears all synced messages and re-syncs. Continue?", abort=True)

    config = load_config()
    store = _open_store(config)
    with store.transaction():
        store.clear_synced_data()
    typer.echo("Cleared synced data.")
    store.conn.close()

    _sync_and_report(cleanup=False)


# --- Search ---

@app.command()
def search(
    query: str = typer.Argument(..., help="Terms to find (all must match; quote phrases)."),
    sender: Optional[str] = typer.Option(None, "--from", help="Phone, alias or contact name."),
    after: Optional[str] = typer.Option(None, "--after", help="Only messages on/after this date."),
    before: Optional[str] = typer.Option(None, "--before", help="Only messages on/before this date."),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum results."),
    offset: int = typer.Option(0, "--offset", help="Skip the first N results."),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
    no_sync: bool = typer.Option(False, "--no-sync", help=NO_SYNC_HELP),
):
    """Search message text."""
    from shadowmsg.config import load_config
    from shadowmsg.dates import end_of_day, start_of_day
    from shadowmsg.search import SearchOptions, search_messages

    after_dt = _parse_date_option(after, "--after")
    before_dt = _parse_date_option(before, "--before")

    config = load_config()
    store = _open_store(config)
    _auto_sync(config, store, no_sync)

    result = search_messages(store, query, SearchOptions(
        sender=sender,
        after=start_of_day(after_dt) if after_dt else None,
        before=end_of_day(before_dt) if before_dt else None,
        limit=limit,
        offset=offset,
    ))
    store.conn.close()

    if as_json:
        typer.echo(json.dumps({
            "messages": [_message_dict(m) for m in result.messages],
            "total": result.total,
            "limit": result.limit,
            "offset": result.offset,
        }, indent=2, ensure_ascii=False))
        return

    if not result.messages:
        typer.echo(f"No messages found for: {query}")
        return

    shown_to = result.offset + len(result.messages)
    typer.echo(f"Showing {result.offset + 1}-{shown_to} of {result.total} messages for: {query}")
    typer.echo("")
    for m in result.messages:
        _echo_message(m)
    if shown_to < result.total:
        typer.echo(f"More results: --offset {shown_to}")


# --- Message commands ---

message_app = typer.Typer(help="Browse messages.")
app.add_typer(message_app, name="message")


@message_app.command("list")
def message_list(
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum results."),
    offset: int = typer.Option(0, "--offset", help="Skip the first N results."),
    before_id: Optional[int] = typer.Option(None, "--before", help="Only messages with id below this."),
    after_id: Optional[int] = typer.Option(None, "--after", help="Only messages with id above this."),
    on_date: Optional[str] = typer.Option(None, "--date", help="Messages from one day (YYYY-MM-DD)."),
    since: Optional[str] = typer.Option(None, "--since", help="Messages since this date."),
    until: Optional[str] = typer.Option(None, "--until", help="Messages until this date."),
    days: Optional[int] = typer.Option(None, "--days", help="Messages from the last N days."),
    sender: Optional[str] = typer.Option(None, "--from", help="Phone, alias or contact name."),
    sent: bool = typer.Option(False, "--sent", help="Only messages sent by me."),
    short: bool = typer.Option(False, "--short", help="One line per message."),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
    no_sync: bool = typer.Option(False, "--no-sync", help=NO_SYNC_HELP),
):
    """List messages, newest first.

    --date picks one day and cannot be combined with --since, --until or
    --days; --days sets the start and cannot be combined with --since.
    """
    from shadowmsg.config import load_config
    from shadowmsg.dates import days_ago, end_of_day, start_of_day
    from shadowmsg.search import SearchOptions, search_messages

    if on_date is not None and (since or until or days is not None):
        raise typer.BadParameter("--date cannot be combined with --since, --until or --days")
    if days is not None and since is not None:
        raise typer.BadParameter("--days cannot be combined with --since")

    options = SearchOptions(
        sender=sender,
        limit=limit,
        offset=offset,
        after_id=after_id,
        before_id=before_id,
        sent_only=sent,
    )
    day = _parse_date_option(on_date, "--date")
    if day is not None:
        options.after, options.before = start_of_day(day), end_of_day(day)
    since_dt = _parse_date_option(since, "--since")
    if since_dt is not None:
        options.after = start_of_day(since_dt)
    until_dt = _parse_date_option(until, "--until")
    if until_dt is not None:
        options.before = end_of_day(until_dt)
    if days is not None:
        options.after = days_ago(days)

    config = load_config()
    store = _open_store(config)
    _auto_sync(config, store, no_sync)
    result = search_messages(store, "", options)
    store.conn.close()

    if as_json:
        typer.echo(json.dumps([_message_dict(m) for m in result.messages], indent=2, ensure_ascii=False))
        return

    if not result.messages:
        typer.echo("No messages found")
        return

    if short:
        for m in result.messages:
            _echo_short(m)
        return

    typer.echo(f"Found {len(result.messages)} of {result.total} messages:")
    typer.echo("")
    for m in result.messages:
        _echo_message(m)


@message_app.command("get")
def message_get(
    message_id: int = typer.Argument(..., help="Message id."),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
    no_sync: bool = typer.Option(False, "--no-sync", help=NO_SYNC_HELP),
):
    """Show one message with its attachments."""
    from shadowmsg.config import load_config
    from shadowmsg.dates import format_date
    from shadowmsg.search import get_message
    from shadowmsg.text.attributed import clean_text

    config = load_config()
    store = _open_store(config)
    _auto_sync(config, store, no_sync)
    m = get_message(store, message_id)
    attachments = store.attachments_for(message_id) if m else []
    store.conn.close()

    if m is None:
        typer.echo(f"Message #{message_id} not found", err=True)
        raise typer.Exit(1)

    if as_json:
        data = _message_dict(m)
        data["attachments"] = [
            {"filename": a.filename, "mime_type": a.mime_type, "total_bytes": a.total_bytes}
            for a in attachments
        ]
        typer.echo(json.dumps(data, indent=2, ensure_ascii=False))
        return

    sender = m.sender_name or m.sender_address or "Unknown"
    phone = m.sender_address or ""
    typer.echo(f"Message #{m.message_id}")
    typer.echo("─" * 40)
    typer.echo(f"  Date:    {format_date(m.date)}")
    typer.echo(f"  From:    {sender}{f' ({phone})' if phone and phone != sender else ''}")
    typer.echo(f"  Service: {m.service or 'SMS'}")
    for a in attachments:
        typer.echo(f"  Attachment: {a.filename or a.guid} ({a.mime_type or 'unknown'})")
    typer.echo("")
    typer.echo(clean_text(m.extracted_text) or "(no content)")


@message_app.command("context")
def message_context(
    message_id: int = typer.Argument(..., help="Message id to center on."),
    window: int = typer.Option(5, "--range", "-r", help="Messages before and after."),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
    no_sync: bool = typer.Option(False, "--no-sync", help=NO_SYNC_HELP),
):
    """Show the conversation around a message."""
    from shadowmsg.config import load_config
    from shadowmsg.search import message_context as load_context

    config = load_config()
    store = _open_store(config)
    _auto_sync(config, store, no_sync)
    messages = load_context(store, message_id, window)
    store.conn.close()

    if messages is None:
        typer.echo(f"Message #{message_id} not found", err=True)
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps(
            [_message_dict(m, target_id=message_id) for m in messages], indent=2, ensure_ascii=False,
        ))
        return

    typer.echo(f"Conversation context around #{message_id}")
    typer.echo("")
    for m in messages:
        _echo_message(m, marker=">>> " if m.message_id == message_id else "")


# --- Sender alias commands ---

sender_app = typer.Typer(help="Manage sender aliases.")
app.add_typer(sender_app, name="sender")


@sender_app.command("list")
def sender_list(
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
):
    """List sender aliases."""
    from dataclasses import asdict

    from shadowmsg.config import load_config
    from shadowmsg.senders import list_aliases

    store = _open_store(load_config())
    aliases = list_aliases(store)
    store.conn.close()

    if as_json:
        typer.echo(json.dumps([asdict(a) for a in aliases], indent=2, ensure_ascii=False))
        return

    if not aliases:
        typer.echo("No aliases registered. Use 'shadowmsg sender add <phone> <alias>'.")
        return

    typer.echo("Sender Aliases")
    typer.echo("─" * 50)
    for a in aliases:
        typer.echo(f"  {a.phone_normalized:15s} → {a.alias}")
    typer.echo(f"Total: {len(aliases)} alias(es)")


@sender_app.command("add")
def sender_add(
    phone: str = typer.Argument(..., help="Phone number or address."),
    alias: str = typer.Argument(..., help="Name to display."),
):
    """Add or update a sender alias."""
    from shadowmsg.config import load_config
    from shadowmsg.senders import set_alias

    config = load_config()
    store = _open_store(config)
    try:
        saved, created = set_alias(store, phone, alias, config.sync.default_country_code)
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    finally:
        store.conn.close()

    verb = "Added" if created else "Updated"
    typer.echo(f"{verb} alias: {saved.phone_normalized} → {saved.alias}")


@sender_app.command("remove")
def sender_remove(
    phone: str = typer.Argument(..., help="Phone number or address."),
):
    """Remove a sender alias."""
    from shadowmsg.config import load_config
    from shadowmsg.senders import normalize_sender, remove_alias

    config = load_config()
    store = _open_store(config)
    removed = remove_alias(store, phone, config.sync.default_country_code)
    store.conn.close()

    if removed is None:
        typer.echo(f"No alias found for {normalize_sender(phone, config.sync.default_country_code)}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Removed alias for {removed.phone_normalized} (was: {removed.alias})")


@sender_app.command("suggest")
def sender_suggest(
    limit: int = typer.Option(10, "--limit", "-n", help="Maximum suggestions."),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
    no_sync: bool = typer.Option(False, "--no-sync", help=NO_SYNC_HELP),
):
    """Suggest frequent senders that have no alias or contact."""
    from dataclasses import asdict

    from shadowmsg.config import load_config
    from shadowmsg.senders import suggest_aliases

    config = load_config()
    store = _open_store(config)
    _auto_sync(config, store, no_sync)
    suggestions = suggest_aliases(store, limit)
    store.conn.close()

    if as_json:
        typer.echo(json.dumps([asdict(s) for s in suggestions], indent=2, ensure_ascii=False))
        return

    if not suggestions:
        typer.echo("All frequent senders have aliases!")
        return

    typer.echo("Suggested senders to add aliases for:")
    typer.echo("─" * 60)
    for s in suggestions:
        typer.echo(f"{s.address:15s} ({s.message_count} messages)")
        sample = (s.sample_message or "").replace("\n", " ")[:40]
        if sample:
            typer.echo(f"  {sample}...")


# --- Contact commands ---

contact_app = typer.Typer(help="Browse imported contacts.")
app.add_typer(contact_app, name="contact")


def _echo_contacts(summaries, as_json: bool, with_count: bool) -> None:
    if as_json:
        typer.echo(json.dumps([
            {
                "phone": s.contact.phone_normalized,
                "name": s.contact.name,
                "organization": s.contact.organization,
                "message_count": s.message_count,
            }
            for s in summaries
        ], indent=2, ensure_ascii=False))
        return

    if not summaries:
        typer.echo("No contacts found")
        return

    for s in summaries:
        name = s.contact.name or s.contact.organization or "(no name)"
        line = f"  {s.contact.phone_normalized:15s} {name}"
        if with_count:
            line += f"  ({s.message_count} messages)"
        typer.echo(line)


@contact_app.command("list")
def contact_list(
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum results."),
    with_count: bool = typer.Option(False, "--with-count", help="Sort by message count."),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
    no_sync: bool = typer.Option(False, "--no-sync", help=NO_SYNC_HELP),
):
    """List contacts."""
    from shadowmsg.config import load_config
    from shadowmsg.senders import list_contacts

    config = load_config()
    store = _open_store(config)
    _auto_sync(config, store, no_sync)
    summaries = list_contacts(store, limit, by_messages=with_count)
    store.conn.close()
    _echo_contacts(summaries, as_json, with_count)


@contact_app.command("search")
def contact_search(
    query: str = typer.Argument(..., help="Name, organization or number fragment."),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum results."),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
    no_sync: bool = typer.Option(False, "--no-sync", help=NO_SYNC_HELP),
):
    """Search contacts."""
    from shadowmsg.config import load_config
    from shadowmsg.senders import search_contacts

    config = load_config()
    store = _open_store(config)
    _auto_sync(config, store, no_sync)
    summaries = search_contacts(store, query, limit)
    store.conn.close()
    _echo_contacts(summaries, as_json, with_count=True)


@contact_app.command("top")
def contact_top(
    top: int = typer.Option(10, "--top", "-n", help="Show top N senders."),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
    no_sync: bool = typer.Option(False, "--no-sync", help=NO_SYNC_HELP),
):
    """Rank conversations by message count."""
    from dataclasses import asdict

    from shadowmsg.config import load_config
    from shadowmsg.senders import top_senders

    config = load_config()
    store = _open_store(config)
    _auto_sync(config, store, no_sync)
    ranked = top_senders(store, top)
    store.conn.close()

    if as_json:
        typer.echo(json.dumps([asdict(s) for s in ranked], indent=2, ensure_ascii=False))
        return

    if not ranked:
        typer.echo("No message statistics available")
        return

    typer.echo(f"  {'Sender':20s}{'Total':>8s}{'Recv':>8s}{'Sent':>8s}")
    for s in ranked:
        typer.echo(f"  {s.sender[:18]:20s}{s.total:>8d}{s.received:>8d}{s.sent:>8d}")


# --- Raw SQL ---

@app.command()
def query(
    sql: Optional[str] = typer.Argument(None, help="SQL statement to run."),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read SQL from a file."),
    saved: Optional[str] = typer.Option(None, "--saved", "-s", help="Run a saved query by name."),
    list_saved: bool = typer.Option(False, "--list-saved", help="List the saved queries."),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
    no_sync: bool = typer.Option(False, "--no-sync", help=NO_SYNC_HELP),
):
    """Run SQL against the shadow database."""
    from shadowmsg.config import load_config
    from shadowmsg.queries import SAVED_QUERIES, QueryError, run_query, saved_query

    if list_saved:
        typer.echo("Available saved queries:")
        for name in SAVED_QUERIES:
            typer.echo(f"  {name}")
        return

    try:
        if saved:
            statement = saved_query(saved)
        elif file is not None:
            if not file.exists():
                raise QueryError(f"File not found: {file}")
            statement = file.read_text()
        elif sql:
            statement = sql
        else:
            raise QueryError("Provide a SQL statement, --file or --saved.")
    except QueryError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)

    config = load_config()
    store = _open_store(config)
    _auto_sync(config, store, no_sync)
    try:
        result = run_query(store, statement)
    except QueryError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    finally:
        store.conn.close()

    if not result.returns_rows:
        typer.echo(f"Query executed. Changes: {result.changes}")
        return

    if as_json:
        typer.echo(json.dumps(result.rows, indent=2, ensure_ascii=False, default=str))
        return

    if not result.rows:
        typer.echo("No results")
        return

    cells = [[str(row[c] if row[c] is not None else "")[:50] for c in result.columns] for row in result.rows]
    widths = [max(len(c), *(len(r[i]) for r in cells)) for i, c in enumerate(result.columns)]
    typer.echo(" | ".join(c.ljust(w) for c, w in zip(result.columns, widths)))
    typer.echo("─┼─".join("─" * w for w in widths))
    for r in cells:
        typer.echo(" | ".join(v.ljust(w) for v, w in zip(r, widths)))
    typer.echo(f"{len(cells)} row(s)")


# --- Push ---

@app.command()
def push(
    url: Optional[str] = typer.Option(None, "--url", help="Endpoint URL (or SHADOWMSG_PUSH_URL)."),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="Bearer token (or SHADOWMSG_PUSH_API_KEY)."),
    host: Optional[str] = typer.Option(None, "--host", help="Host header for a reverse proxy."),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", help="Messages per request."),
    full: bool = typer.Option(False, "--full", help="Reset the watermark and resend everything."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Count what would be sent without sending."),
    no_sync: bool = typer.Option(False, "--no-sync", help=NO_SYNC_HELP),
):
    """Push new messages to a remote endpoint."""
    from shadowmsg.config import load_config
    from shadowmsg.remote import PushClient, PushEndpoint, PushError, get_transport

    config = load_config()
    endpoint = PushEndpoint(
        url=url or config.push.url,
        api_key=api_key or config.push.api_key,
        host=host or config.push.host,
    )
    if not endpoint.url:
        typer.echo("Missing endpoint URL. Use --url or set SHADOWMSG_PUSH_URL.", err=True)
        raise typer.Exit(1)
    if not endpoint.api_key and not dry_run:
        typer.echo("Missing API key. Use --api-key or set SHADOWMSG_PUSH_API_KEY.", err=True)
        raise typer.Exit(1)

    store = _open_store(config)
    _auto_sync(config, store, no_sync)
    client = PushClient(store, get_transport(config))

    if full and not dry_run:
        client.reset(endpoint)

    state = client.state(endpoint)
    pending = client.pending(endpoint)
    if pending == 0:
        typer.echo("No new messages to push")
        store.conn.close()
        return

    if dry_run:
        result = client.push(endpoint, batch_size or config.push.batch_size, dry_run=True)
        store.conn.close()
        typer.echo(f"{pending} messages pending (from id > {state.last_pushed_rowid})")
        typer.echo(f"Would send {result.batches} batch(es), last id {result.last_id}")
        return

    def on_batch(batch):
        typer.echo(
            f"  Batch {batch.batch}: {batch.sent:4d} messages → "
            f"{batch.imported} imported, {batch.skipped} skipped"
        )

    typer.echo(f"Pushing messages to {endpoint.url}")
    try:
        result = client.push(
            endpoint, batch_size or config.push.batch_size, on_batch=on_batch,
        )
    except PushError as e:
        typer.echo(f"Push failed: {e}", err=True)
        raise typer.Exit(1)
    finally:
        store.conn.close()

    typer.echo("Push complete!")
    typer.echo(
        f"  Total: {result.total} messages ({result.imported} imported, {result.skipped} skipped)"
    )
    typer.echo(f"  Last id: {result.last_id}")


# --- Stats ---

@app.command()
def stats(
    yearly: bool = typer.Option(False, "--yearly", help="Per-year counts."),
    monthly: bool = typer.Option(False, "--monthly", help="Per-month counts."),
    year: Optional[int] = typer.Option(None, "--year", help="Restrict monthly counts to one year."),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
    no_sync: bool = typer.Option(False, "--no-sync", help=NO_SYNC_HELP),
):
    """Show message statistics."""
    from dataclasses import asdict

    from shadowmsg import stats as stats_mod
    from shadowmsg.autosync import last_sync_at
    from shadowmsg.config import load_config
    from shadowmsg.dates import format_date

    config = load_config()
    store = _open_store(config)
    _auto_sync(config, store, no_sync)

    if yearly or monthly:
        periods = (
            stats_mod.yearly(store) if yearly else stats_mod.monthly(store, year)
        )
        store.conn.close()
        if as_json:
            typer.echo(json.dumps([asdict(p) for p in periods], indent=2))
            return
        typer.echo(f"  {'Period':10s}{'Total':>10s}{'Received':>10s}{'Sent':>10s}")
        for p in periods:
            typer.echo(f"  {p.period:10s}{p.total:>10d}{p.received:>10d}{p.sent:>10d}")
        return

    ov = stats_mod.overview(store)
    store.conn.close()
    last = last_sync_at(config.storage.state_path)
    db_path = config.storage.db_path
    size = db_path.stat().st_size if db_path.exists() else 0
    first = format_date(ov.first_date) if ov.first_date is not None else None
    latest = format_date(ov.last_date) if ov.last_date is not None else None

    if as_json:
        typer.echo(json.dumps({
            "messages": {"total": ov.total, "received": ov.received, "sent": ov.sent},
            "handles": ov.handles,
            "contacts": ov.contacts,
            "aliases": ov.aliases,
            "date_range": {"from": first, "to": latest},
            "last_sync": last.isoformat() if last else None,
            "db_size_bytes": size,
        }, indent=2))
        return

    typer.echo("ShadowMSG Statistics")
    typer.echo("─" * 40)
    typer.echo("Messages:")
    typer.echo(f"  Total:     {ov.total}")
    typer.echo(f"  Received:  {ov.received}")
    typer.echo(f"  Sent:      {ov.sent}")
    typer.echo("Data:")
    typer.echo(f"  Handles:   {ov.handles}")
    typer.echo(f"  Contacts:  {ov.contacts}")
    typer.echo(f"  Aliases:   {ov.aliases}")
    typer.echo("Date Range:")
    typer.echo(f"  From: {first or 'N/A'}")
    typer.echo(f"  To:   {latest or 'N/A'}")
    typer.echo("Database:")
    typer.echo(f"  Size:      {size / 1024:.1f} KB")
    typer.echo(f"  Last Sync: {last.isoformat() if last else 'Never'}")

"""Dataclasses mirroring shadow DB tables for type safety."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Handle:
    handle_id: int
    address: str
    service: str | None = None


@dataclass
class Message:
    message_id: int
    guid: str | None = None
    handle_id: int | None = None
    date: int = 0  # nanoseconds since 2001-01-01 UTC
    is_from_me: bool = False
    raw_text: str | None = None
    extracted_text: str | None = None
    tokenized_text: str | None = None
    has_attachments: bool = False
    deleted_at: str | None = None


@dataclass
class Attachment:
    attachment_id: int
    guid: str | None = None
    filename: str | None = None
    mime_type: str | None = None
    total_bytes: int | None = None


@dataclass
class MessageAttachmentLink:
    message_id: int
    attachment_id: int


@dataclass
class Contact:
    phone_normalized: str
    name: str = ""
    organization: str | None = None
    phone_original: str = ""


@dataclass
class SenderAlias:
    phone_normalized: str
    alias: str
    created_at: str | None = None


@dataclass
class SyncWatermark:
    table_name: str
    last_rowid: int = 0
    last_sync_at: str | None = None


@dataclass
class PushWatermark:
    endpoint: str
    last_pushed_rowid: int = 0
    last_push_at: str | None = None
    total_pushed: int = 0


@dataclass
class MessageView:
    """A message joined with its sender's resolved identity."""

    message_id: int
    date: int
    is_from_me: bool
    extracted_text: str | None
    has_attachments: bool = False
    guid: str | None = None
    handle_id: int | None = None
    sender_address: str | None = None
    sender_name: str | None = None  # alias > contact name > organization > address
    service: str | None = None


# --- Source-side rows ---

@dataclass
class SourceMessage:
    """A message row as read from the source store, before decoding."""

    message_id: int
    guid: str | None
    handle_id: int | None
    date: int
    is_from_me: bool
    text: str | None
    attributed_body: bytes | None
    has_attachments: bool


@dataclass
class SourceContact:
    name: str
    organization: str | None
    phone: str


# --- Operation results ---

@dataclass
class CleanupResult:
    status: str  # 'completed' | 'skipped'
    deleted: int = 0
    error: str | None = None

    @property
    def completed(self) -> bool:
        return self.status == "completed"


@dataclass
class ContactImport:
    imported: int = 0
    sources: int = 0
    failed_sources: list[str] = field(default_factory=list)


@dataclass
class SyncResult:
    handles: int = 0
    messages: int = 0
    attachments: int = 0
    links: int = 0
    contacts: int = 0
    cleanup: CleanupResult | None = None

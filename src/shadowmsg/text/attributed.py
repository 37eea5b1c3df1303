"""Plain-text recovery from streamtyped NSAttributedString blobs.

The ``attributedBody`` column of the Messages database holds a serialized
NSAttributedString. The layout is undocumented; what we rely on:

    streamtyped ... NSMutableAttributedString ... NSString
    \\x01\\x95\\x84\\x01 + <length> <utf-8 text> <trailing metadata>

``<length>`` is one byte when below 0x80, otherwise an escape byte followed by
a 2-byte little-endian length. The trailer holds NSDictionary / __kIM*
attribute runs and sometimes an embedded bplist.

Decoding is heuristic. Each strategy returns text or None and the first hit
wins; "no text" is a normal outcome, never an exception.
"""

from __future__ import annotations

import re
from typing import Callable

MIN_BLOB_SIZE = 50

# Object replacement / replacement / non-character sentinels used by Messages
# when the real body lives in attributedBody.
PLACEHOLDERS = frozenset({"\ufffc", "\ufffd", "\ufffe"})

STRING_MARKER = b"NSString"
LENGTH_MARKER = 0x2B  # '+'
LENGTH_ESCAPE_THRESHOLD = 0x80

TERMINATORS: tuple[bytes, ...] = (
    b"\x86\x84",
    b"\x81\x81\x81",
    b"NSDictionary",
    b"__kIM",
    b"NSNumber",
    b"NSValue",
    b"bplist00",
)
CONTROL_RUN = 3

RICH_CARD_MARKER = b"__kIMRichCard"
RICH_CARD_FIELD = b"description"
RICH_CARD_TERMINATORS: tuple[bytes, ...] = (
    b"\x86\x84",
    b"subtitle",
    b"title",
    b"mediaURL",
    b"NSDictionary",
    b"bplist00",
)
MAX_FRAMING_BYTES = 16

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
# Undecodable bytes followed by a short field-name fragment at the very end,
# e.g. "\x81\x81\x81iI" left over from an overlong length prefix.
_RESIDUE = re.compile(r"[\ufffd\x80-\x9f]+[A-Za-z_]{1,12}[^\w\s]{0,3}$")


def decode(raw_text: str | None, raw_blob: bytes | None) -> str | None:
    """Return the best plain text for a message, or None if none is recoverable.

    The plain ``text`` column wins unless it is empty or a placeholder
    sentinel; only then is the binary blob consulted.
    """
    if raw_text:
        trimmed = raw_text.strip()
        if trimmed and trimmed not in PLACEHOLDERS:
            return trimmed

    if not raw_blob:
        return None
    return extract_from_attributed_body(bytes(raw_blob))


def extract_from_attributed_body(blob: bytes) -> str | None:
    """Extract plain text from a streamtyped blob."""
    if not blob or len(blob) < MIN_BLOB_SIZE:
        return None

    for strategy in _STRATEGIES:
        text = strategy(blob)
        if text is not None:
            return text
    return None


def clean_text(text: str | None) -> str | None:
    """Clean already-extracted text for display.

    Rows synced by older versions may still hold raw streamtyped bytes; those
    come back as None so the caller shows "(no content)" instead of garbage.
    """
    if not text:
        return None
    if "streamtyped" in text or "NSMutableAttributedString" in text:
        return None
    return _finish(text)


# --- Strategies ---

def _rich_card(blob: bytes) -> str | None:
    """Rich cards nest the body under a ``description`` field."""
    marker = blob.find(RICH_CARD_MARKER)
    if marker < 0:
        return None

    field_pos = blob.find(RICH_CARD_FIELD, marker)
    if field_pos < 0:
        return None

    pos = field_pos + len(RICH_CARD_FIELD)
    skipped = 0
    while pos < len(blob) and _is_framing(blob[pos]):
        pos += 1
        skipped += 1
        if skipped > MAX_FRAMING_BYTES:
            return None
    if pos >= len(blob):
        return None

    end = _earliest(blob, pos, RICH_CARD_TERMINATORS, field_names=True)
    if end is None:
        end = len(blob)
    while end > pos and _is_control(blob[end - 1]):
        end -= 1
    return _finish(_to_str(blob[pos:end]))


def _length_prefixed(blob: bytes) -> str | None:
    """Read exactly the number of bytes announced by the length prefix."""
    located = _locate_text(blob)
    if located is None:
        return None
    start, length = located
    if length == 0 or start + length > len(blob):
        return None

    span = blob[start:start + length]
    # An overlong prefix can swallow the start of the trailer.
    cut = _earliest(span, 0, TERMINATORS)
    if cut is not None:
        span = span[:cut]
    return _finish(_to_str(span))


def _terminated(blob: bytes) -> str | None:
    """Fallback when the length prefix is unusable: scan for the trailer."""
    located = _locate_text(blob)
    if located is None:
        return None
    start, _ = located

    end = _earliest(blob, start, TERMINATORS)
    control = _find_control_run(blob, start)
    if control is not None and (end is None or control < end):
        end = control
    if end is None:
        end = len(blob)
    while end > start and _is_control(blob[end - 1]):
        end -= 1
    return _finish(_to_str(blob[start:end]))


_STRATEGIES: tuple[Callable[[bytes], str | None], ...] = (
    _rich_card,
    _length_prefixed,
    _terminated,
)


# --- Helpers ---

def _locate_text(blob: bytes) -> tuple[int, int] | None:
    """Return (text_start, announced_length) after the NSString marker."""
    marker = blob.find(STRING_MARKER)
    if marker < 0:
        return None

    pos = blob.find(bytes([LENGTH_MARKER]), marker + len(STRING_MARKER))
    if pos < 0:
        return None
    pos += 1
    if pos >= len(blob):
        return None

    if blob[pos] < LENGTH_ESCAPE_THRESHOLD:
        return pos + 1, blob[pos]

    # escape byte + 2-byte little-endian length
    if pos + 3 > len(blob):
        return None
    return pos + 3, int.from_bytes(blob[pos + 1:pos + 3], "little")


def _earliest(
    buf: bytes, start: int, markers: tuple[bytes, ...], field_names: bool = False
) -> int | None:
    """Position of the earliest marker at or after start; ties go to list order.

    Matches inside a multi-byte UTF-8 character are ignored. With
    ``field_names`` a word marker only counts when a framing byte precedes it,
    so the same word inside the text does not end it.
    """
    best = None
    for marker in markers:
        named = field_names and 0x20 < marker[0] < 0x7F
        idx = buf.find(marker, start)
        while idx >= 0 and not _is_marker_at(buf, idx, named):
            idx = buf.find(marker, idx + 1)
        if idx >= 0 and (best is None or idx < best):
            best = idx
    return best


def _is_marker_at(buf: bytes, idx: int, named: bool) -> bool:
    if named and (idx == 0 or not _is_framing(buf[idx - 1])):
        return False
    return _at_char_boundary(buf, idx)


def _at_char_boundary(buf: bytes, idx: int) -> bool:
    """False when idx falls inside a complete multi-byte UTF-8 sequence."""
    trailing = 0
    while trailing < 3 and idx - trailing > 0 and 0x80 <= buf[idx - trailing - 1] < 0xC0:
        trailing += 1
    if idx - trailing == 0:
        return True
    lead = buf[idx - trailing - 1]
    if lead < 0xC2 or lead > 0xF4:
        # ASCII, or bytes that are not valid UTF-8 anyway
        return True
    needed = 2 if lead < 0xE0 else 3 if lead < 0xF0 else 4
    return trailing + 1 >= needed


def _find_control_run(buf: bytes, start: int) -> int | None:
    run = 0
    for i in range(start, len(buf)):
        if _is_control(buf[i]):
            run += 1
            if run >= CONTROL_RUN:
                return i - CONTROL_RUN + 1
        else:
            run = 0
    return None


def _is_control(byte: int) -> bool:
    return byte < 0x20 and byte not in (0x09, 0x0A, 0x0D)


def _is_framing(byte: int) -> bool:
    # control bytes, DEL, UTF-8 continuation bytes and invalid lead bytes
    return byte < 0x20 or 0x7F <= byte < 0xC2


def _to_str(span: bytes) -> str:
    return span.decode("utf-8", errors="replace")


def _finish(text: str) -> str | None:
    cleaned = _CONTROL_CHARS.sub("", text)
    cleaned = _RESIDUE.sub("", cleaned)
    for sentinel in PLACEHOLDERS:
        cleaned = cleaned.replace(sentinel, "")
    cleaned = cleaned.strip()
    if not cleaned or cleaned in PLACEHOLDERS:
        return None
    return cleaned

"""Per-character tokenization for the short-query FTS index."""

from __future__ import annotations


def to_syllables(text: str) -> str:
    """Space-separate every character: "hello" -> "h e l l o".

    unicode61 then indexes each character as its own token, which keeps
    one- and two-character Hangul/CJK queries searchable where trigrams can't.
    """
    return " ".join(text)

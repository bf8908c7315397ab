"""User query interpretation.

Decides whether a free-form user query is an email, a handle (username) or a
human name, and produces Latin-script candidates for non-Latin input.
Everything here is pure and network-free.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from unidecode import unidecode

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_WHITESPACE_RE = re.compile(r"\s+")

HANDLE_MIN_LENGTH = 3
HANDLE_MAX_LENGTH = 30
_HANDLE_PUNCTUATION = frozenset("._-")

# Basic Latin block (U+0000..U+007F).
_BASIC_LATIN_MAX = 0x7F


class QueryType(str, Enum):
    """How a user query is interpreted."""

    EMAIL = "email"
    HANDLE = "handle"
    NAME = "name"


@dataclass(frozen=True, slots=True)
class ClassifiedPattern:
    """Result of classifying one query; computed once per search."""

    type: QueryType
    has_transliteration: bool
    original_query: str

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.type.value,
            "hasTransliteration": self.has_transliteration,
            "originalQuery": self.original_query,
        }


def has_non_latin(text: str) -> bool:
    """Return True if any character lies outside the basic Latin block."""
    return any(ord(ch) > _BASIC_LATIN_MAX for ch in text)


def _is_handle_char(ch: str) -> bool:
    return ch.isalpha() or ch.isdigit() or ch in _HANDLE_PUNCTUATION


def is_handle_shaped(text: str) -> bool:
    """Return True for a single token of letters, digits, ``.``, ``-`` and ``_``."""
    if not HANDLE_MIN_LENGTH <= len(text) <= HANDLE_MAX_LENGTH:
        return False
    return all(_is_handle_char(ch) for ch in text)


def classify_query(query: str) -> ClassifiedPattern:
    """Classify a raw query.

    Total: every string maps to exactly one type. The empty (or blank) query is a
    ``name`` query with no transliteration. Handles are 3..30 characters;
    shorter or longer single tokens are searched as names.
    """
    trimmed = query.strip()

    if _EMAIL_RE.match(trimmed):
        query_type = QueryType.EMAIL
    elif is_handle_shaped(trimmed):
        query_type = QueryType.HANDLE
    else:
        query_type = QueryType.NAME

    return ClassifiedPattern(
        type=query_type,
        # Surrounding whitespace counts: a trailing U+00A0 still flags the query.
        has_transliteration=has_non_latin(query),
        original_query=trimmed,
    )


def transliterate_text(text: str) -> str:
    """Render text in Latin script with whitespace collapsed.

    Characters without a table entry are dropped, so the result may be empty.
    """
    latin = unidecode(text)
    return _WHITESPACE_RE.sub(" ", latin).strip()


def transliteration_candidates(text: str) -> list[str]:
    """Return search candidates for a non-Latin query, original first.

    The transliterated form is appended only when it is non-empty and differs
    from the original.
    """
    candidates = [text]
    latin = transliterate_text(text)
    if latin and latin not in candidates:
        candidates.append(latin)
    return candidates

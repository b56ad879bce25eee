"""Tier 1: keyword blocklist matching.

Matching is case-insensitive **substring** matching by default, so the term
``ass`` also matches inside ``class``.  That trades false positives for
catching obfuscated spellings glued to other words; communities that see
too many false positives can switch ``match_whole_word`` on, which only
matches terms at word boundaries.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Any, Iterable

from tiermod.moderation.models import BlocklistResult


def normalize_terms(terms: Iterable[Any] | None) -> list[str]:
    """Trim, lowercase and de-duplicate terms, dropping anything unusable."""
    if not terms or isinstance(terms, (str, bytes)):
        return []
    seen: set[str] = set()
    result: list[str] = []
    for term in terms:
        if not isinstance(term, str):
            continue
        cleaned = " ".join(term.split()).lower()
        if cleaned and cleaned not in seen:
            seen.add(cleaned)
            result.append(cleaned)
    return result


@lru_cache(maxsize=4096)
def _word_pattern(term: str) -> re.Pattern[str]:
    return re.compile(rf"(?<!\w){re.escape(term)}(?!\w)")


def match_blocklist(
    text: str | None,
    terms: Iterable[Any] | None,
    whole_word: bool = False,
) -> BlocklistResult:
    """Return every blocklist term found in *text*.

    Never raises: empty text or a malformed term list is a non-match.
    """
    if not text or not isinstance(text, str):
        return BlocklistResult()

    haystack = text.lower()
    matches: list[str] = []
    for term in normalize_terms(terms):
        if whole_word:
            found = _word_pattern(term).search(haystack) is not None
        else:
            found = term in haystack
        if found:
            matches.append(term)
    return BlocklistResult(matched=bool(matches), matches=matches)

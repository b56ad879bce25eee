"""Bounded, time-limited cache of link-reputation verdicts."""

from __future__ import annotations

import time
from typing import Callable, Optional

from cachetools import TTLCache

from tiermod.moderation.models import Verdict

DEFAULT_TTL_SECONDS = 6 * 60 * 60
DEFAULT_MAX_ENTRIES = 2048


class VerdictCache:
    """URL → verdict cache with TTL eviction.

    Only definitive verdicts are stored; ``unknown`` means the lookup failed
    and should be retried the next time the URL shows up.  *clock* is any
    zero-argument callable returning seconds and exists so tests can move
    time forward deterministically.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self._entries: TTLCache = TTLCache(maxsize=max_entries, ttl=ttl, timer=clock)

    def get(self, url: str) -> Optional[Verdict]:
        entry = self._entries.get(url)
        return entry[0] if entry else None

    def lookup(self, url: str) -> Optional[tuple[Verdict, bool]]:
        """Return ``(verdict, suspicious)`` for *url*, or None when absent."""
        return self._entries.get(url)

    def put(self, url: str, verdict: Verdict, suspicious: bool = False) -> None:
        if verdict in (Verdict.MALICIOUS, Verdict.CLEAN):
            self._entries[url] = (verdict, suspicious)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        self._entries.expire()
        return len(self._entries)

    def __contains__(self, url: str) -> bool:
        return url in self._entries

"""Process-scoped quote cache with size cap and TTL.

Constructed once per process (see api.factory.create_app) and injected into
handlers, so tests get an isolated cache and a controllable clock.

Entries expire by wall-clock TTL whether or not they are read again. When
the cache is full the oldest write is evicted first.

ARI changes retire a property's entries: they no longer answer quote
requests, but the quotes they hold stay redeemable by id until they
expire. The booking commit re-checks restrictions and inventory under
lock, so a retired quote can never oversell.
"""

from __future__ import annotations

import os
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Iterable

from staybook.infra.hashing import stable_key
from staybook.infra.time import Clock, utc_now

if TYPE_CHECKING:
    from staybook.domain.quote import Quote

DEFAULT_TTL_SECONDS = 300
DEFAULT_MAX_ENTRIES = 100


def quote_cache_key(
    property_id: str,
    checkin: date,
    checkout: date,
    adults: int,
    children: int,
    room_type_codes: Iterable[str] | None = None,
    children_ages: Iterable[int] | None = None,
) -> str:
    """Deterministic key for a quote request.

    hotelId:checkIn:checkOut:adults:children:sortedRoomTypes (or "all"),
    hashed. Children's ages, when given, change the price and are appended.
    """
    codes = sorted(set(room_type_codes or ()))
    parts: list[object] = [
        property_id,
        checkin.isoformat(),
        checkout.isoformat(),
        adults,
        children,
        ",".join(codes) if codes else "all",
    ]
    if children_ages:
        parts.append(",".join(str(age) for age in children_ages))
    return stable_key(*parts)


@dataclass
class _Entry:
    property_id: str
    quotes: list[Quote]
    expires_at: datetime


class QuoteCache:
    """Bounded, TTL-aware store of generated quotes.

    Thread-safe: sync routes run in a threadpool and share one instance.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Clock = utc_now,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        # Issued quotes whose request entry was invalidated, oldest first
        self._retired: list[_Entry] = []
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @classmethod
    def from_env(cls, clock: Clock = utc_now) -> QuoteCache:
        """Build a cache sized by QUOTE_CACHE_TTL_SECONDS / QUOTE_CACHE_MAX_ENTRIES."""
        return cls(
            ttl_seconds=int(os.environ.get("QUOTE_CACHE_TTL_SECONDS", DEFAULT_TTL_SECONDS)),
            max_entries=int(os.environ.get("QUOTE_CACHE_MAX_ENTRIES", DEFAULT_MAX_ENTRIES)),
            clock=clock,
        )

    def now(self) -> datetime:
        return self._clock()

    def get(self, key: str) -> list[Quote] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expires_at <= self._clock():
                del self._entries[key]
                entry = None
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            return list(entry.quotes)

    def set(self, key: str, property_id: str, quotes: list[Quote]) -> None:
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            # Re-writing a key counts as a fresh write for eviction order
            self._entries.pop(key, None)
            while len(self._entries) + len(self._retired) >= self.max_entries:
                if self._retired:
                    self._retired.pop(0)
                else:
                    self._entries.popitem(last=False)
                self._evictions += 1
            self._entries[key] = _Entry(
                property_id=property_id,
                quotes=list(quotes),
                expires_at=now + self.ttl,
            )

    def find_quote(self, property_id: str, quote_id: str) -> Quote | None:
        """Look up a live quote by id within a property."""
        with self._lock:
            now = self._clock()
            for entry in [*self._entries.values(), *self._retired]:
                if entry.property_id != property_id or entry.expires_at <= now:
                    continue
                for quote in entry.quotes:
                    if quote.quote_id == quote_id:
                        return quote
            return None

    def invalidate_property(self, property_id: str) -> int:
        """Stop answering quote requests for a property from the cache.

        Already issued quotes stay findable by id until they expire.
        Returns how many request entries were retired.
        """
        with self._lock:
            stale = [k for k, e in self._entries.items() if e.property_id == property_id]
            for key in stale:
                entry = self._entries.pop(key)
                if entry.quotes:
                    self._retired.append(entry)
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._retired.clear()

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "retired": len(self._retired),
                "maxEntries": self.max_entries,
                "ttlSeconds": int(self.ttl.total_seconds()),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def _purge_expired(self, now: datetime) -> None:
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]
        self._retired = [e for e in self._retired if e.expires_at > now]

"""Prefetch cache — pre-rendered routes waiting to be navigated to.

Entries are whole values: put and evict only, never patched.  Lookups
count as requests for eviction order, so the least recently requested
entry goes first when the cache is full.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from perch.metadata.record import MetadataRecord
from perch.routing.resolver import MatchChain


@dataclass(frozen=True, slots=True)
class PrefetchCacheEntry:
    """A pre-rendered route, keyed by its resolved path."""

    key: str
    chain: MatchChain
    html: str
    metadata: MetadataRecord
    data: Mapping[int, Any] = field(default_factory=lambda: MappingProxyType({}))
    created: float = 0.0


class PrefetchCache:
    """Bounded, time-limited store of :class:`PrefetchCacheEntry`."""

    __slots__ = ("_entries", "max_size", "ttl")

    def __init__(self, *, max_size: int = 32, ttl: float = 30.0) -> None:
        self.max_size = max_size
        self.ttl = ttl
        self._entries: OrderedDict[str, PrefetchCacheEntry] = OrderedDict()

    def get(self, key: str, now: float) -> PrefetchCacheEntry | None:
        """Return a fresh entry, dropping it if it went stale."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if now - entry.created >= self.ttl:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry

    def put(self, entry: PrefetchCacheEntry) -> None:
        self._entries[entry.key] = entry
        self._entries.move_to_end(entry.key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def discard(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

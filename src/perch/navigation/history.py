"""History stack — browser-style entries with a current pointer."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from perch.metadata.record import MetadataRecord
from perch.routing.resolver import MatchChain


@dataclass(frozen=True, slots=True)
class NavigationEntry:
    """One committed navigation.

    Attributes:
        url: Requested URL (path plus query).
        chain: The chain rendered for *url* (empty for the default 404 page).
        scroll_position: Scroll offset to restore on back/forward.
        timestamp: Clock value when the snapshot data was loaded.
        html: The rendered document.
        metadata: Resolved head metadata.
        data: Loaded data by chain position.
        status: Status of the render (200 or 404; 500 for failures).
    """

    url: str
    chain: MatchChain
    scroll_position: float = 0.0
    timestamp: float = 0.0
    html: str = ""
    metadata: MetadataRecord = field(default_factory=MetadataRecord)
    data: Mapping[int, Any] = field(default_factory=lambda: MappingProxyType({}))
    status: int = 200


class HistoryStack:
    """Ordered entries plus a pointer to the current one.

    Pushing truncates everything past the pointer.  The oldest entries
    are dropped once *limit* is exceeded.
    """

    __slots__ = ("_entries", "_index", "limit")

    def __init__(self, limit: int = 50) -> None:
        if limit < 1:
            msg = f"history limit must be positive, got {limit}"
            raise ValueError(msg)
        self.limit = limit
        self._entries: list[NavigationEntry] = []
        self._index = -1

    @property
    def current(self) -> NavigationEntry | None:
        return self._entries[self._index] if self._index >= 0 else None

    @property
    def index(self) -> int:
        return self._index

    @property
    def can_go_back(self) -> bool:
        return self._index > 0

    @property
    def can_go_forward(self) -> bool:
        return self._index < len(self._entries) - 1

    def peek(self, delta: int) -> NavigationEntry | None:
        """The entry *delta* steps from the pointer, without moving."""
        target = self._index + delta
        if self._index < 0 or not 0 <= target < len(self._entries):
            return None
        return self._entries[target]

    def push(self, entry: NavigationEntry) -> None:
        del self._entries[self._index + 1 :]
        self._entries.append(entry)
        overflow = len(self._entries) - self.limit
        if overflow > 0:
            del self._entries[:overflow]
        self._index = len(self._entries) - 1

    def replace(self, entry: NavigationEntry) -> None:
        """Swap the current entry in place (push when empty)."""
        if self._index < 0:
            self.push(entry)
        else:
            self._entries[self._index] = entry

    def go(self, delta: int) -> NavigationEntry:
        """Move the pointer by *delta*."""
        if self.peek(delta) is None:
            msg = f"No history entry {delta:+d} from position {self._index}"
            raise IndexError(msg)
        self._index += delta
        return self._entries[self._index]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[NavigationEntry]:
        return iter(self._entries)

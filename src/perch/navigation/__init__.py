"""Client-side navigation: history, prefetching, soft refresh."""

from perch.navigation.history import HistoryStack, NavigationEntry
from perch.navigation.prefetch import PrefetchCache, PrefetchCacheEntry
from perch.navigation.router import NavigationResult, NavigationRouter

__all__ = [
    "HistoryStack",
    "NavigationEntry",
    "NavigationResult",
    "NavigationRouter",
    "PrefetchCache",
    "PrefetchCacheEntry",
]

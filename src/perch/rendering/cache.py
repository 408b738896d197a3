"""Per-pass data-fetch cache with request deduplication.

One :class:`RequestCache` is created at the start of a render pass
(server) or navigation (client) and closed at its end.  Identical
``fetch(key, params)`` calls made by different nodes in the same pass
share one call to the data layer, including calls that are still in
flight.  Nothing is shared across passes.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Hashable, Mapping
from typing import Any

import anyio

from perch._internal.invoke import invoke

logger = logging.getLogger("perch.render")

Fetcher = Callable[[str, Mapping[str, Any]], Any | Awaitable[Any]]


def request_signature(key: str, params: Mapping[str, Any] | None) -> tuple[str, Hashable]:
    """Hashable identity of a fetch request.

    Mappings compare regardless of insertion order; lists compare as tuples.
    """
    return key, _freeze(params or {})


def _freeze(value: Any) -> Hashable:
    if isinstance(value, Mapping):
        return tuple(sorted((str(k), _freeze(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_freeze(v) for v in value)
    return value


class _Pending:
    """One in-flight or settled fetch."""

    __slots__ = ("error", "event", "value")

    def __init__(self) -> None:
        self.event = anyio.Event()
        self.value: Any = None
        self.error: Exception | None = None


class RequestCache:
    """Deduplicating fetch cache scoped to one render pass.

    Usage::

        cache = RequestCache(fetcher)
        a, b = await cache.fetch("user", {"id": 1}), await cache.fetch("user", {"id": 1})
        assert cache.calls == 1
        cache.close()
    """

    __slots__ = ("_closed", "_entries", "_fetcher", "calls")

    def __init__(self, fetcher: Fetcher | None) -> None:
        self._fetcher = fetcher
        self._entries: dict[tuple[str, Hashable], _Pending] = {}
        self._closed = False
        self.calls = 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def fetch(self, key: str, params: Mapping[str, Any] | None = None) -> Any:
        """Fetch *key* with *params*, sharing the result within this pass.

        Raises:
            RuntimeError: If the pass has ended or no fetcher is configured.
        """
        if self._fetcher is None:
            msg = f"Fetch of {key!r} requires a data fetcher; pass fetcher= to the app"
            raise RuntimeError(msg)

        signature = request_signature(key, params)
        while True:
            if self._closed:
                msg = f"Fetch of {key!r} after the render pass ended"
                raise RuntimeError(msg)
            pending = self._entries.get(signature)
            if pending is None:
                return await self._run(signature, key, params or {})
            await pending.event.wait()
            if self._entries.get(signature) is pending:
                if pending.error is not None:
                    raise pending.error
                return pending.value
            # The owning call was cancelled before settling; fetch again.

    async def _run(
        self,
        signature: tuple[str, Hashable],
        key: str,
        params: Mapping[str, Any],
    ) -> Any:
        pending = _Pending()
        self._entries[signature] = pending
        self.calls += 1
        try:
            pending.value = await invoke(self._fetcher, key, params)
        except Exception as exc:
            pending.error = exc
            raise
        except BaseException:
            if self._entries.get(signature) is pending:
                del self._entries[signature]
            raise
        finally:
            pending.event.set()
        logger.debug("fetch %s %r", key, dict(params))
        return pending.value

    def close(self) -> None:
        """End the pass: drop all results and refuse further fetches."""
        self._closed = True
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

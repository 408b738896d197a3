"""Render pass — one request-scoped evaluation of a match chain.

Starts every node's data dependency concurrently, lets compositions
await them root to leaf, and owns the pass-scoped fetch cache::

    async with anyio.create_task_group() as tg:
        rpass = RenderPass(chain, fetcher=fetch)
        rpass.start(tg)
        post = await rpass.data(2)       # waits only for node 2
    rpass.close()

Loaders receive arguments by name: path params (with ``int``/``float``
annotation coercion), ``params``, ``search_params``, and ``fetch``::

    async def load(slug: str, fetch):
        return await fetch("post", {"slug": slug})

A loader may return a signal (``not_found()``, ``redirect(...)``).
Exceptions become ``ErrorSignal`` values; they never escape the pass.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import anyio
from anyio.abc import TaskGroup

from perch._internal.invoke import invoke_injected
from perch.errors import RenderError
from perch.rendering.cache import Fetcher, RequestCache
from perch.rendering.signals import ErrorSignal, is_signal
from perch.routing.node import ParamValue
from perch.routing.resolver import MatchChain

logger = logging.getLogger("perch.render")


class _DataSlot:
    __slots__ = ("event", "value")

    def __init__(self) -> None:
        self.event = anyio.Event()
        self.value: Any = None

    def settle(self, value: Any) -> None:
        self.value = value
        self.event.set()


class RenderPass:
    """Data dependencies and per-pass state for one chain.

    Attributes:
        chain: The chain being rendered.
        cache: Deduplicating fetch cache for this pass only.
        not_found: Set when any not-found signal was raised.
        errors: Errors recovered by an ``error`` slot.
    """

    __slots__ = ("_params", "_slots", "cache", "chain", "errors", "not_found", "reused")

    def __init__(
        self,
        chain: MatchChain,
        *,
        fetcher: Fetcher | None = None,
        reuse: Mapping[int, Any] | None = None,
    ) -> None:
        self.chain = chain
        self.cache = RequestCache(fetcher)
        self.not_found = False
        self.errors: list[RenderError] = []
        self.reused = frozenset(reuse or ())
        self._slots = [_DataSlot() for _ in chain.segments]
        self._params = [chain.params_through(i) for i in range(len(chain.segments))]
        for index, value in (reuse or {}).items():
            if 0 <= index < len(self._slots):
                self._slots[index].settle(value)

    def start(self, tg: TaskGroup) -> None:
        """Issue every pending data dependency concurrently."""
        for index, seg in enumerate(self.chain.segments):
            slot = self._slots[index]
            if slot.event.is_set():
                continue
            if seg.node.load is None:
                slot.settle(None)
            else:
                tg.start_soon(self._load, index, name=f"load:{seg.node.name or '/'}")

    async def _load(self, index: int) -> None:
        node = self.chain.segments[index].node
        try:
            value = await invoke_injected(node.load, self.injectable(index))
        except Exception as exc:
            logger.exception("Data dependency of %r failed", node.name or "/")
            value = ErrorSignal(RenderError.wrap(exc, node=node, slot="load"))
        self._slots[index].settle(value)

    def injectable(self, index: int) -> dict[str, Any]:
        params = self._params[index]
        return {
            **params,
            "params": params,
            "search_params": self.chain.query,
            "fetch": self.cache.fetch,
        }

    def params_through(self, index: int) -> Mapping[str, ParamValue]:
        return self._params[index]

    async def data(self, index: int) -> Any:
        """The node's data, waiting for it if needed. May be a signal."""
        slot = self._slots[index]
        await slot.event.wait()
        return slot.value

    def ready(self, indices: Iterable[int]) -> bool:
        return all(self._slots[i].event.is_set() for i in indices)

    def loaded(self) -> dict[int, Any]:
        """Settled, non-signal data by chain position (for reuse snapshots)."""
        return {
            i: slot.value
            for i, slot in enumerate(self._slots)
            if slot.event.is_set() and not is_signal(slot.value)
        }

    def close(self) -> None:
        self.cache.close()

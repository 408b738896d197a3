"""Client navigation router.

Drives resolve + render repeatedly without a document reload, keeping
layout instances mounted across navigations::

    async with NavigationRouter(tree, fetcher=fetch) as nav:
        await nav.navigate("/dashboard")
        await nav.navigate("/dashboard/settings")   # dashboard layout stays
        await nav.back()
        await nav.refresh()

Only one navigation is active: starting another cancels the previous
one's scope.  A superseded operation never commits, so its late data
never reaches history, mounts or the prefetch cache.  Commits are
synchronous under a lock.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any, Literal

import anyio
from anyio.abc import TaskGroup

from perch._internal.invoke import accepts
from perch.config import RouterConfig
from perch.errors import RenderError, RouteNotFoundError
from perch.navigation.history import HistoryStack, NavigationEntry
from perch.navigation.prefetch import PrefetchCache, PrefetchCacheEntry
from perch.rendering.cache import Fetcher
from perch.rendering.instances import MountPlan, MountRegistry, SlotInstance
from perch.rendering.pipeline import RenderPipeline, RenderResult
from perch.rendering.slots import SlotRenderer
from perch.routing.builder import RouteTree
from perch.routing.node import SlotKind
from perch.routing.resolver import MatchChain, resolve

logger = logging.getLogger("perch.navigation")

Mode = Literal["push", "replace"]
ReuseFor = Callable[[MatchChain], Mapping[int, Any]]


@dataclass(frozen=True, slots=True)
class NavigationResult:
    """What a navigation operation did.

    Attributes:
        url: Final URL after redirects.
        entry: The committed history entry (``None`` if not committed).
        superseded: A newer operation cancelled this one.
        document: The URL is answered by a protocol handler and needs a
            full document request.
        redirects: URLs redirected away from, in order.
    """

    url: str
    entry: NavigationEntry | None = None
    superseded: bool = False
    document: bool = False
    redirects: tuple[str, ...] = ()

    @property
    def committed(self) -> bool:
        return self.entry is not None

    @property
    def status(self) -> int | None:
        return self.entry.status if self.entry is not None else None

    @property
    def html(self) -> str:
        return self.entry.html if self.entry is not None else ""


class _HandlerRoute(Exception):
    """Internal: the resolved leaf answers with a protocol handler."""


class NavigationRouter:
    """History, prefetching and soft refresh over one route tree."""

    def __init__(
        self,
        tree: RouteTree,
        *,
        renderer: SlotRenderer | None = None,
        fetcher: Fetcher | None = None,
        config: RouterConfig | None = None,
        pipeline: RenderPipeline | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or RouterConfig()
        self.pipeline = pipeline or RenderPipeline(
            tree, renderer=renderer, fetcher=fetcher, config=self.config
        )
        self.tree = tree
        self.registry = MountRegistry(self.pipeline.renderer)
        self.history = HistoryStack(self.config.history_limit)
        self.prefetch_cache = PrefetchCache(
            max_size=self.config.prefetch_cache_size, ttl=self.config.prefetch_ttl
        )
        self._clock = clock
        self._lock = anyio.Lock()
        self._limiter = anyio.CapacityLimiter(self.config.prefetch_concurrency)
        self._active: anyio.CancelScope | None = None
        self._traversal: int | None = None
        self._counter = 0
        self._sequence = 0
        self._generation = 0
        self._prefetching: set[str] = set()
        self._tg: TaskGroup | None = None

    async def __aenter__(self) -> NavigationRouter:
        self._tg = anyio.create_task_group()
        await self._tg.__aenter__()
        return self

    async def __aexit__(self, *args: Any) -> bool | None:
        assert self._tg is not None
        self._tg.cancel_scope.cancel()
        try:
            return await self._tg.__aexit__(*args)
        finally:
            self._tg = None

    # -- State --

    @property
    def current(self) -> NavigationEntry | None:
        return self.history.current

    @property
    def html(self) -> str:
        entry = self.history.current
        return entry.html if entry is not None else ""

    @property
    def mounted(self) -> tuple[SlotInstance, ...]:
        return self.registry.mounted

    @property
    def sequence(self) -> int:
        """Navigation sequence of the committed view."""
        return self._sequence

    # -- Operations --

    async def navigate(
        self, url: str, *, mode: Mode = "push", scroll: float = 0.0
    ) -> NavigationResult:
        """Resolve and render *url*, then push or replace the history entry."""
        if mode not in ("push", "replace"):
            msg = f"mode must be 'push' or 'replace', got {mode!r}"
            raise ValueError(msg)

        def apply(entry: NavigationEntry) -> None:
            if mode == "push":
                self.history.push(entry)
            else:
                self.history.replace(entry)

        self._traversal = None
        logger.debug("navigate %s (%s)", url, mode)
        return await self._supersede(
            url, self._next_sequence(), self._reuse_for, apply, scroll=scroll
        )

    async def back(self) -> NavigationResult:
        return await self._traverse(-1)

    async def forward(self) -> NavigationResult:
        return await self._traverse(1)

    async def refresh(self) -> NavigationResult:
        """Re-run every loader and the metadata of the current view.

        Uses the committed navigation sequence, so no layout or template
        instance is unmounted.  Clears the prefetch cache.
        """
        current = self.history.current
        if current is None:
            msg = "Nothing to refresh: no navigation has been committed"
            raise RuntimeError(msg)
        self.prefetch_cache.clear()
        self._generation += 1
        logger.debug("refresh %s", current.url)
        self._traversal = None
        return await self._supersede(
            current.url, self._sequence, None, self.history.replace,
            scroll=current.scroll_position,
        )

    async def prefetch(self, url: str) -> PrefetchCacheEntry | None:
        """Render *url* into the prefetch cache without mounting it.

        Returns the cached entry, or ``None`` when the URL cannot be
        prefetched (not found, handler route, redirect or failure).
        """
        try:
            chain = resolve(self.tree, url)
        except RouteNotFoundError:
            return None
        if not chain.leaf.has(SlotKind.PAGE):
            return None
        key = chain.url
        cached = self.prefetch_cache.get(key, self._clock())
        if cached is not None:
            return cached

        generation = self._generation
        async with self._limiter:
            created = self._clock()
            result = await self.pipeline.render(chain)
        if not result.ok or result.status != 200:
            logger.debug("prefetch %s not cached (status %d)", key, result.status)
            return None
        if generation != self._generation:
            return None
        entry = PrefetchCacheEntry(
            key=key,
            chain=result.chain,
            html=result.html,
            metadata=result.metadata,
            data=result.data,
            created=created,
        )
        self.prefetch_cache.put(entry)
        logger.debug("prefetched %s", key)
        return entry

    def link_visible(self, url: str) -> None:
        """A link to *url* became visible: prefetch it in the background."""
        if self._tg is None:
            msg = "NavigationRouter must be used as an async context manager to prefetch"
            raise RuntimeError(msg)
        if url in self._prefetching:
            return
        self._prefetching.add(url)
        self._tg.start_soon(self._prefetch_background, url, name=f"prefetch:{url}")

    def record_scroll(self, position: float) -> None:
        """Remember the scroll offset of the current entry."""
        current = self.history.current
        if current is not None:
            self.history.replace(replace(current, scroll_position=position))

    # -- Internals --

    async def _prefetch_background(self, url: str) -> None:
        try:
            await self.prefetch(url)
        except Exception:
            logger.exception("Prefetch of %s failed", url)
        finally:
            self._prefetching.discard(url)

    async def _traverse(self, delta: int) -> NavigationResult:
        base = self.history.index if self._traversal is None else self._traversal
        index = base + delta
        target = self.history.peek(index - self.history.index)
        if target is None:
            msg = f"No history entry {delta:+d} from the current one"
            raise IndexError(msg)

        age = self._clock() - target.timestamp
        fresh = age < self.config.snapshot_ttl
        snapshot = target.data

        def apply(entry: NavigationEntry) -> None:
            self.history.go(index - self.history.index)
            self.history.replace(entry)

        logger.debug(
            "traverse %+d to %s (%s snapshot)", delta, target.url, "fresh" if fresh else "stale"
        )
        # Pending target; a traversal issued before this one settles steps from here.
        self._traversal = index
        try:
            return await self._supersede(
                target.url,
                self._next_sequence(),
                (lambda _chain: snapshot) if fresh else None,
                apply,
                scroll=target.scroll_position,
                timestamp=target.timestamp if fresh else None,
            )
        finally:
            if self._traversal == index:
                self._traversal = None

    def _next_sequence(self) -> int:
        self._counter += 1
        return self._counter

    async def _supersede(
        self,
        url: str,
        sequence: int,
        reuse_for: ReuseFor | None,
        apply: Callable[[NavigationEntry], None],
        *,
        scroll: float,
        timestamp: float | None = None,
    ) -> NavigationResult:
        if self._active is not None:
            self._active.cancel()
        scope = anyio.CancelScope()
        self._active = scope
        outcome: NavigationResult | None = None
        try:
            with scope:
                outcome = await self._run(
                    url, sequence, reuse_for, apply, scope, scroll=scroll, timestamp=timestamp
                )
        finally:
            if self._active is scope:
                self._active = None
        if outcome is None:
            logger.debug("navigation to %s superseded", url)
            return NavigationResult(url, superseded=True)
        return outcome

    async def _run(
        self,
        url: str,
        sequence: int,
        reuse_for: ReuseFor | None,
        apply: Callable[[NavigationEntry], None],
        scope: anyio.CancelScope,
        *,
        scroll: float,
        timestamp: float | None,
    ) -> NavigationResult | None:
        redirects: list[str] = []
        while True:
            started = self._clock()
            try:
                result, plan = await self._render(url, sequence, reuse_for)
            except _HandlerRoute:
                return NavigationResult(url, document=True, redirects=tuple(redirects))

            if result.redirect is None:
                break
            redirects.append(url)
            if len(redirects) > self.config.max_redirects:
                msg = f"Too many redirects navigating to {redirects[0]!r}"
                raise RenderError(msg)
            url = result.redirect.location
            reuse_for = self._reuse_for
            timestamp = None

        entry = NavigationEntry(
            url=url,
            chain=result.chain,
            scroll_position=scroll,
            timestamp=started if timestamp is None else timestamp,
            html=result.html,
            metadata=result.metadata,
            data=result.data,
            status=result.status,
        )
        async with self._lock:
            if scope.cancel_called:
                return None
            self.registry.commit(plan)
            apply(entry)
            self._sequence = sequence
        logger.info("navigated to %s (%d)", url, result.status)
        return NavigationResult(url, entry=entry, redirects=tuple(redirects))

    async def _render(
        self, url: str, sequence: int, reuse_for: ReuseFor | None
    ) -> tuple[RenderResult, MountPlan]:
        try:
            chain = resolve(self.tree, url)
        except RouteNotFoundError as exc:
            cut = self.pipeline.not_found_chain(exc)
            plan = self.registry.plan(cut.nodes if cut is not None else (), sequence)
            return await self.pipeline.render_not_found(exc, plan=plan), plan

        if not chain.leaf.has(SlotKind.PAGE):
            raise _HandlerRoute(url)

        reuse = reuse_for(chain) if reuse_for is not None else None
        plan = self.registry.plan(chain.nodes, sequence)
        result = await self.pipeline.render(chain, plan=plan, reuse=reuse)
        if result.failure is not None:
            plan = self.registry.plan((), sequence)
        return result, plan

    def _reuse_for(self, chain: MatchChain) -> dict[int, Any]:
        """Data that can be reused for *chain* without reloading.

        A fresh prefetch of the same URL covers every position; otherwise
        the unchanged prefix of the current chain (same node, same
        accumulated params) is reused.  A changed query string stops reuse at
        the first loader that takes ``search_params``.
        """
        prefetched = self.prefetch_cache.get(chain.url, self._clock())
        if prefetched is not None:
            logger.debug("using prefetched data for %s", chain.url)
            return dict(prefetched.data)

        current = self.history.current
        if current is None:
            return {}
        query_changed = chain.search_params != current.chain.search_params
        reuse: dict[int, Any] = {}
        for i in range(chain.shared_prefix(current.chain)):
            if chain.params_through(i) != current.chain.params_through(i):
                break
            load = chain.segments[i].node.load
            if query_changed and load is not None and accepts(load, "search_params"):
                break
            if i in current.data:
                reuse[i] = current.data[i]
        return reuse

"""Render pipeline — compose a match chain into one document.

Per node, outermost first::

    Layout
      Template
        ErrorBoundary(error)
          NotFoundBoundary(notFound)
            Suspense(loading)
              child composition | Page (leaf)

A node's data dependency is awaited where its first consumer sits: at
the top when the node has a layout or template (a failure there is
handled by an ancestor boundary, since the wrapper cannot render), or
inside the node's own boundaries otherwise.

:meth:`RenderPipeline.render` awaits everything and returns the whole
document.  :meth:`RenderPipeline.stream` sends the shell as soon as the
outer composition is ready and streams suspended subtrees afterwards.
"""

from __future__ import annotations

import html as html_module
import logging
from collections.abc import Awaitable, Callable, Mapping
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import anyio
from anyio.abc import TaskGroup

from perch._internal.invoke import invoke
from perch.config import RouterConfig
from perch.errors import RenderError, RouteNotFoundError
from perch.metadata.head import inject_head
from perch.metadata.record import MetadataRecord
from perch.metadata.resolver import MetadataResolver
from perch.rendering.cache import Fetcher
from perch.rendering.context import RenderPass
from perch.rendering.instances import MountPlan, MountRegistry
from perch.rendering.signals import (
    Continue,
    ErrorSignal,
    NotFoundSignal,
    Outcome,
    RedirectSignal,
    is_signal,
)
from perch.rendering.slots import DefaultSlotRenderer, RenderProps, SlotRenderer
from perch.rendering.suspense import (
    Deferred,
    current_deferred,
    format_redirect_chunk,
    format_swap_chunk,
    placeholder,
)
from perch.routing.builder import RouteTree
from perch.routing.node import SlotKind
from perch.routing.resolver import MatchChain, find_not_found_boundary

logger = logging.getLogger("perch.render")

Send = Callable[[str], Awaitable[None]]

_UNSET: Any = object()


@dataclass(frozen=True, slots=True)
class RenderResult:
    """Outcome of one render pass.

    Attributes:
        chain: The chain that was rendered.
        html: Composed document (empty on redirect).
        status: 200, 404 when a not-found signal fired, 500 on failure.
        metadata: Resolved head metadata.
        redirect: Set when the render ended in a redirect.
        failure: Error that reached the root unhandled.
        errors: Errors recovered by ``error`` slots.
        data: Loaded data by chain position, for reuse on later passes.
    """

    chain: MatchChain
    html: str = ""
    status: int = 200
    metadata: MetadataRecord = field(default_factory=MetadataRecord)
    redirect: RedirectSignal | None = None
    failure: RenderError | None = None
    errors: tuple[RenderError, ...] = ()
    data: Mapping[int, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def ok(self) -> bool:
        return self.redirect is None and self.failure is None


class RenderPipeline:
    """Compose match chains using a slot renderer and a data fetcher.

    Usage::

        pipeline = RenderPipeline(tree, fetcher=fetch)
        result = await pipeline.render(resolve(tree, "/blog/intro"))
    """

    __slots__ = ("config", "fetcher", "metadata", "renderer", "tree")

    def __init__(
        self,
        tree: RouteTree,
        *,
        renderer: SlotRenderer | None = None,
        fetcher: Fetcher | None = None,
        config: RouterConfig | None = None,
    ) -> None:
        self.tree = tree
        self.renderer = renderer or DefaultSlotRenderer()
        self.fetcher = fetcher
        self.config = config or RouterConfig()
        self.metadata = MetadataResolver(self.config)

    # -- Public API --

    async def render(
        self,
        chain: MatchChain,
        *,
        plan: MountPlan | None = None,
        reuse: Mapping[int, Any] | None = None,
        terminal: SlotKind = SlotKind.PAGE,
    ) -> RenderResult:
        """Render *chain* completely and return the document."""
        plan = plan or MountRegistry().plan(chain.nodes, 0)
        rpass = RenderPass(chain, fetcher=self.fetcher, reuse=reuse)
        try:
            async with anyio.create_task_group() as tg:
                rpass.start(tg)
                composer = _Composer(self, rpass, plan, terminal=terminal)
                outcome = await composer.compose(0)
                metadata = await self.metadata.resolve(rpass)
                tg.cancel_scope.cancel()
        finally:
            rpass.close()
        return self._finish(rpass, outcome, metadata)

    async def stream(
        self,
        chain: MatchChain,
        send: Send,
        *,
        plan: MountPlan | None = None,
        reuse: Mapping[int, Any] | None = None,
        terminal: SlotKind = SlotKind.PAGE,
    ) -> RenderResult:
        """Render *chain*, sending the shell first and deferred subtrees after.

        Nothing is sent when the shell itself ends in a redirect or an
        unhandled failure; the returned result says which.
        """
        plan = plan or MountRegistry().plan(chain.nodes, 0)
        rpass = RenderPass(chain, fetcher=self.fetcher, reuse=reuse)
        try:
            async with anyio.create_task_group() as tg:
                rpass.start(tg)
                async with anyio.create_task_group() as deferred_tg:
                    composer = _Composer(
                        self, rpass, plan, terminal=terminal, tg=deferred_tg, send=send
                    )
                    metadata = await self.metadata.resolve(rpass)
                    outcome = await composer.compose(0)
                    result = self._finish(rpass, outcome, metadata)
                    if result.ok:
                        await send(result.html)
                        composer.shell_sent.set()
                    else:
                        deferred_tg.cancel_scope.cancel()
                tg.cancel_scope.cancel()
        finally:
            rpass.close()
        if composer.late_errors:
            result = _with_errors(result, composer.late_errors)
        return _with_data(result, rpass)

    def not_found_chain(self, error: RouteNotFoundError) -> MatchChain | None:
        """The attempted chain cut at its nearest ``notFound`` boundary."""
        attempted = error.attempted
        boundary = find_not_found_boundary(tuple(seg.node for seg in attempted))
        if boundary is None:
            return None
        segments = attempted[: boundary + 1]
        params: dict[str, Any] = {}
        for seg in segments:
            params.update(seg.params)
        return MatchChain(
            segments=segments,
            params=MappingProxyType(params),
            path=error.path,
            search_params=error.search_params,
        )

    async def render_not_found(
        self,
        error: RouteNotFoundError,
        *,
        plan: MountPlan | None = None,
        send: Send | None = None,
    ) -> RenderResult:
        """Render the not-found UI for a failed resolution.

        Uses the nearest ``notFound`` slot on the attempted path, wrapped
        in the layouts above it, or the global default page.
        """
        chain = self.not_found_chain(error)
        if chain is None:
            logger.debug("404 %s (default page)", error.path)
            empty = MatchChain(segments=(), path=error.path, search_params=error.search_params)
            result = RenderResult(
                chain=empty,
                html=self.config.not_found_html,
                status=404,
                metadata=MetadataRecord(title=self.config.default_title),
            )
            if send is not None:
                await send(result.html)
            return result

        logger.debug("404 %s (boundary %r)", error.path, chain.leaf.name or "/")
        if send is not None:
            result = await self.stream(chain, send, plan=plan, terminal=SlotKind.NOT_FOUND)
        else:
            result = await self.render(chain, plan=plan, terminal=SlotKind.NOT_FOUND)
        if result.ok and result.status == 200:
            result = _with_status(result, 404)
        return result

    # -- Root outcome --

    def _finish(
        self, rpass: RenderPass, outcome: Outcome, metadata: MetadataRecord
    ) -> RenderResult:
        chain = rpass.chain
        data = MappingProxyType(rpass.loaded())
        errors = tuple(rpass.errors)
        status = 404 if rpass.not_found else 200

        if isinstance(outcome, RedirectSignal):
            logger.debug("redirect %s -> %s (%d)", chain.path, outcome.location, outcome.status)
            return RenderResult(
                chain=chain, status=outcome.status, metadata=metadata,
                redirect=outcome, errors=errors, data=data,
            )
        if isinstance(outcome, ErrorSignal):
            logger.error("Unhandled render error for %s: %s", chain.path, outcome.error)
            return RenderResult(
                chain=chain, html=self.failure_page(outcome.error), status=500,
                metadata=metadata, failure=outcome.error, errors=errors, data=data,
            )
        if isinstance(outcome, NotFoundSignal):
            body = self.config.not_found_html
            status = 404
        else:
            body = outcome.html
        if self.config.inject_head:
            body = inject_head(body, metadata)
        return RenderResult(
            chain=chain, html=body, status=status, metadata=metadata, errors=errors, data=data,
        )

    def failure_page(self, error: RenderError) -> str:
        """The generic failure page for an error that reached the root."""
        if not self.config.debug:
            return self.config.error_html
        return f"{self.config.error_html}<pre>{html_module.escape(str(error))}</pre>"


def _with_status(result: RenderResult, status: int) -> RenderResult:
    return RenderResult(
        chain=result.chain, html=result.html, status=status, metadata=result.metadata,
        redirect=result.redirect, failure=result.failure, errors=result.errors, data=result.data,
    )


def _with_errors(result: RenderResult, late: list[RenderError]) -> RenderResult:
    return RenderResult(
        chain=result.chain, html=result.html, status=result.status, metadata=result.metadata,
        redirect=result.redirect, failure=result.failure,
        errors=(*result.errors, *late), data=result.data,
    )


def _with_data(result: RenderResult, rpass: RenderPass) -> RenderResult:
    return RenderResult(
        chain=result.chain, html=result.html, status=result.status, metadata=result.metadata,
        redirect=result.redirect, failure=result.failure, errors=result.errors,
        data=MappingProxyType(rpass.loaded()),
    )


class _Composer:
    """Walks one render pass, node by node."""

    def __init__(
        self,
        pipeline: RenderPipeline,
        rpass: RenderPass,
        plan: MountPlan,
        *,
        terminal: SlotKind,
        tg: TaskGroup | None = None,
        send: Send | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.renderer = pipeline.renderer
        self.config = pipeline.config
        self.rpass = rpass
        self.plan = plan
        self.nodes = rpass.chain.nodes
        self.last = len(self.nodes) - 1
        self.terminal = terminal
        self.tg = tg
        self.send = send
        self.shell_sent = anyio.Event()
        self.late_errors: list[RenderError] = []
        self._next_id = 0

    @property
    def streaming(self) -> bool:
        return self.tg is not None

    # -- Composition --

    async def compose(self, i: int) -> Outcome:
        """Layout(Template(Boundaries(Suspense(content))))."""
        node = self.nodes[i]
        async with AsyncExitStack() as stack:
            data = _UNSET
            if node.has(SlotKind.LAYOUT) or node.has(SlotKind.TEMPLATE):
                data = await self.rpass.data(i)
                if is_signal(data):
                    return data

            inner = await self._catch(i, await self._suspended(i, data, stack), data, stack)
            if not isinstance(inner, Continue):
                return inner

            if node.has(SlotKind.TEMPLATE):
                inner = await self._slot(i, SlotKind.TEMPLATE, data, stack, children=inner.html)
                if not isinstance(inner, Continue):
                    return inner

            if node.has(SlotKind.LAYOUT):
                return await self._slot(i, SlotKind.LAYOUT, data, stack, children=inner.html)
            return inner

    async def _content(self, i: int, data: Any, stack: AsyncExitStack) -> Outcome:
        if data is _UNSET:
            data = await self.rpass.data(i)
            if is_signal(data):
                return data
        if i < self.last:
            return await self.compose(i + 1)
        return await self._slot(i, self.terminal, data, stack)

    async def _suspended(self, i: int, data: Any, stack: AsyncExitStack) -> Outcome:
        node = self.nodes[i]
        if not self.streaming or not node.has(SlotKind.LOADING) or self._subtree_ready(i, data):
            return await self._content(i, data, stack)

        fallback = await self._slot(i, SlotKind.LOADING, None, stack)
        if not isinstance(fallback, Continue):
            return await self._content(i, data, stack)

        target_id = f"{self.config.stream_placeholder_prefix}{self._next_id}"
        self._next_id += 1
        deferred = Deferred(target_id, current_deferred.get())
        assert self.tg is not None
        self.tg.start_soon(self._run_deferred, i, data, deferred, name=f"suspense:{target_id}")
        return Continue(placeholder(fallback.html, target_id))

    def _subtree_ready(self, i: int, data: Any) -> bool:
        indices = range(i if data is _UNSET else i + 1, self.last + 1)
        return self.rpass.ready(indices)

    async def _run_deferred(self, i: int, data: Any, deferred: Deferred) -> None:
        current_deferred.set(deferred)
        async with AsyncExitStack() as stack:
            outcome = await self._catch(i, await self._content(i, data, stack), data, stack)
            for j in range(i - 1, -1, -1):
                if isinstance(outcome, Continue | RedirectSignal):
                    break
                outcome = await self._catch(j, outcome, None, stack)

        if isinstance(outcome, Continue):
            chunk = format_swap_chunk(outcome.html, deferred.target_id)
        elif isinstance(outcome, RedirectSignal):
            logger.debug("late redirect -> %s", outcome.location)
            chunk = format_redirect_chunk(outcome.location)
        elif isinstance(outcome, ErrorSignal):
            self.late_errors.append(outcome.error)
            chunk = format_swap_chunk(self.pipeline.failure_page(outcome.error), deferred.target_id)
        else:
            chunk = format_swap_chunk(self.config.not_found_html, deferred.target_id)

        if deferred.parent is not None:
            await deferred.parent.emitted.wait()
        else:
            await self.shell_sent.wait()
        assert self.send is not None
        await self.send(chunk)
        deferred.emitted.set()

    # -- Boundaries --

    async def _catch(self, i: int, outcome: Outcome, data: Any, stack: AsyncExitStack) -> Outcome:
        """Let node *i*'s error / notFound slots absorb a signal."""
        node = self.nodes[i]
        data = None if data is _UNSET or is_signal(data) else data

        if isinstance(outcome, NotFoundSignal):
            self.rpass.not_found = True
            rendered_as_terminal = i == self.last and self.terminal is SlotKind.NOT_FOUND
            if node.has(SlotKind.NOT_FOUND) and not rendered_as_terminal:
                return await self._slot(i, SlotKind.NOT_FOUND, data, stack, detail=outcome.detail)
            return outcome

        if isinstance(outcome, ErrorSignal) and node.has(SlotKind.ERROR):
            logger.warning("Error boundary %r handled: %s", node.name or "/", outcome.error)
            self.rpass.errors.append(outcome.error)
            return await self._slot(i, SlotKind.ERROR, data, stack, error=outcome.error)

        return outcome

    # -- Slots --

    async def _slot(
        self,
        i: int,
        slot: SlotKind,
        data: Any,
        stack: AsyncExitStack,
        *,
        children: str | None = None,
        error: RenderError | None = None,
        detail: str = "",
    ) -> Outcome:
        node = self.nodes[i]

        def cleanup(callback: Callable[[], Any]) -> None:
            stack.push_async_callback(_shielded, callback)

        props = RenderProps(
            node=node,
            slot=slot,
            params=self.rpass.params_through(i),
            search_params=self.rpass.chain.query,
            data=None if data is _UNSET else data,
            children=children,
            error=error,
            detail=detail,
            instance=self.plan.get(slot, i),
            fetch=self.rpass.cache.fetch,
            cleanup=cleanup,
        )
        try:
            result = await self.renderer.render(node.slot(slot), props)
        except Exception as exc:
            logger.exception("%s slot of %r failed", slot.value, node.name or "/")
            return ErrorSignal(RenderError.wrap(exc, node=node, slot=slot.value))
        if is_signal(result):
            return result
        return Continue(result)


async def _shielded(callback: Callable[[], Any]) -> None:
    with anyio.CancelScope(shield=True):
        await invoke(callback)

"""Perch application class.

Holds the route convention during setup; freezes it into an immutable
route tree on first use.  Request-in, response-out: the HTTP transport
itself is left to the host server.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path
from typing import Any

from kida import Environment, FileSystemLoader

from perch._internal.invoke import invoke_injected
from perch.config import RouterConfig
from perch.errors import ConfigurationError, RenderError, RouteNotFoundError
from perch.http.response import Response
from perch.navigation.router import NavigationRouter
from perch.pages.discovery import discover_routes
from perch.rendering.cache import Fetcher
from perch.rendering.pipeline import RenderPipeline, RenderResult
from perch.rendering.signals import ErrorSignal, NotFoundSignal, RedirectSignal
from perch.rendering.slots import DefaultSlotRenderer, SlotRenderer
from perch.routing.builder import RouteTree, build_route_tree
from perch.routing.node import SegmentFiles, SlotKind
from perch.routing.resolver import MatchChain, resolve
from perch.server.negotiation import negotiate, redirect_response

logger = logging.getLogger("perch.server")

Routes = Mapping[str, SegmentFiles] | RouteTree | str | Path

# Page routes send HTML text; handler routes send their body unchanged.
BodySend = Callable[[str | bytes], Awaitable[None]]


class App:
    """The perch application.

    ``routes`` is a convention mapping, an already built
    :class:`RouteTree`, or the path of a ``pages/`` directory::

        app = App("pages", fetcher=fetch)
        response = await app.handle("/blog/intro")

    Thread safety:
        The freeze transition uses a Lock + double-check so exactly one
        thread builds the tree.  The tree is immutable afterwards.
    """

    __slots__ = (
        "_freeze_lock",
        "_frozen",
        "_pipeline",
        "_routes",
        "_tree",
        "config",
        "fetcher",
        "kida_env",
        "renderer",
    )

    def __init__(
        self,
        routes: Routes,
        *,
        config: RouterConfig | None = None,
        renderer: SlotRenderer | None = None,
        fetcher: Fetcher | None = None,
        kida_env: Environment | None = None,
    ) -> None:
        self.config = config or RouterConfig()
        self.fetcher = fetcher
        if kida_env is None and isinstance(routes, str | Path):
            kida_env = Environment(loader=FileSystemLoader(str(routes)))
        self.kida_env = kida_env
        self.renderer = renderer or DefaultSlotRenderer(kida_env)
        self._routes = routes
        self._tree: RouteTree | None = None
        self._pipeline: RenderPipeline | None = None
        self._frozen = False
        self._freeze_lock = threading.Lock()

    # -- Public API --

    @property
    def tree(self) -> RouteTree:
        self._ensure_frozen()
        assert self._tree is not None
        return self._tree

    @property
    def pipeline(self) -> RenderPipeline:
        self._ensure_frozen()
        assert self._pipeline is not None
        return self._pipeline

    async def render(self, url: str) -> RenderResult:
        """Resolve and render *url* to a :class:`RenderResult`.

        Not-found resolutions render the nearest ``notFound`` boundary.
        """
        try:
            chain = resolve(self.tree, url)
        except RouteNotFoundError as exc:
            return await self.pipeline.render_not_found(exc)
        return await self.pipeline.render(chain)

    async def handle(self, url: str) -> Response:
        """Serve one GET request for *url*."""
        try:
            chain = resolve(self.tree, url)
        except RouteNotFoundError as exc:
            logger.info("404 %s", exc.path)
            return self._to_response(await self.pipeline.render_not_found(exc))

        if not chain.leaf.has(SlotKind.PAGE):
            return await self._dispatch_handler(chain)
        return self._to_response(await self.pipeline.render(chain))

    async def stream(self, url: str, send: BodySend) -> Response:
        """Serve *url*, sending the shell and deferred chunks through *send*.

        Redirects and unhandled failures are detected before anything is
        sent; the returned Response then carries them instead of chunks.
        """
        chunks: list[str] = []

        async def record(chunk: str) -> None:
            chunks.append(chunk)
            await send(chunk)

        try:
            chain = resolve(self.tree, url)
        except RouteNotFoundError as exc:
            result = await self.pipeline.render_not_found(exc, send=record)
        else:
            if not chain.leaf.has(SlotKind.PAGE):
                response = await self._dispatch_handler(chain)
                await send(response.body)
                return response
            result = await self.pipeline.stream(chain, record)

        if not chunks and result.html:
            await send(result.html)
            chunks.append(result.html)
        response = self._to_response(result)
        if result.ok:
            response = Response(
                body="".join(chunks),
                status=response.status,
                headers=response.headers,
                chunks=tuple(chunks),
                metadata=result.metadata,
            )
        return response

    def navigator(self, **kwargs: Any) -> NavigationRouter:
        """A client navigation router sharing this app's pipeline."""
        return NavigationRouter(self.tree, pipeline=self.pipeline, config=self.config, **kwargs)

    # -- Internal --

    async def _dispatch_handler(self, chain: MatchChain) -> Response:
        handler = chain.leaf.slot(SlotKind.HANDLER)
        available = {
            **chain.params,
            "params": chain.params,
            "search_params": chain.query,
            "path": chain.path,
            "url": chain.url,
        }
        try:
            value = await invoke_injected(handler, available)
        except Exception as exc:
            logger.exception("Handler for %s failed", chain.path)
            error = RenderError.wrap(exc, node=chain.leaf, slot=SlotKind.HANDLER.value)
            return Response(body=self.pipeline.failure_page(error), status=500)

        match value:
            case NotFoundSignal():
                return Response(body=self.config.not_found_html, status=404)
            case ErrorSignal(error=error):
                logger.error("Handler for %s returned an error: %s", chain.path, error)
                return Response(body=self.pipeline.failure_page(error), status=500)
        return negotiate(value)

    def _to_response(self, result: RenderResult) -> Response:
        if result.redirect is not None:
            return redirect_response(result.redirect)
        return Response(body=result.html, status=result.status, metadata=result.metadata)

    def _ensure_frozen(self) -> None:
        if self._frozen:
            return
        with self._freeze_lock:
            if self._frozen:
                return
            self._freeze()

    def _freeze(self) -> None:
        """Build the route tree and the render pipeline.

        MUST only be called while holding _freeze_lock.
        """
        routes = self._routes
        if isinstance(routes, RouteTree):
            tree = routes
        elif isinstance(routes, str | Path):
            tree = build_route_tree(
                discover_routes(routes, private_prefix=self.config.private_prefix),
                private_prefix=self.config.private_prefix,
            )
        elif isinstance(routes, Mapping):
            tree = build_route_tree(routes, private_prefix=self.config.private_prefix)
        else:
            msg = f"Unsupported routes value: {type(routes).__name__}"
            raise ConfigurationError(msg)

        self._tree = tree
        self._pipeline = RenderPipeline(
            tree, renderer=self.renderer, fetcher=self.fetcher, config=self.config
        )
        self._frozen = True
        logger.info("Route tree ready: %d routes", len(tree.routes()))

"""Perch — file-system routing with a composable rendering pipeline.

Folders describe routes; layouts, templates, loading, error and
not-found slots compose around each page.

Basic usage::

    from perch import App, SegmentFiles

    app = App({
        "": SegmentFiles(layout=lambda children: f"<body>{children}</body>"),
        "blog/[slug]": SegmentFiles(page=lambda slug: f"<h1>{slug}</h1>"),
    })
    response = await app.handle("/blog/intro")

Pages directory::

    app = App("pages")          # page.py / layout.py / page.html ...

Client navigation::

    async with app.navigator() as nav:
        await nav.navigate("/blog/intro")
        await nav.back()
"""

__version__ = "0.1.0.dev0"
__all__ = [
    "AmbiguousRouteError",
    "App",
    "ConfigurationError",
    "MatchChain",
    "MetadataRecord",
    "NavigationRouter",
    "PerchError",
    "RenderError",
    "RenderPipeline",
    "Response",
    "RouteNotFoundError",
    "RouteTree",
    "RouterConfig",
    "SegmentFiles",
    "build_route_tree",
    "discover_routes",
    "not_found",
    "permanent_redirect",
    "redirect",
    "resolve",
]


def __getattr__(name: str) -> object:
    """Lazy imports for public API.

    Keeps ``import perch`` fast while providing a clean top-level API.
    """
    if name == "App":
        from perch.app import App

        return App

    if name == "RouterConfig":
        from perch.config import RouterConfig

        return RouterConfig

    if name == "Response":
        from perch.http.response import Response

        return Response

    if name in ("MatchChain", "RouteTree", "SegmentFiles", "build_route_tree", "resolve"):
        from perch import routing as _routing

        return getattr(_routing, name)

    if name == "MetadataRecord":
        from perch.metadata.record import MetadataRecord

        return MetadataRecord

    if name == "RenderPipeline":
        from perch.rendering.pipeline import RenderPipeline

        return RenderPipeline

    if name in ("not_found", "redirect", "permanent_redirect"):
        from perch.rendering import signals as _signals

        return getattr(_signals, name)

    if name == "NavigationRouter":
        from perch.navigation.router import NavigationRouter

        return NavigationRouter

    if name == "discover_routes":
        from perch.pages.discovery import discover_routes

        return discover_routes

    if name in (
        "AmbiguousRouteError",
        "ConfigurationError",
        "PerchError",
        "RenderError",
        "RouteNotFoundError",
    ):
        from perch import errors as _errors

        return getattr(_errors, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)

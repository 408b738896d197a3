"""Perch exception hierarchy.

Shared across the tree builder, resolvers, render pipeline, and app so
every module raises and catches the same types.

Redirects are deliberately absent: a redirect is a normal render outcome
(see :mod:`perch.rendering.signals`), not an error.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from perch.routing.node import RouteNode
    from perch.routing.resolver import MatchedSegment


class PerchError(Exception):
    """Base for all perch-specific errors."""


class ConfigurationError(PerchError):
    """Raised when the route convention or configuration is invalid.

    Typically raised while building the route tree at startup.
    """


class AmbiguousRouteError(ConfigurationError):
    """Two siblings of the same matching class would answer the same URL.

    Fatal at build time: the app must not start with an ambiguous tree.
    """

    def __init__(self, url: str, first: str, second: str) -> None:
        self.url = url
        self.first = first
        self.second = second
        super().__init__(
            f"Ambiguous routes at {url!r}: {first!r} and {second!r} match the same URL shape"
        )


class RouteNotFoundError(PerchError):
    """No node in the tree answers the request path.

    Carries the deepest chain the resolver managed to descend so the
    not-found walk-up only considers nodes that were actually on the
    attempted path.
    """

    def __init__(
        self,
        path: str,
        attempted: tuple[MatchedSegment, ...] = (),
        search_params: str = "",
    ) -> None:
        self.path = path
        self.attempted = attempted
        self.search_params = search_params
        super().__init__(f"No route matches {path!r}")

    @property
    def attempted_nodes(self) -> tuple[RouteNode, ...]:
        return tuple(seg.node for seg in self.attempted)


class RenderError(PerchError):
    """A node's render or data dependency failed.

    Recovered by the nearest ancestor that defines an ``error`` slot.
    """

    def __init__(
        self,
        message: str,
        *,
        node: RouteNode | None = None,
        slot: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.node = node
        self.slot = slot
        self.cause = cause
        super().__init__(message)

    @classmethod
    def wrap(cls, exc: BaseException, *, node: RouteNode | None, slot: str | None) -> RenderError:
        """Convert an arbitrary exception raised by user code."""
        if isinstance(exc, cls):
            return exc
        where = (node.name or "/") if node is not None else "?"
        message = f"{type(exc).__name__} in {slot or 'render'} of {where!r}: {exc}"
        error = cls(message, node=node, slot=slot, cause=exc)
        error.__cause__ = exc
        return error

    def describe(self) -> dict[str, Any]:
        """Plain-data view handed to ``error`` slots."""
        return {
            "message": str(self),
            "segment": self.node.name if self.node is not None else None,
            "slot": self.slot,
            "type": type(self.cause).__name__ if self.cause is not None else type(self).__name__,
        }


class MetadataResolutionError(RenderError):
    """A metadata declaration failed.

    Scoped to head output: it never aborts body rendering.
    """

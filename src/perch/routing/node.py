"""Route tree data model.

Frozen dataclasses describing the convention input (:class:`SegmentFiles`)
and the compiled, immutable tree (:class:`RouteNode` inside a
:class:`~perch.routing.builder.RouteTree` arena).  Built once at startup.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any


class SegmentKind(StrEnum):
    """How a folder name participates in URL matching."""

    STATIC = "static"
    DYNAMIC = "dynamic"
    CATCH_ALL = "catchAll"
    OPTIONAL_CATCH_ALL = "optionalCatchAll"
    GROUP = "group"
    PRIVATE = "private"

    @property
    def captures(self) -> bool:
        return self in (SegmentKind.DYNAMIC, SegmentKind.CATCH_ALL, SegmentKind.OPTIONAL_CATCH_ALL)

    @property
    def is_catch_all(self) -> bool:
        return self in (SegmentKind.CATCH_ALL, SegmentKind.OPTIONAL_CATCH_ALL)


class SlotKind(StrEnum):
    """Named content roles a node may define."""

    PAGE = "page"
    LAYOUT = "layout"
    TEMPLATE = "template"
    LOADING = "loading"
    ERROR = "error"
    NOT_FOUND = "notFound"
    HANDLER = "handler"


# A metadata declaration: a static mapping, or a callable computing one.
MetadataDecl = Mapping[str, Any] | Callable[..., Mapping[str, Any] | Awaitable[Mapping[str, Any]]]

# Param values: one component for dynamic segments, a sequence for catch-alls.
ParamValue = str | tuple[str, ...]


@dataclass(frozen=True, slots=True)
class SegmentFiles:
    """The slot files and capabilities present in one folder.

    This is the convention input for :func:`~perch.routing.builder.build_route_tree`.
    Slot values are opaque content references handed to the slot renderer:
    callables for :class:`~perch.rendering.slots.CallableSlotRenderer`,
    template names for the kida renderer.

    Attributes:
        page: Leaf content for the folder's URL.
        layout: State-preserving wrapper for the folder and its descendants.
        template: Wrapper re-instantiated on every navigation.
        loading: Suspense fallback while descendant data is pending.
        error: Replacement UI for failures below this folder.
        not_found: Replacement UI for not-found below this folder.
        handler: Protocol handler answering the URL without slot composition.
        metadata: Static metadata mapping or a callable computing one.
        load: Async or sync data dependency resolved before render.
    """

    page: Any = None
    layout: Any = None
    template: Any = None
    loading: Any = None
    error: Any = None
    not_found: Any = None
    handler: Any = None
    metadata: MetadataDecl | None = None
    load: Callable[..., Any] | None = None

    def slots(self) -> dict[SlotKind, Any]:
        """Present slots keyed by kind."""
        pairs = (
            (SlotKind.PAGE, self.page),
            (SlotKind.LAYOUT, self.layout),
            (SlotKind.TEMPLATE, self.template),
            (SlotKind.LOADING, self.loading),
            (SlotKind.ERROR, self.error),
            (SlotKind.NOT_FOUND, self.not_found),
            (SlotKind.HANDLER, self.handler),
        )
        return {kind: content for kind, content in pairs if content is not None}


@dataclass(frozen=True, slots=True)
class LevelIndex:
    """Compiled match edges for one URL level.

    Each edge is the tuple of node ids to append to the chain: any group
    folders crossed on the way, then the matching node itself.

    Attributes:
        static: Exact-name edges.
        dynamic: The single ``[param]`` edge, if any.
        catch_all: The single ``[...param]`` / ``[[...param]]`` edge, if any.
        index: Group chain ending at a node that answers this same URL.
    """

    static: Mapping[str, tuple[int, ...]] = field(default_factory=lambda: MappingProxyType({}))
    dynamic: tuple[int, ...] | None = None
    catch_all: tuple[int, ...] | None = None
    index: tuple[int, ...] | None = None


@dataclass(frozen=True, slots=True, eq=False)
class RouteNode:
    """One filesystem segment in the compiled route tree.

    Nodes compare by identity; ``id`` is the node's index in the tree arena.

    Attributes:
        id: Arena index.
        name: Raw folder name (empty for the root).
        kind: Matching class of the folder name.
        param_name: Captured parameter name for dynamic kinds.
        url_segment: URL contribution (empty for root, groups, private).
        slots: Present slot contents keyed by kind.
        metadata: Metadata declaration, if any.
        load: Data dependency, if any.
        parent: Parent id (``None`` for the root).
        children: Child ids in declaration order.
        depth: Folder depth (0 = root).
        routable: This node or a descendant answers a URL.
        level: Compiled match edges (``None`` for group/private nodes).
    """

    id: int
    name: str
    kind: SegmentKind
    param_name: str | None
    url_segment: str
    slots: Mapping[SlotKind, Any]
    metadata: MetadataDecl | None
    load: Callable[..., Any] | None
    parent: int | None
    children: tuple[int, ...]
    depth: int
    routable: bool
    level: LevelIndex | None = None

    def has(self, slot: SlotKind) -> bool:
        return slot in self.slots

    def slot(self, slot: SlotKind) -> Any:
        return self.slots.get(slot)

    @property
    def answers(self) -> bool:
        """Whether a request ending at this node succeeds."""
        return SlotKind.PAGE in self.slots or SlotKind.HANDLER in self.slots

    def __repr__(self) -> str:
        return f"RouteNode(id={self.id}, name={self.name!r}, kind={self.kind.value})"

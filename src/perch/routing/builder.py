"""Route tree builder.

Converts a convention mapping (folder path -> :class:`SegmentFiles`) into
an immutable :class:`RouteTree`.  Folders are collected into mutable
build nodes first, validated, then frozen into an arena of
:class:`RouteNode` with precompiled per-level match edges, so nothing is
re-parsed at request time.

Usage::

    tree = build_route_tree({
        "": SegmentFiles(layout=root_layout, not_found=missing),
        "(marketing)/about": SegmentFiles(page=about),
        "blog/[slug]": SegmentFiles(page=post, load=load_post),
    })
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, replace
from types import MappingProxyType

from perch.errors import AmbiguousRouteError, ConfigurationError
from perch.routing.node import LevelIndex, RouteNode, SegmentFiles, SegmentKind, SlotKind
from perch.routing.params import ParsedName, parse_segment_name, split_folder_path

logger = logging.getLogger("perch.routing")


class _BuildNode:
    """A folder during tree construction. Mutable during build only."""

    __slots__ = ("children", "files", "name", "parent", "parsed")

    def __init__(self, name: str, parsed: ParsedName, parent: _BuildNode | None) -> None:
        self.name = name
        self.parsed = parsed
        self.parent = parent
        self.files: SegmentFiles | None = None
        self.children: dict[str, _BuildNode] = {}

    @property
    def folder_path(self) -> str:
        parts: list[str] = []
        node: _BuildNode | None = self
        while node is not None and node.parent is not None:
            parts.append(node.name)
            node = node.parent
        return "/".join(reversed(parts))

    @property
    def url(self) -> str:
        parts: list[str] = []
        node: _BuildNode | None = self
        while node is not None:
            if node.parsed.url_segment:
                parts.append(node.parsed.url_segment)
            node = node.parent
        return "/" + "/".join(reversed(parts))


@dataclass(frozen=True, slots=True)
class RouteEntry:
    """One URL the tree answers, for introspection and the CLI."""

    pattern: str
    node: RouteNode
    kind: str  # "page" or "handler"


class RouteTree:
    """Immutable arena of :class:`RouteNode` rooted at the app root.

    Built once by :func:`build_route_tree` and shared read-only by the
    resolvers, the render pipeline, and the navigation router.
    """

    __slots__ = ("nodes",)

    def __init__(self, nodes: tuple[RouteNode, ...]) -> None:
        self.nodes = nodes

    @property
    def root(self) -> RouteNode:
        return self.nodes[0]

    def node(self, node_id: int) -> RouteNode:
        return self.nodes[node_id]

    def parent(self, node: RouteNode) -> RouteNode | None:
        return None if node.parent is None else self.nodes[node.parent]

    def children(self, node: RouteNode) -> tuple[RouteNode, ...]:
        return tuple(self.nodes[i] for i in node.children)

    def ancestors(self, node: RouteNode) -> tuple[RouteNode, ...]:
        """Root-first ancestors of *node*, inclusive."""
        chain: list[RouteNode] = []
        current: RouteNode | None = node
        while current is not None:
            chain.append(current)
            current = self.parent(current)
        return tuple(reversed(chain))

    def folder_path(self, node: RouteNode) -> str:
        """Convention key of *node*, e.g. ``"(shop)/items/[id]"``."""
        return "/".join(n.name for n in self.ancestors(node)[1:])

    def url_pattern(self, node: RouteNode) -> str:
        """URL pattern answered by *node*, e.g. ``"/items/[id]"``."""
        parts = [n.url_segment for n in self.ancestors(node) if n.url_segment]
        return "/" + "/".join(parts)

    def find(self, folder_path: str) -> RouteNode:
        """Look up a node by its convention key."""
        node = self.root
        for name in split_folder_path(folder_path):
            for child in self.children(node):
                if child.name == name:
                    node = child
                    break
            else:
                raise KeyError(folder_path)
        return node

    def walk(self) -> Iterator[RouteNode]:
        """Pre-order traversal, skipping private subtrees."""
        stack = [self.root]
        while stack:
            node = stack.pop()
            if node.kind is SegmentKind.PRIVATE:
                continue
            yield node
            stack.extend(reversed(self.children(node)))

    def routes(self) -> list[RouteEntry]:
        """Every URL pattern the tree answers, in traversal order."""
        entries: list[RouteEntry] = []
        for node in self.walk():
            if node.has(SlotKind.PAGE):
                entries.append(RouteEntry(self.url_pattern(node), node, "page"))
            elif node.has(SlotKind.HANDLER):
                entries.append(RouteEntry(self.url_pattern(node), node, "handler"))
        return entries

    def __len__(self) -> int:
        return len(self.nodes)


def build_route_tree(
    convention: Mapping[str, SegmentFiles | None],
    *,
    private_prefix: str = "_",
) -> RouteTree:
    """Build an immutable route tree from a convention mapping.

    Args:
        convention: Folder path (``""`` for the root) to the slot files
            present in that folder.  Intermediate folders are created empty.
        private_prefix: Folder-name prefix marking private folders.

    Returns:
        The compiled :class:`RouteTree`.

    Raises:
        AmbiguousRouteError: Two same-class siblings answer the same URL shape.
        ConfigurationError: Malformed folder names or conflicting slots.
    """
    root = _BuildNode("", ParsedName(SegmentKind.STATIC, ""), None)
    seen: dict[tuple[str, ...], str] = {}

    for key, files in convention.items():
        names = split_folder_path(key)
        if names in seen:
            msg = f"Duplicate convention entries {seen[names]!r} and {key!r}"
            raise ConfigurationError(msg)
        seen[names] = key

        node = root
        for name in names:
            child = node.children.get(name)
            if child is None:
                parsed = parse_segment_name(name, private_prefix=private_prefix)
                child = _BuildNode(name, parsed, node)
                node.children[name] = child
            node = child
        node.files = files or SegmentFiles()

    _validate(root, params=())
    nodes: list[RouteNode] = []
    _freeze(root, None, 0, nodes, private=False)
    tree = RouteTree(tuple(nodes))
    logger.debug("Built route tree: %d nodes, %d routes", len(tree), len(tree.routes()))
    return tree


# -- Validation --


def _validate(node: _BuildNode, *, params: tuple[str, ...]) -> None:
    if node.parsed.kind is SegmentKind.PRIVATE:
        return

    files = node.files
    if files is not None and files.page is not None and files.handler is not None:
        msg = f"Folder {node.folder_path or '/'!r} defines both a page and a handler"
        raise ConfigurationError(msg)

    param = node.parsed.param_name
    if param is not None:
        if param in params:
            msg = f"Parameter {param!r} repeats along {node.folder_path!r}"
            raise ConfigurationError(msg)
        params = (*params, param)

    if node.parsed.kind.is_catch_all:
        descendant = next(_url_descendants(node), None)
        if descendant is not None:
            msg = (
                f"Catch-all folder {node.folder_path!r} must be the last URL segment, "
                f"found {descendant.folder_path!r} below it"
            )
            raise ConfigurationError(msg)

    for child in node.children.values():
        _validate(child, params=params)


def _url_descendants(node: _BuildNode) -> Iterator[_BuildNode]:
    """Descendants that contribute a URL segment, looking through groups."""
    for child in node.children.values():
        kind = child.parsed.kind
        if kind is SegmentKind.PRIVATE:
            continue
        if kind is SegmentKind.GROUP:
            yield from _url_descendants(child)
        else:
            yield child


# -- Freezing --


def _freeze(
    node: _BuildNode,
    parent_id: int | None,
    depth: int,
    nodes: list[RouteNode],
    *,
    private: bool,
) -> int:
    """Assign arena ids in pre-order and build frozen nodes bottom-up."""
    node_id = len(nodes)
    nodes.append(None)  # type: ignore[arg-type]  # placeholder until children are frozen

    kind = node.parsed.kind
    private = private or kind is SegmentKind.PRIVATE
    child_ids = tuple(
        _freeze(child, node_id, depth + 1, nodes, private=private)
        for child in node.children.values()
    )

    files = node.files or SegmentFiles()
    slots = MappingProxyType(files.slots())
    answers = SlotKind.PAGE in slots or SlotKind.HANDLER in slots
    routable = not private and (answers or any(nodes[c].routable for c in child_ids))

    frozen = RouteNode(
        id=node_id,
        name=node.name,
        kind=kind,
        param_name=node.parsed.param_name,
        url_segment=node.parsed.url_segment,
        slots=slots,
        metadata=files.metadata,
        load=files.load,
        parent=parent_id,
        children=child_ids,
        depth=depth,
        routable=routable,
    )
    if not private and kind is not SegmentKind.GROUP:
        frozen = replace(frozen, level=_compile_level(frozen, nodes, node))
    nodes[node_id] = frozen
    return node_id


def _compile_level(owner: RouteNode, nodes: list[RouteNode], build: _BuildNode) -> LevelIndex:
    """Collect the match edges of one URL level, expanding groups.

    Raises ``AmbiguousRouteError`` when two edges of the same class meet.
    """
    url = build.url
    owner_label = build.folder_path or "(root)"
    static: dict[str, tuple[int, ...]] = {}
    dynamic: tuple[int, ...] | None = None
    catch_all: tuple[int, ...] | None = None
    index: tuple[int, ...] | None = None

    def label(edge: tuple[int, ...]) -> str:
        return "/".join(nodes[i].name for i in edge)

    def collect(parent: RouteNode, via: tuple[int, ...], prefix: str) -> None:
        nonlocal dynamic, catch_all, index
        for child_id in parent.children:
            child = nodes[child_id]
            edge = (*via, child_id)
            where = f"{prefix}{child.name}"
            if child.kind is SegmentKind.PRIVATE:
                continue
            if child.kind is SegmentKind.GROUP:
                if child.answers:
                    if owner.answers:
                        raise AmbiguousRouteError(url, owner_label, where)
                    if index is not None:
                        raise AmbiguousRouteError(url, label(index), where)
                    index = edge
                collect(child, edge, f"{where}/")
            elif child.kind is SegmentKind.STATIC:
                if child.url_segment in static:
                    raise AmbiguousRouteError(url, label(static[child.url_segment]), where)
                static[child.url_segment] = edge
            elif child.kind is SegmentKind.DYNAMIC:
                if dynamic is not None:
                    raise AmbiguousRouteError(url, label(dynamic), where)
                dynamic = edge
            else:
                if catch_all is not None:
                    raise AmbiguousRouteError(url, label(catch_all), where)
                catch_all = edge

    collect(owner, (), "")

    if catch_all is not None and nodes[catch_all[-1]].kind is SegmentKind.OPTIONAL_CATCH_ALL:
        if owner.answers or index is not None:
            raise AmbiguousRouteError(url, label(index) if index else owner_label, label(catch_all))

    return LevelIndex(
        static=MappingProxyType(static),
        dynamic=dynamic,
        catch_all=catch_all,
        index=index,
    )

"""Segment resolver — request path to match chain.

Depth-first descent over the compiled level edges with backtracking.
Per level the precedence is fixed regardless of declaration order:
exact static, then the dynamic edge, then the catch-all edge.  Group
folders ride along on edges without consuming components; private
folders have no edges and are never entered.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from urllib.parse import parse_qs

from perch.errors import RouteNotFoundError
from perch.routing.builder import RouteTree
from perch.routing.node import ParamValue, RouteNode, SegmentKind, SlotKind
from perch.routing.params import normalize_path

_EMPTY: Mapping[str, ParamValue] = MappingProxyType({})


@dataclass(frozen=True, slots=True)
class MatchedSegment:
    """One node on a match chain with the params it captured."""

    node: RouteNode
    params: Mapping[str, ParamValue] = _EMPTY
    consumed: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class MatchChain:
    """Root-to-leaf result of resolving one request path.

    Attributes:
        segments: Matched nodes, root first.
        params: Aggregated params (last writer wins).
        path: Normalized request path.
        search_params: Raw query string.
    """

    segments: tuple[MatchedSegment, ...]
    params: Mapping[str, ParamValue] = _EMPTY
    path: str = "/"
    search_params: str = ""
    _query: dict[str, list[str]] = field(default_factory=dict, compare=False, repr=False)

    @property
    def leaf(self) -> RouteNode:
        return self.segments[-1].node

    @property
    def nodes(self) -> tuple[RouteNode, ...]:
        return tuple(seg.node for seg in self.segments)

    @property
    def query(self) -> Mapping[str, list[str]]:
        """Parsed query string (parsed once, lazily), as a read-only view."""
        if not self._query and self.search_params:
            self._query.update(parse_qs(self.search_params, keep_blank_values=True))
        return MappingProxyType(self._query)

    @property
    def url(self) -> str:
        return f"{self.path}?{self.search_params}" if self.search_params else self.path

    def params_through(self, index: int) -> dict[str, ParamValue]:
        """Params accumulated from the root down to ``segments[index]``."""
        params: dict[str, ParamValue] = {}
        for seg in self.segments[: index + 1]:
            params.update(seg.params)
        return params

    def shared_prefix(self, other: MatchChain | None) -> int:
        """Number of leading positions occupied by the same nodes in both chains."""
        if other is None:
            return 0
        count = 0
        for mine, theirs in zip(self.segments, other.segments, strict=False):
            if mine.node is not theirs.node:
                break
            count += 1
        return count

    def __len__(self) -> int:
        return len(self.segments)


class _Attempt:
    """Deepest partial descent seen so far, for not-found walk-up."""

    __slots__ = ("consumed", "segments")

    def __init__(self) -> None:
        self.segments: tuple[MatchedSegment, ...] = ()
        self.consumed = -1

    def record(self, segments: tuple[MatchedSegment, ...], consumed: int) -> None:
        if consumed > self.consumed:
            self.segments = segments
            self.consumed = consumed


def resolve(tree: RouteTree, path: str, search_params: str = "") -> MatchChain:
    """Match *path* against *tree*.

    An embedded ``?query`` in *path* is split off and used when
    *search_params* is empty.

    Raises:
        RouteNotFoundError: carrying the deepest attempted chain.
    """
    parts, embedded_query = normalize_path(path)
    query = search_params or embedded_query
    normalized = "/" + "/".join(parts)

    attempt = _Attempt()
    root = MatchedSegment(tree.root)
    found = _descend(tree, tree.root, parts, 0, (root,), attempt)
    if found is None:
        raise RouteNotFoundError(normalized, attempt.segments, query)

    params: dict[str, ParamValue] = {}
    for seg in found:
        params.update(seg.params)
    return MatchChain(
        segments=found,
        params=MappingProxyType(params),
        path=normalized,
        search_params=query,
    )


def _descend(
    tree: RouteTree,
    node: RouteNode,
    parts: tuple[str, ...],
    index: int,
    chain: tuple[MatchedSegment, ...],
    attempt: _Attempt,
) -> tuple[MatchedSegment, ...] | None:
    attempt.record(chain, index)
    level = node.level
    if level is None:
        return None

    # All parts consumed: this node, a page behind groups, or an empty optional catch-all
    if index == len(parts):
        if node.answers:
            return chain
        if level.index is not None:
            return (*chain, *_group_segments(tree, level.index))
        if level.catch_all is not None:
            target = tree.node(level.catch_all[-1])
            if target.kind is SegmentKind.OPTIONAL_CATCH_ALL:
                return _finish_catch_all(tree, level.catch_all, (), chain, attempt, index)
        return None

    part = parts[index]

    # 1. Exact static match
    edge = level.static.get(part)
    if edge is not None and tree.node(edge[-1]).routable:
        target = tree.node(edge[-1])
        matched = MatchedSegment(target, consumed=(part,))
        extended = (*chain, *_group_segments(tree, edge[:-1]), matched)
        result = _descend(tree, target, parts, index + 1, extended, attempt)
        if result is not None:
            return result

    # 2. Dynamic child
    if level.dynamic is not None and tree.node(level.dynamic[-1]).routable:
        target = tree.node(level.dynamic[-1])
        matched = MatchedSegment(
            target,
            MappingProxyType({target.param_name or "": part}),
            (part,),
        )
        extended = (*chain, *_group_segments(tree, level.dynamic[:-1]), matched)
        result = _descend(tree, target, parts, index + 1, extended, attempt)
        if result is not None:
            return result

    # 3. Catch-all consumes the rest
    if level.catch_all is not None and tree.node(level.catch_all[-1]).routable:
        return _finish_catch_all(tree, level.catch_all, parts[index:], chain, attempt, len(parts))

    return None


def _finish_catch_all(
    tree: RouteTree,
    edge: tuple[int, ...],
    captured: tuple[str, ...],
    chain: tuple[MatchedSegment, ...],
    attempt: _Attempt,
    consumed: int,
) -> tuple[MatchedSegment, ...] | None:
    target = tree.node(edge[-1])
    params = MappingProxyType({target.param_name or "": captured})
    matched = MatchedSegment(target, params, captured)
    extended = (*chain, *_group_segments(tree, edge[:-1]), matched)
    attempt.record(extended, consumed)
    if target.answers:
        return extended
    level = target.level
    if level is not None and level.index is not None:
        return (*extended, *_group_segments(tree, level.index))
    return None


def _group_segments(tree: RouteTree, ids: tuple[int, ...]) -> tuple[MatchedSegment, ...]:
    return tuple(MatchedSegment(tree.node(i)) for i in ids)


def find_not_found_boundary(nodes: tuple[RouteNode, ...]) -> int | None:
    """Index of the nearest node, walking upward, that defines ``notFound``.

    Only the given nodes are considered, so callers pass the attempted
    chain (or a match chain prefix), never siblings.  ``None`` means the
    global default applies.
    """
    for i in range(len(nodes) - 1, -1, -1):
        if nodes[i].has(SlotKind.NOT_FOUND):
            return i
    return None


def find_error_boundary(nodes: tuple[RouteNode, ...], below: int) -> int | None:
    """Index of the nearest node strictly above position *below* with an ``error`` slot."""
    for i in range(min(below, len(nodes)) - 1, -1, -1):
        if nodes[i].has(SlotKind.ERROR):
            return i
    return None

"""Routing — immutable route tree with O(path-depth) matching.

The tree is built once from a folder convention and compiled into
per-level match edges; the resolver walks those edges per request.
"""

from perch.routing.builder import RouteEntry, RouteTree, build_route_tree
from perch.routing.node import RouteNode, SegmentFiles, SegmentKind, SlotKind
from perch.routing.resolver import (
    MatchChain,
    MatchedSegment,
    find_not_found_boundary,
    resolve,
)

__all__ = [
    "MatchChain",
    "MatchedSegment",
    "RouteEntry",
    "RouteNode",
    "RouteTree",
    "SegmentFiles",
    "SegmentKind",
    "SlotKind",
    "build_route_tree",
    "find_not_found_boundary",
    "resolve",
]

"""``perch routes`` and ``perch resolve`` — inspect a route tree."""

import argparse
import sys

from perch.app import App
from perch.cli._resolve import resolve_app
from perch.errors import PerchError, RouteNotFoundError
from perch.routing.node import RouteNode, SlotKind
from perch.routing.resolver import resolve


def _load(target: str) -> App:
    try:
        app = resolve_app(target)
        app._ensure_frozen()
    except (ModuleNotFoundError, AttributeError, TypeError, PerchError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    return app


def _slot_summary(node: RouteNode) -> str:
    order = (
        SlotKind.LAYOUT,
        SlotKind.TEMPLATE,
        SlotKind.LOADING,
        SlotKind.ERROR,
        SlotKind.NOT_FOUND,
    )
    return ", ".join(slot.value for slot in order if node.has(slot))


def run_routes(args: argparse.Namespace) -> None:
    """Print a table of URL pattern, kind, and the wrapping slots of each route."""
    app = _load(args.app)
    entries = app.tree.routes()
    if not entries:
        print("No routes registered.")
        return

    rows = [
        (
            entry.pattern,
            entry.kind,
            _slot_summary(entry.node),
            app.tree.folder_path(entry.node) or "/",
        )
        for entry in entries
    ]
    max_pattern = max(max(len(r[0]) for r in rows), 7)  # "PATTERN" header
    max_kind = max(max(len(r[1]) for r in rows), 4)  # "KIND" header
    max_slots = max(max(len(r[2]) for r in rows), 5)  # "SLOTS" header

    fmt = f"{{:<{max_pattern}}}  {{:<{max_kind}}}  {{:<{max_slots}}}  {{}}"
    print(fmt.format("PATTERN", "KIND", "SLOTS", "FOLDER"))
    sep_len = max_pattern + max_kind + max_slots + 6 + max(len(r[3]) for r in rows)
    print("-" * min(sep_len, 80))
    for row in rows:
        print(fmt.format(*row))


def run_resolve(args: argparse.Namespace) -> None:
    """Print the match chain for one URL, or the not-found boundary it would use."""
    app = _load(args.app)
    try:
        chain = resolve(app.tree, args.url)
    except RouteNotFoundError as exc:
        print(f"No route matches {exc.path!r}")
        boundary = app.pipeline.not_found_chain(exc)
        if boundary is None:
            print("Not-found UI: default page")
        else:
            print(f"Not-found UI: {app.tree.folder_path(boundary.leaf) or '/'}")
        raise SystemExit(1) from exc

    print(f"PATH    {chain.path}")
    for position, seg in enumerate(chain.segments):
        folder = app.tree.folder_path(seg.node) or "/"
        consumed = "/".join(seg.consumed)
        captured = ", ".join(f"{k}={v!r}" for k, v in seg.params.items())
        line = f"  {position}  {folder}"
        if consumed:
            line += f"  [{consumed}]"
        if captured:
            line += f"  {captured}"
        print(line)
    if chain.params:
        print("PARAMS  " + ", ".join(f"{k}={v!r}" for k, v in chain.params.items()))

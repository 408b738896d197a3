"""Perch CLI — inspect route trees and render URLs.

Entry point registered as ``perch`` in ``pyproject.toml``::

    [project.scripts]
    perch = "perch.cli:main"
"""

import argparse
import logging
import sys


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the ``perch`` command."""
    parser = argparse.ArgumentParser(
        prog="perch",
        description="Perch — file-system routing with composable rendering.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    # -- perch routes ------------------------------------------------------
    routes_parser = subparsers.add_parser("routes", help="List routes")
    routes_parser.add_argument("app", help="Pages directory or import string (e.g. myapp:app)")

    # -- perch resolve -----------------------------------------------------
    resolve_parser = subparsers.add_parser("resolve", help="Show the match chain for a URL")
    resolve_parser.add_argument("app", help="Pages directory or import string")
    resolve_parser.add_argument("url", help="Request path, optionally with ?query")

    # -- perch render ------------------------------------------------------
    render_parser = subparsers.add_parser("render", help="Render a URL to stdout")
    render_parser.add_argument("app", help="Pages directory or import string")
    render_parser.add_argument("url", help="Request path, optionally with ?query")
    render_parser.add_argument(
        "--stream",
        action="store_true",
        help="Stream the shell and deferred chunks, one per line",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "routes":
        from perch.cli._routes import run_routes

        run_routes(args)
    elif args.command == "resolve":
        from perch.cli._routes import run_resolve

        run_resolve(args)
    elif args.command == "render":
        from perch.cli._render import run_render

        run_render(args)

"""Filesystem page routing: a pages/ directory as the route convention."""

from perch.pages.discovery import discover_routes

__all__ = ["discover_routes"]

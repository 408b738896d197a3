"""Suspense-style streaming — shell first, deferred subtrees via swap chunks.

A suspense boundary whose subtree data is still pending renders its
``loading`` slot inside a placeholder element and defers the real
content.  The shell is sent first; each deferred subtree follows as a
``<template>`` + inline ``<script>`` pair that swaps itself into the
placeholder without any framework dependency.

Ordering: a deferred subtree nested inside another is only sent after
its parent's chunk, because its placeholder lives inside that chunk.
"""

from __future__ import annotations

import html
import json
from contextvars import ContextVar

import anyio


def placeholder(fallback_html: str, target_id: str) -> str:
    """Wrap a loading fallback in an addressable placeholder element."""
    return f'<div id="{html.escape(target_id)}" data-perch-suspense>{fallback_html}</div>'


def format_swap_chunk(block_html: str, target_id: str) -> str:
    """Wrap resolved subtree HTML as a ``<template>`` + ``<script>`` pair.

    The inline script replaces the placeholder element with the
    template content.
    """
    escaped_id = html.escape(target_id)
    template_id = f"{escaped_id}-c"
    return (
        f'<template id="{template_id}">{block_html}</template>'
        f"<script>"
        f'(function(){{var t=document.getElementById("{template_id}"),'
        f'e=document.getElementById("{escaped_id}");'
        f"if(t&&e){{e.replaceWith(t.content.cloneNode(true));t.remove();}}}})();"
        f"</script>"
    )


_SCRIPT_ESCAPES = str.maketrans({"<": "\\u003c", ">": "\\u003e", "&": "\\u0026"})


def format_redirect_chunk(location: str) -> str:
    """Client-side redirect for a redirect raised after the shell was sent."""
    target = json.dumps(location).translate(_SCRIPT_ESCAPES)
    return f"<script>location.replace({target});</script>"


class Deferred:
    """A suspended subtree waiting to be streamed."""

    __slots__ = ("emitted", "parent", "target_id")

    def __init__(self, target_id: str, parent: Deferred | None) -> None:
        self.target_id = target_id
        self.parent = parent
        self.emitted = anyio.Event()


# The deferred subtree whose content the current task is rendering.
current_deferred: ContextVar[Deferred | None] = ContextVar("perch_deferred", default=None)

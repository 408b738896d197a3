"""Render outcomes — tagged control values instead of exceptions.

Every step of a composition returns one of::

    Continue(html)         # normal output
    NotFoundSignal()       # abort subtree, nearest notFound slot
    ErrorSignal(error)     # abort subtree, nearest error slot
    RedirectSignal(url)    # abort the whole render

User slot renderers and loaders return a signal to steer control flow::

    def page(post):
        if post is None:
            return not_found()
        if post.moved_to:
            return permanent_redirect(post.moved_to)
        return f"<article>{post.body}</article>"

Signals travel up the composition as return values, so every node's
cleanup runs in an ordinary ``finally`` on the way out.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from perch.errors import RenderError


@dataclass(frozen=True, slots=True)
class Continue:
    """Successful output of a composition step."""

    html: str


@dataclass(frozen=True, slots=True)
class NotFoundSignal:
    """Abort the current subtree and render the nearest ``notFound`` slot."""

    detail: str = ""


@dataclass(frozen=True, slots=True)
class ErrorSignal:
    """Abort the current subtree and render the nearest ``error`` slot."""

    error: RenderError


@dataclass(frozen=True, slots=True)
class RedirectSignal:
    """Abort the entire render and redirect.

    Not an error: the transport answers with a redirect status and a
    ``Location`` header.
    """

    location: str
    permanent: bool = False

    @property
    def status(self) -> int:
        return 308 if self.permanent else 307


Signal = NotFoundSignal | ErrorSignal | RedirectSignal
Outcome = Continue | NotFoundSignal | ErrorSignal | RedirectSignal

_SIGNAL_TYPES = (NotFoundSignal, ErrorSignal, RedirectSignal)


def is_signal(value: Any) -> bool:
    """Whether *value* is a control signal rather than render output."""
    return isinstance(value, _SIGNAL_TYPES)


def not_found(detail: str = "") -> NotFoundSignal:
    return NotFoundSignal(detail)


def redirect(location: str) -> RedirectSignal:
    """Temporary redirect (307)."""
    return RedirectSignal(location)


def permanent_redirect(location: str) -> RedirectSignal:
    """Permanent redirect (308)."""
    return RedirectSignal(location, permanent=True)

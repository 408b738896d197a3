"""Hierarchical page metadata.

Per-node declarations merge root to leaf into one :class:`MetadataRecord`
whose ``title`` is always fully resolved.  :func:`render_head` turns the
record into head tags.
"""

from perch.metadata.head import inject_head, render_head
from perch.metadata.record import MetadataRecord, Title, resolve_title
from perch.metadata.resolver import MetadataResolver

__all__ = [
    "MetadataRecord",
    "MetadataResolver",
    "Title",
    "inject_head",
    "render_head",
    "resolve_title",
]

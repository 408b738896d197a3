"""Head rendering — MetadataRecord to ``<title>`` and ``<meta>`` tags.

The default head collaborator.  Field names map to tags as follows::

    title            -> <title>
    og:* / twitter:* -> <meta property="..." content="...">
    anything else    -> <meta name="..." content="...">

List values emit one tag per item; ``None`` and ``False`` are skipped.
Mapping values are flattened with ``:`` (``{"og": {"type": "x"}}`` ->
``og:type``).
"""

import html
from collections.abc import Iterator, Mapping
from typing import Any

from perch.metadata.record import MetadataRecord

_PROPERTY_PREFIXES = ("og:", "article:", "twitter:", "fb:")


def _flatten(prefix: str, value: Any) -> Iterator[tuple[str, Any]]:
    if isinstance(value, Mapping):
        for key, inner in value.items():
            yield from _flatten(f"{prefix}:{key}", inner)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _flatten(prefix, item)
    else:
        yield prefix, value


def render_head(record: MetadataRecord) -> str:
    """Render *record* as escaped head tags."""
    tags: list[str] = []
    if record.title:
        tags.append(f"<title>{html.escape(record.title)}</title>")
    for field_name, raw in record.fields.items():
        for name, value in _flatten(field_name, raw):
            if value is None or value is False:
                continue
            attr = "property" if name.startswith(_PROPERTY_PREFIXES) else "name"
            content = "" if value is True else str(value)
            tags.append(
                f'<meta {attr}="{html.escape(name)}" content="{html.escape(content)}">'
            )
    return "".join(tags)


def inject_head(document: str, record: MetadataRecord) -> str:
    """Insert rendered head tags before ``</head>``.

    Documents without a ``</head>`` (fragments, bare pages) are returned
    unchanged.
    """
    marker = document.find("</head>")
    if marker == -1:
        return document
    return document[:marker] + render_head(record) + document[marker:]

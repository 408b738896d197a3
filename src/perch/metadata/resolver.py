"""Metadata resolver — merge declarations along a match chain.

Fields merge root to leaf (leaf overrides, undeclared fields inherit);
``title`` follows :func:`~perch.metadata.record.resolve_title`.

Callable declarations run inside the render pass, so they receive the
node's loaded ``data`` and the same deduplicating ``fetch`` as loaders::

    async def generate_metadata(slug, data, fetch):
        author = await fetch("author", {"id": data["author_id"]})
        return {"title": data["title"], "author": author["name"]}

A failing declaration is logged, recorded on the record, and skipped;
it never aborts body rendering.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from perch._internal.invoke import invoke_injected
from perch.config import RouterConfig
from perch.errors import ConfigurationError, MetadataResolutionError
from perch.metadata.record import MetadataRecord, Title, resolve_title
from perch.rendering.context import RenderPass
from perch.rendering.signals import is_signal

logger = logging.getLogger("perch.metadata")


class MetadataResolver:
    """Resolve a :class:`MetadataRecord` for a render pass."""

    __slots__ = ("config",)

    def __init__(self, config: RouterConfig | None = None) -> None:
        self.config = config or RouterConfig()

    async def resolve(self, rpass: RenderPass) -> MetadataRecord:
        fields: dict[str, Any] = {}
        titles: list[str | Title | None] = []
        first_error: MetadataResolutionError | None = None

        for index, seg in enumerate(rpass.chain.segments):
            decl = seg.node.metadata
            if decl is None:
                continue
            try:
                values = await self._evaluate(rpass, index, decl)
            except MetadataResolutionError as exc:
                logger.exception("Metadata of %r failed", seg.node.name or "/")
                first_error = first_error or exc
                continue
            if values is None:
                continue
            titles.append(values.get("title"))
            fields.update((k, v) for k, v in values.items() if k != "title")

        title = resolve_title(
            titles,
            placeholder=self.config.title_placeholder,
            fallback=self.config.default_title,
        )
        return MetadataRecord(title=title, fields=MappingProxyType(fields), error=first_error)

    async def _evaluate(
        self,
        rpass: RenderPass,
        index: int,
        decl: Any,
    ) -> Mapping[str, Any] | None:
        node = rpass.chain.segments[index].node
        if isinstance(decl, Mapping):
            values = decl
        elif callable(decl):
            data = await rpass.data(index)
            if is_signal(data):
                return None
            available = {**rpass.injectable(index), "data": data}
            try:
                values = await invoke_injected(decl, available)
            except Exception as exc:
                error = MetadataResolutionError.wrap(exc, node=node, slot="metadata")
                raise error from exc
        else:
            msg = f"Metadata of {node.name or '/'!r} must be a mapping or a callable"
            raise MetadataResolutionError(msg, node=node, slot="metadata")

        if values is None:
            return None
        if not isinstance(values, Mapping):
            msg = (
                f"Metadata of {node.name or '/'!r} returned {type(values).__name__}, "
                "expected a mapping"
            )
            raise MetadataResolutionError(msg, node=node, slot="metadata")
        try:
            Title.coerce(values.get("title"))
        except ConfigurationError as exc:
            raise MetadataResolutionError(str(exc), node=node, slot="metadata") from exc
        return values

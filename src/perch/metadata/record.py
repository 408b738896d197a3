"""Metadata records and title resolution.

A node declares ``title`` either as a plain string or as a structured
value with ``default`` / ``template`` / ``absolute`` parts::

    # root layout
    {"title": {"template": "%s | Acme", "default": "Acme"}}

    # leaf page               -> resolved title
    {"title": "Our Products"}           -> "Our Products | Acme"
    {"title": {"absolute": "Special"}}  -> "Special"
    {}                                  -> "Acme"

A ``template`` applies to titles declared *below* the node that declares
it; the nearest such ancestor wins.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from perch.errors import ConfigurationError, MetadataResolutionError


@dataclass(frozen=True, slots=True)
class Title:
    """Structured title declaration."""

    default: str | None = None
    template: str | None = None
    absolute: str | None = None

    @classmethod
    def coerce(cls, value: Any) -> str | Title | None:
        """Normalize a declared ``title`` value."""
        if value is None or isinstance(value, (str, Title)):
            return value
        if isinstance(value, Mapping):
            unknown = set(value) - {"default", "template", "absolute"}
            if unknown:
                msg = f"Unknown title keys: {sorted(unknown)}"
                raise ConfigurationError(msg)
            return cls(
                default=value.get("default"),
                template=value.get("template"),
                absolute=value.get("absolute"),
            )
        msg = f"title must be a string or a mapping, not {type(value).__name__}"
        raise ConfigurationError(msg)


def resolve_title(
    declarations: Iterable[str | Title | Mapping[str, Any] | None],
    *,
    placeholder: str = "%s",
    fallback: str = "",
) -> str:
    """Resolve title declarations ordered root to leaf.

    Args:
        declarations: One entry per node (``None`` where undeclared).
        placeholder: Substitution marker inside templates.
        fallback: Title when nothing along the chain declares one.
    """
    resolved: str | None = None
    inherited_template: str | None = None

    for raw in declarations:
        decl = Title.coerce(raw)
        if decl is None:
            continue
        if isinstance(decl, str):
            if inherited_template is not None:
                resolved = inherited_template.replace(placeholder, decl)
            else:
                resolved = decl
            continue
        if decl.absolute is not None:
            resolved = decl.absolute
        elif decl.default is not None:
            resolved = decl.default
        if decl.template is not None:
            inherited_template = decl.template

    return resolved if resolved is not None else fallback


@dataclass(frozen=True, slots=True)
class MetadataRecord:
    """Resolved metadata for one request.

    Attributes:
        title: Fully resolved title.
        fields: Every other merged field.
        error: First declaration failure, if any (head output only).
    """

    title: str = ""
    fields: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    error: MetadataResolutionError | None = None

    def get(self, name: str, default: Any = None) -> Any:
        if name == "title":
            return self.title
        return self.fields.get(name, default)

    def __contains__(self, name: object) -> bool:
        return name == "title" or name in self.fields

    def as_dict(self) -> dict[str, Any]:
        return {"title": self.title, **self.fields}

"""Folder-name parsing and path normalization.

Folder names follow the bracket convention::

    "blog"          -> static
    "(marketing)"   -> group (no URL segment)
    "_components"   -> private (never routed)
    "%5Fhidden"     -> static "_hidden" (escaped private marker)
    "[slug]"        -> dynamic, captures one component
    "[...parts]"    -> catch-all, captures one or more
    "[[...parts]]"  -> optional catch-all, captures zero or more
"""

import re
from dataclasses import dataclass
from urllib.parse import unquote

from perch.errors import ConfigurationError
from perch.routing.node import SegmentKind

_PARAM_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_GROUP_RE = re.compile(r"^\(([^()/]+)\)$")
_ESCAPED_UNDERSCORE = "%5F"


@dataclass(frozen=True, slots=True)
class ParsedName:
    """Result of parsing one folder name."""

    kind: SegmentKind
    url_segment: str
    param_name: str | None = None


def parse_segment_name(name: str, *, private_prefix: str = "_") -> ParsedName:
    """Classify a folder name.

    Raises ``ConfigurationError`` for malformed bracket syntax or
    parameter names that are not identifiers.
    """
    if not name:
        return ParsedName(SegmentKind.STATIC, "")

    if _GROUP_RE.match(name):
        return ParsedName(SegmentKind.GROUP, "")

    if name.upper().startswith(_ESCAPED_UNDERSCORE):
        return ParsedName(SegmentKind.STATIC, "_" + name[len(_ESCAPED_UNDERSCORE):])

    if private_prefix and name.startswith(private_prefix):
        return ParsedName(SegmentKind.PRIVATE, "")

    if name.startswith("[[") or name.endswith("]]"):
        inner = _strip(name, "[[...", "]]")
        return ParsedName(SegmentKind.OPTIONAL_CATCH_ALL, name, _check_param(inner, name))

    if name.startswith("[") or name.endswith("]"):
        if name.startswith("[..."):
            inner = _strip(name, "[...", "]")
            return ParsedName(SegmentKind.CATCH_ALL, name, _check_param(inner, name))
        inner = _strip(name, "[", "]")
        return ParsedName(SegmentKind.DYNAMIC, name, _check_param(inner, name))

    if "(" in name or ")" in name or "/" in name:
        msg = f"Invalid folder name {name!r}: parentheses are reserved for route groups"
        raise ConfigurationError(msg)

    return ParsedName(SegmentKind.STATIC, name)


def _strip(name: str, prefix: str, suffix: str) -> str:
    if not (name.startswith(prefix) and name.endswith(suffix)) or len(name) <= len(prefix) + len(
        suffix
    ):
        msg = (
            f"Invalid dynamic folder name {name!r}. "
            "Use [param], [...param] or [[...param]]."
        )
        raise ConfigurationError(msg)
    return name[len(prefix) : -len(suffix)]


def _check_param(param: str, name: str) -> str:
    if not _PARAM_NAME_RE.match(param):
        msg = f"Invalid parameter name {param!r} in folder {name!r}: must be an identifier"
        raise ConfigurationError(msg)
    return param


def normalize_path(path: str) -> tuple[tuple[str, ...], str]:
    """Split a request path into decoded components and a raw query string.

    Examples::

        "/blog//intro/"       -> (("blog", "intro"), "")
        "/search?q=a%20b"     -> (("search",), "q=a%20b")
        "/files/a%2Fb"        -> (("files", "a/b"), "")
    """
    path, _, query = path.partition("?")
    path = path.partition("#")[0]
    parts = tuple(unquote(p) for p in path.split("/") if p)
    return parts, query


def split_folder_path(path: str) -> tuple[str, ...]:
    """Split a convention key like ``"(shop)/items/[id]"`` into folder names."""
    return tuple(p for p in path.strip("/").split("/") if p)

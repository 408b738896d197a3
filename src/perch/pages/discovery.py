"""Filesystem route discovery for a pages/ directory.

Walks the directory tree and builds the convention mapping consumed by
:func:`~perch.routing.builder.build_route_tree`.  Each folder may hold:

- ``page.py``, ``layout.py``, ``template.py``, ``loading.py``,
  ``error.py``, ``not_found.py`` exposing a ``render`` callable
- ``route.py`` exposing a ``handler`` callable
- a sibling ``page.html`` (``layout.html``, ...) used as a kida template
  when the module has no ``render`` (or does not exist)

Any of those modules may also define ``load``, ``metadata`` or
``generate_metadata``; a folder may define each at most once.

Folder names keep their routing syntax (``[slug]``, ``(group)``,
``[...rest]``).  Private folders and dot-folders are not walked.
"""

from __future__ import annotations

import importlib.util
import logging
from pathlib import Path
from types import ModuleType
from typing import Any

from perch.errors import ConfigurationError
from perch.routing.node import SegmentFiles

logger = logging.getLogger("perch.routing")

# File stem -> SegmentFiles field
_SLOT_FILES = {
    "page": "page",
    "layout": "layout",
    "template": "template",
    "loading": "loading",
    "error": "error",
    "not_found": "not_found",
}


def discover_routes(
    pages_dir: str | Path,
    *,
    private_prefix: str = "_",
) -> dict[str, SegmentFiles]:
    """Walk *pages_dir* and return the route convention mapping.

    Args:
        pages_dir: Path to the ``pages/`` directory.
        private_prefix: Folders starting with this prefix are skipped.

    Returns:
        Folder path (``""`` for the root) to :class:`SegmentFiles`.
        Template slots are template names relative to *pages_dir*.

    Raises:
        FileNotFoundError: *pages_dir* does not exist.
        ConfigurationError: A folder declares ``load`` or metadata twice.
    """
    root = Path(pages_dir).resolve()
    if not root.is_dir():
        raise FileNotFoundError(f"Pages directory not found: {root}")

    convention: dict[str, SegmentFiles] = {}
    _walk_directory(root, root, convention, private_prefix=private_prefix)
    logger.debug("Discovered %d folders under %s", len(convention), root)
    return convention


def _walk_directory(
    directory: Path,
    root: Path,
    convention: dict[str, SegmentFiles],
    *,
    private_prefix: str,
) -> None:
    files = _collect_folder(directory, root)
    if files is not None:
        rel = directory.relative_to(root).as_posix()
        convention["" if rel == "." else rel] = files

    for item in sorted(directory.iterdir()):
        if not item.is_dir():
            continue
        if item.name.startswith((".", private_prefix)) or item.name == "__pycache__":
            continue
        _walk_directory(item, root, convention, private_prefix=private_prefix)


def _collect_folder(directory: Path, root: Path) -> SegmentFiles | None:
    """Build the SegmentFiles for one folder, or None when it has no route files."""
    slots: dict[str, Any] = {}
    extras: dict[str, tuple[Any, Path]] = {}
    found = False

    for stem, field_name in _SLOT_FILES.items():
        module_file = directory / f"{stem}.py"
        template_file = directory / f"{stem}.html"
        render = None
        if module_file.is_file():
            found = True
            module = _load_module(module_file, root)
            _collect_extras(module, module_file, extras)
            render = getattr(module, "render", None)
            if render is not None and not callable(render):
                msg = f"{module_file}: 'render' must be callable"
                raise ConfigurationError(msg)
        if render is None and template_file.is_file():
            found = True
            render = template_file.relative_to(root).as_posix()
        if render is not None:
            slots[field_name] = render

    route_file = directory / "route.py"
    if route_file.is_file():
        found = True
        module = _load_module(route_file, root)
        _collect_extras(module, route_file, extras)
        handler = getattr(module, "handler", None)
        if handler is None or not callable(handler):
            msg = f"{route_file}: must define a callable 'handler'"
            raise ConfigurationError(msg)
        slots["handler"] = handler

    if not found:
        return None

    metadata = extras.get("metadata")
    generated = extras.get("generate_metadata")
    if metadata is not None and generated is not None:
        msg = (
            f"{directory}: both 'metadata' ({metadata[1].name}) and "
            f"'generate_metadata' ({generated[1].name}) are defined"
        )
        raise ConfigurationError(msg)
    declared = metadata or generated
    load = extras.get("load")
    return SegmentFiles(
        **slots,
        metadata=declared[0] if declared is not None else None,
        load=load[0] if load is not None else None,
    )


def _collect_extras(
    module: ModuleType, file: Path, extras: dict[str, tuple[Any, Path]]
) -> None:
    for name in ("load", "metadata", "generate_metadata"):
        value = getattr(module, name, None)
        if value is None:
            continue
        if name in extras:
            msg = f"{name!r} is defined in both {extras[name][1].name} and {file.name}"
            raise ConfigurationError(msg)
        extras[name] = (value, file)


def _load_module(file: Path, root: Path) -> ModuleType:
    rel = file.relative_to(root).with_suffix("").as_posix()
    module_name = "_perch_pages_" + "".join(c if c.isalnum() else "_" for c in rel)
    spec = importlib.util.spec_from_file_location(module_name, file)
    if spec is None or spec.loader is None:
        msg = f"Cannot import route file {file}"
        raise ConfigurationError(msg)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module

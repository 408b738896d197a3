"""App resolution — turns a CLI target into an App instance.

A target is either a pages directory or a ``"module:attribute"`` import
string.
"""

import importlib
from pathlib import Path

from perch.app import App


def resolve_app(target: str) -> App:
    """Resolve *target* to a perch App instance.

    An existing directory is mounted as a pages directory.  Otherwise
    *target* is an import string; when the attribute portion is omitted
    it defaults to ``"app"``.  Factory functions are called.

    Raises:
        ModuleNotFoundError: If the module cannot be imported.
        AttributeError: If the attribute does not exist on the module.
        TypeError: If the resolved object is not a perch ``App`` or callable.
    """
    if Path(target).is_dir():
        return App(target)

    module_path, _, attr_name = target.partition(":")
    if not attr_name:
        attr_name = "app"

    module = importlib.import_module(module_path)
    obj = getattr(module, attr_name)

    if callable(obj) and not isinstance(obj, App):
        try:
            obj = obj()
        except Exception as exc:
            msg = f"Factory function {target!r} raised an error: {exc}"
            raise TypeError(msg) from exc

    if not isinstance(obj, App):
        msg = f"{target!r} resolved to {type(obj).__name__}, not a perch.App instance"
        raise TypeError(msg)

    return obj

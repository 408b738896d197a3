"""Invoke helpers — call sync or async user callables uniformly.

Slot renderers, loaders, and metadata functions can be ``def`` or
``async def``, and declare only the arguments they need.  This module
keeps the sync/async check and the name-based injection in one place.

Usage::

    from perch._internal.invoke import invoke, invoke_injected

    result = await invoke(handler, *args, **kwargs)
    result = await invoke_injected(load, {"slug": "intro", "fetch": fetch})
"""

import inspect
from collections.abc import Callable, Mapping
from typing import Any


async def invoke(handler: Any, *args: Any, **kwargs: Any) -> Any:
    """Call a handler and await the result if it's a coroutine."""
    result = handler(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


def injected_kwargs(func: Callable[..., Any], available: Mapping[str, Any]) -> dict[str, Any]:
    """Pick keyword arguments for *func* by parameter name.

    Only names present in *available* are passed.  A parameter annotated
    with a simple type (``int``, ``float``) coerces a string value; if
    coercion fails the raw value is kept::

        def load(post_id: int, fetch): ...   # receives post_id=42

    A ``**kwargs`` parameter receives everything.
    """
    sig = inspect.signature(func, eval_str=True)
    kwargs: dict[str, Any] = {}

    for name, param in sig.parameters.items():
        if param.kind is inspect.Parameter.VAR_KEYWORD:
            return {**available, **kwargs}
        if param.kind is inspect.Parameter.VAR_POSITIONAL or name not in available:
            continue
        value = available[name]
        if (
            isinstance(value, str)
            and param.annotation is not inspect.Parameter.empty
            and param.annotation in (int, float)
        ):
            try:
                value = param.annotation(value)
            except (ValueError, TypeError):
                pass
        kwargs[name] = value

    return kwargs


async def invoke_injected(func: Callable[..., Any], available: Mapping[str, Any]) -> Any:
    """Call *func* with arguments injected from *available*, awaiting if needed."""
    return await invoke(func, **injected_kwargs(func, available))


def accepts(func: Callable[..., Any], name: str) -> bool:
    """Whether *func* would receive *name* through injection."""
    for param_name, param in inspect.signature(func).parameters.items():
        if param.kind is inspect.Parameter.VAR_KEYWORD or param_name == name:
            return True
    return False

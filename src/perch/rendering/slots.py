"""Slot renderers — the seam to the UI engine.

The pipeline only needs "render this slot with these props (and these
children)" plus mount/unmount notifications for stateful instances.
Two renderers ship:

- :class:`CallableSlotRenderer` — slot contents are Python callables
  whose arguments are injected by name::

      def layout(children, data, state):
          state.setdefault("opened", 0)
          return f"<nav>{data['menu']}</nav><main>{children}</main>"

- :class:`KidaSlotRenderer` — slot contents are kida template names.
  Wrapping slots receive their children through a ``content`` block,
  the same way nested page layouts compose::

      {# layout.html #}
      <nav>{{ menu }}</nav><main>{% block content %}{% end %}</main>

:class:`DefaultSlotRenderer` dispatches between the two by content type.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from kida import Environment

from perch._internal.invoke import invoke_injected
from perch.errors import ConfigurationError, RenderError
from perch.rendering.signals import Signal, is_signal
from perch.routing.node import ParamValue, RouteNode, SlotKind

if TYPE_CHECKING:
    from perch.rendering.instances import SlotInstance


@dataclass(frozen=True, slots=True)
class RenderProps:
    """Everything a slot may receive.

    Attributes:
        node: The route node owning the slot.
        slot: Which slot is being rendered.
        params: Params accumulated from the root down to *node*.
        search_params: Parsed query string.
        data: The node's resolved data dependency (``None`` if none).
        children: Composed inner html for wrapping slots.
        error: The failure being handled (``error`` slots only).
        detail: Not-found detail (``notFound`` slots only).
        instance: Stateful instance for layouts and templates.
        fetch: The pass-scoped deduplicating fetch.
        cleanup: Register a callback run when the node's render exits.
    """

    node: RouteNode
    slot: SlotKind
    params: Mapping[str, ParamValue] = field(default_factory=dict)
    search_params: Mapping[str, list[str]] = field(default_factory=dict)
    data: Any = None
    children: str | None = None
    error: RenderError | None = None
    detail: str = ""
    instance: SlotInstance | None = None
    fetch: Callable[..., Any] | None = None
    cleanup: Callable[[Callable[[], Any]], None] | None = None

    @property
    def state(self) -> dict[str, Any]:
        """Instance-local state; survives re-renders while the instance lives."""
        return self.instance.state if self.instance is not None else {}

    def injectable(self) -> dict[str, Any]:
        """Names available to callable slots.

        Path params are injected by name; the reserved names below win
        over a param with the same name (which stays reachable via ``params``).
        """
        return {
            **self.params,
            "params": self.params,
            "search_params": self.search_params,
            "data": self.data,
            "children": self.children if self.children is not None else "",
            "error": self.error,
            "detail": self.detail,
            "state": self.state,
            "instance": self.instance,
            "fetch": self.fetch,
            "cleanup": self.cleanup,
            "node": self.node,
        }

    def template_context(self) -> dict[str, Any]:
        """Context for template slots: data keys are flattened in."""
        ctx: dict[str, Any] = {**self.params}
        if isinstance(self.data, Mapping):
            ctx.update(self.data)
        ctx.update(
            params=dict(self.params),
            search_params=dict(self.search_params),
            data=self.data,
            state=self.state,
            detail=self.detail,
            error=self.error.describe() if self.error is not None else None,
        )
        return ctx


@runtime_checkable
class SlotRenderer(Protocol):
    """What the render pipeline needs from a UI engine."""

    async def render(self, content: Any, props: RenderProps) -> str | Signal: ...

    def mount(self, instance: SlotInstance) -> None: ...

    def unmount(self, instance: SlotInstance) -> None: ...


class BaseSlotRenderer:
    """No-op lifecycle hooks. Subclass and override to observe mounts."""

    async def render(self, content: Any, props: RenderProps) -> str | Signal:
        raise NotImplementedError

    def mount(self, instance: SlotInstance) -> None:
        return None

    def unmount(self, instance: SlotInstance) -> None:
        return None


def _coerce(result: Any, props: RenderProps) -> str | Signal:
    if result is None:
        return ""
    if isinstance(result, str) or is_signal(result):
        return result
    msg = (
        f"{props.slot.value} slot of {props.node.name or '/'!r} returned "
        f"{type(result).__name__}; expected str or a signal"
    )
    raise TypeError(msg)


class CallableSlotRenderer(BaseSlotRenderer):
    """Render slots that are plain (sync or async) Python callables."""

    async def render(self, content: Any, props: RenderProps) -> str | Signal:
        if not callable(content):
            msg = f"Slot content {content!r} is not callable"
            raise ConfigurationError(msg)
        return _coerce(await invoke_injected(content, props.injectable()), props)


class KidaSlotRenderer(BaseSlotRenderer):
    """Render slots that are kida template names."""

    __slots__ = ("env",)

    def __init__(self, env: Environment) -> None:
        self.env = env

    async def render(self, content: Any, props: RenderProps) -> str | Signal:
        template = self.env.get_template(content)
        ctx = props.template_context()
        if props.children is not None:
            return template.render_with_blocks({"content": props.children}, **ctx)
        return template.render(ctx)


class DefaultSlotRenderer(BaseSlotRenderer):
    """Dispatch by content type: template names to kida, callables to Python.

    Template slots require a kida ``Environment``.
    """

    __slots__ = ("_callables", "_templates")

    def __init__(self, env: Environment | None = None) -> None:
        self._callables = CallableSlotRenderer()
        self._templates = KidaSlotRenderer(env) if env is not None else None

    async def render(self, content: Any, props: RenderProps) -> str | Signal:
        if isinstance(content, str):
            if self._templates is None:
                msg = (
                    f"Template slot {content!r} requires kida integration. "
                    "Pass a kida Environment (kida_env=) to the app."
                )
                raise ConfigurationError(msg)
            return await self._templates.render(content, props)
        return await self._callables.render(content, props)

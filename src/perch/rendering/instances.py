"""Explicit identity for stateful slot instances.

Layouts persist across navigations while the same node occupies the
same chain position; templates are recreated on every navigation.  The
difference is encoded in the identity key alone::

    layout:   ("layout", position, node_id)
    template: ("template", position, node_id, navigation_sequence)

A render first *plans* its instances (reusing matching keys from the
registry), and the plan is *committed* only when the render succeeded
and is still current.  A superseded render simply drops its plan.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from perch.routing.node import RouteNode, SlotKind

if TYPE_CHECKING:
    from perch.rendering.slots import SlotRenderer

logger = logging.getLogger("perch.render")

InstanceKey = tuple[Any, ...]


def layout_key(position: int, node: RouteNode) -> InstanceKey:
    return ("layout", position, node.id)


def template_key(position: int, node: RouteNode, sequence: int) -> InstanceKey:
    return ("template", position, node.id, sequence)


@dataclass(slots=True, eq=False)
class SlotInstance:
    """A mounted layout or template with engine-owned state."""

    key: InstanceKey
    node: RouteNode
    slot: SlotKind
    position: int
    state: dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        return f"SlotInstance({self.slot.value}, position={self.position}, node={self.node.name!r})"


@dataclass(frozen=True, slots=True)
class MountPlan:
    """Instances a render will use, and how they differ from what is mounted."""

    sequence: int
    instances: Mapping[tuple[SlotKind, int], SlotInstance]
    created: tuple[SlotInstance, ...] = ()
    reused: tuple[SlotInstance, ...] = ()
    removed: tuple[SlotInstance, ...] = ()

    def get(self, slot: SlotKind, position: int) -> SlotInstance | None:
        return self.instances.get((slot, position))


class MountRegistry:
    """The currently mounted layout/template instances.

    Mutated only by :meth:`commit` and :meth:`clear`.
    """

    __slots__ = ("_mounted", "_renderer")

    def __init__(self, renderer: SlotRenderer | None = None) -> None:
        self._renderer = renderer
        self._mounted: dict[InstanceKey, SlotInstance] = {}

    @property
    def mounted(self) -> tuple[SlotInstance, ...]:
        return tuple(sorted(self._mounted.values(), key=lambda i: (i.position, i.slot.value)))

    def get(self, key: InstanceKey) -> SlotInstance | None:
        return self._mounted.get(key)

    def find(self, slot: SlotKind, position: int) -> SlotInstance | None:
        for instance in self._mounted.values():
            if instance.slot is slot and instance.position == position:
                return instance
        return None

    def plan(self, nodes: Sequence[RouteNode], sequence: int) -> MountPlan:
        """Compute the instances for rendering *nodes* at navigation *sequence*."""
        instances: dict[tuple[SlotKind, int], SlotInstance] = {}
        created: list[SlotInstance] = []
        reused: list[SlotInstance] = []

        for position, node in enumerate(nodes):
            for slot, key in (
                (SlotKind.LAYOUT, layout_key(position, node)),
                (SlotKind.TEMPLATE, template_key(position, node, sequence)),
            ):
                if not node.has(slot):
                    continue
                existing = self._mounted.get(key)
                if existing is not None:
                    reused.append(existing)
                    instances[(slot, position)] = existing
                else:
                    fresh = SlotInstance(key, node, slot, position)
                    created.append(fresh)
                    instances[(slot, position)] = fresh

        keep = {instance.key for instance in instances.values()}
        removed = tuple(i for k, i in self._mounted.items() if k not in keep)
        return MountPlan(
            sequence=sequence,
            instances=MappingProxyType(instances),
            created=tuple(created),
            reused=tuple(reused),
            removed=removed,
        )

    def commit(self, plan: MountPlan) -> None:
        """Make *plan* the mounted set: unmount removed (innermost first), mount created."""
        for instance in sorted(plan.removed, key=lambda i: i.position, reverse=True):
            self._mounted.pop(instance.key, None)
            if self._renderer is not None:
                self._renderer.unmount(instance)
        for instance in plan.created:
            self._mounted[instance.key] = instance
            if self._renderer is not None:
                self._renderer.mount(instance)
        logger.debug(
            "commit seq=%d: +%d ~%d -%d",
            plan.sequence, len(plan.created), len(plan.reused), len(plan.removed),
        )

    def clear(self) -> None:
        for instance in sorted(self._mounted.values(), key=lambda i: i.position, reverse=True):
            if self._renderer is not None:
                self._renderer.unmount(instance)
        self._mounted.clear()

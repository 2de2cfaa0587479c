"""Partition tracked channels between push and pull delivery.

Push slots are scarce: only ``capacity`` channels may be delivered through
the event session. They go to ``high`` priority channels in registry
(insertion) order; every other channel is polled. Normal priority channels
never hold a push slot, even when slots are left idle.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from .models import ChannelRecord, DeliveryMode, Priority


@dataclass(frozen=True)
class AssignmentResult:
    records: List[ChannelRecord]
    changed: bool


def needs_reassignment(records: Sequence[ChannelRecord], capacity: int) -> bool:
    push_count = 0
    normal_on_push = 0
    high_on_pull = 0
    for record in records:
        if record.delivery_mode == DeliveryMode.PUSH:
            push_count += 1
            if record.priority != Priority.HIGH:
                normal_on_push += 1
        elif record.priority == Priority.HIGH:
            high_on_pull += 1

    return (
        push_count > capacity
        or normal_on_push > 0
        or (high_on_pull > 0 and push_count < capacity)
    )


def assign_modes(records: Sequence[ChannelRecord], capacity: int) -> AssignmentResult:
    """Compute delivery modes for ``records``.

    The input is never mutated; the returned records are copies whenever a
    reassignment happened. ``changed`` tells whether any mode differs from
    the input, so an unchanged partition costs the push session nothing.
    """
    if not needs_reassignment(records, capacity):
        return AssignmentResult(records=list(records), changed=False)

    slots = max(capacity, 0)
    assigned: List[ChannelRecord] = []
    changed = False
    for record in records:
        mode = DeliveryMode.PULL
        if record.priority == Priority.HIGH and slots > 0:
            mode = DeliveryMode.PUSH
            slots -= 1
        if mode != record.delivery_mode:
            changed = True
        assigned.append(record.model_copy(update={"delivery_mode": mode}))

    return AssignmentResult(records=assigned, changed=changed)


__all__ = ["AssignmentResult", "assign_modes", "needs_reassignment"]

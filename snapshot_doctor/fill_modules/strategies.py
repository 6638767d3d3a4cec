"""Ordered gap-filling strategies.

Each strategy takes a :class:`FillContext` for one blank cell and returns a
value, or ``None`` to hand the cell to the next strategy. The first three read
the values currently held by the snapshots, earlier fills included.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

from snapshot_doctor.fill_modules.cache import ValueCache
from snapshot_doctor.fill_modules.periods import gap_position
from snapshot_doctor.models import Snapshot, SlotSchema


@dataclass
class FillContext:
    snapshots: Sequence[Snapshot]
    position: int
    name: str
    slot: int
    cache: ValueCache
    schema: SlotSchema
    point_order: Sequence[str] = ()
    time_factor_weight: float = 0.0

    @property
    def snapshot(self) -> Snapshot:
        return self.snapshots[self.position]

    def value_at(self, index: int) -> float | None:
        row = self.snapshots[index].row(self.name)
        if row is None:
            return None
        return row.values[self.slot]

    def previous_value(self) -> tuple[Snapshot, float] | None:
        for index in range(self.position - 1, -1, -1):
            value = self.value_at(index)
            if value is not None:
                return self.snapshots[index], value
        return None

    def next_value(self) -> tuple[Snapshot, float] | None:
        for index in range(self.position + 1, len(self.snapshots)):
            value = self.value_at(index)
            if value is not None:
                return self.snapshots[index], value
        return None


Strategy = Callable[[FillContext], "float | None"]


def temporal_neighbor_average(context: FillContext) -> float | None:
    before = context.previous_value()
    after = context.next_value()
    if before is None or after is None:
        return None
    before_snapshot, before_value = before
    after_snapshot, after_value = after
    mean = (before_value + after_value) / 2
    weight = context.time_factor_weight
    if weight <= 0:
        return mean
    fraction = gap_position(context.snapshot.timestamp, before_snapshot.timestamp, after_snapshot.timestamp)
    if fraction is None:
        return mean
    interpolated = before_value + (after_value - before_value) * fraction
    return mean + weight * (interpolated - mean)


def same_day_average(context: FillContext) -> float | None:
    current = context.snapshot
    values = []
    for index, snapshot in enumerate(context.snapshots):
        if index == context.position or snapshot.date != current.date:
            continue
        value = context.value_at(index)
        if value is not None:
            values.append(value)
    if not values:
        return None
    return sum(values) / len(values)


def single_nearest_neighbor(context: FillContext) -> float | None:
    before = context.previous_value()
    if before is not None:
        return before[1]
    after = context.next_value()
    if after is not None:
        return after[1]
    return None


def global_history_average(context: FillContext) -> float | None:
    return context.cache.mean(context.name, context.slot)


def adjacent_point_average(context: FillContext) -> float | None:
    order = list(context.point_order)
    if context.name not in order:
        return None
    index = order.index(context.name)
    sides = []
    if index > 0:
        sides.append(context.cache.mean(order[index - 1], context.slot))
    if index + 1 < len(order):
        sides.append(context.cache.mean(order[index + 1], context.slot))
    values = [value for value in sides if value is not None]
    if not values:
        return None
    return sum(values) / len(values)


def schema_default(context: FillContext) -> float | None:
    return context.schema.default_for(context.slot)


DEFAULT_STRATEGIES: tuple[Strategy, ...] = (
    temporal_neighbor_average,
    same_day_average,
    single_nearest_neighbor,
    global_history_average,
    adjacent_point_average,
    schema_default,
)


def strategy_id(strategy: Strategy) -> str:
    return getattr(strategy, "__name__", repr(strategy))


def fill_cell(context: FillContext, strategies: Sequence[Strategy] = DEFAULT_STRATEGIES) -> tuple[float | None, str | None]:
    for strategy in strategies:
        value = strategy(context)
        if value is not None:
            return value, strategy_id(strategy)
    return None, None

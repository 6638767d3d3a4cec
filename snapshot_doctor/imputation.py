"""Value imputation: every blank slot of every snapshot receives a value.

The scan runs in chronological order, so a gap filled early can serve as a
temporal neighbour for a later one. Supplement snapshots are jittered after the
scan and a final sweep forces any leftover blank to its band default.

Missing periods are computed up front for the run report only. Interpolation
weights come from each cell's own nearest non-blank neighbours, which can sit
inside a period shared with other points.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Sequence

import structlog

from snapshot_doctor.config import AppConfig
from snapshot_doctor.fill_modules.cache import ValueCache
from snapshot_doctor.fill_modules.jitter import RngFactory, apply_jitter, default_rng_factory
from snapshot_doctor.fill_modules.periods import identify_missing_periods
from snapshot_doctor.fill_modules.strategies import DEFAULT_STRATEGIES, FillContext, Strategy, fill_cell
from snapshot_doctor.index import SnapshotIndex
from snapshot_doctor.models import MissingPeriod, Snapshot

log = structlog.get_logger()


@dataclass
class ImputationResult:
    snapshots: list[Snapshot]
    filled_by_strategy: Counter = field(default_factory=Counter)
    forced_defaults: int = 0
    jittered_cells: int = 0
    blank_cells_before: int = 0
    missing_periods: list[MissingPeriod] = field(default_factory=list)
    cache_stats: dict[str, int] = field(default_factory=dict)

    @property
    def filled_cells(self) -> int:
        return sum(self.filled_by_strategy.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "blank_cells_before": self.blank_cells_before,
            "filled_cells": self.filled_cells,
            "filled_by_strategy": dict(sorted(self.filled_by_strategy.items())),
            "forced_defaults": self.forced_defaults,
            "jittered_cells": self.jittered_cells,
            "missing_periods": len(self.missing_periods),
            "cache": dict(self.cache_stats),
        }


class ImputationEngine:
    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
        rng_factory: RngFactory = default_rng_factory,
    ) -> None:
        self.config = config or AppConfig()
        self.schema = self.config.slot_schema()
        self.strategies = tuple(strategies)
        self.rng_factory = rng_factory

    def run(self, snapshots: Sequence[Snapshot], cache: ValueCache | None = None) -> ImputationResult:
        index = SnapshotIndex(snapshots)
        ordered = index.sorted()
        self._check_widths(ordered)
        cache = cache or ValueCache.build(ordered)
        result = ImputationResult(
            snapshots=ordered,
            blank_cells_before=sum(snapshot.blank_count() for snapshot in ordered),
            missing_periods=identify_missing_periods(ordered),
        )
        point_order = index.point_names(self.config.imputation.adjacent_point_order)

        batch_size = self.config.imputation.batch_size
        for start in range(0, len(ordered), batch_size):
            batch_end = min(start + batch_size, len(ordered))
            for position in range(start, batch_end):
                self._fill_snapshot(ordered, position, cache, point_order, result)
            log.info("imputation_batch_done", processed=batch_end, total=len(ordered))

        for snapshot in ordered:
            if snapshot.is_supplement:
                result.jittered_cells += apply_jitter(snapshot, snapshot.adjustment, self.rng_factory)

        result.forced_defaults = self.force_defaults(ordered)
        if result.forced_defaults:
            log.warning("imputation_forced_defaults", cells=result.forced_defaults)
        result.cache_stats = cache.stats()
        return result

    def _check_widths(self, snapshots: Sequence[Snapshot]) -> None:
        width = len(self.schema)
        for snapshot in snapshots:
            for row in snapshot.rows:
                if len(row.values) != width:
                    raise ValueError(
                        f"Row '{row.name}' in {snapshot.file_identifier} has {len(row.values)} slots, expected {width}"
                    )

    def _fill_snapshot(
        self,
        ordered: Sequence[Snapshot],
        position: int,
        cache: ValueCache,
        point_order: Sequence[str],
        result: ImputationResult,
    ) -> None:
        snapshot = ordered[position]
        for row in snapshot.rows:
            for slot, value in enumerate(row.values):
                if value is not None:
                    continue
                context = FillContext(
                    snapshots=ordered,
                    position=position,
                    name=row.name,
                    slot=slot,
                    cache=cache,
                    schema=self.schema,
                    point_order=point_order,
                    time_factor_weight=self.config.imputation.time_factor_weight,
                )
                filled, strategy = fill_cell(context, self.strategies)
                if filled is None:
                    continue
                row.values[slot] = filled
                result.filled_by_strategy[strategy] += 1

    def force_defaults(self, snapshots: Sequence[Snapshot]) -> int:
        forced = 0
        for snapshot in snapshots:
            for row in snapshot.rows:
                for slot, value in enumerate(row.values):
                    if value is None:
                        row.values[slot] = self.schema.default_for(slot)
                        forced += 1
        return forced

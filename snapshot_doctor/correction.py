"""Cumulative consistency: ``cumulative[t] == cumulative[t-1] + change[t]`` for every point and axis.

The cumulative column is treated as authoritative. A cumulative jump larger
than the adjustment threshold is first recomputed from the period change; when
that would move the value by more than ``blend_trigger_multiplier`` times the
threshold, the cumulative is blended halfway instead. The period change is
then rewritten to whatever the cumulative difference says.

A separate pass, run against an already processed directory, rebuilds the
run-up to implausibly large cumulative values found in supplement snapshots.
"""

from __future__ import annotations

import random
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Sequence

import structlog

from snapshot_doctor.config import AppConfig, CorrectionConfig
from snapshot_doctor.errors import DataIntegrityError
from snapshot_doctor.models import (
    BAND_CHANGE,
    BAND_CUMULATIVE,
    CorrectionRecord,
    Snapshot,
    SnapshotKey,
    SlotSchema,
    sort_snapshots,
)

log = structlog.get_logger()

RULE_CUMULATIVE_RECOMPUTED = "cumulative_recomputed"
RULE_CUMULATIVE_BLENDED = "cumulative_blended"
RULE_CHANGE_OVERWRITTEN = "change_overwritten"
RULE_CHANGE_REGENERATED = "change_regenerated"
RULE_CUMULATIVE_REBUILT = "cumulative_rebuilt"


@dataclass
class CorrectionResult:
    records: list[CorrectionRecord] = field(default_factory=list)
    pairs_checked: int = 0
    skipped_blocked: int = 0
    skipped_blank: int = 0

    @property
    def rule_counts(self) -> Counter:
        return Counter(record.rule for record in self.records)

    def to_dict(self) -> dict[str, Any]:
        return {
            "corrections": len(self.records),
            "pairs_checked": self.pairs_checked,
            "skipped_blocked": self.skipped_blocked,
            "skipped_blank": self.skipped_blank,
            "by_rule": dict(sorted(self.rule_counts.items())),
        }


def _record(
    snapshot: Snapshot,
    row,
    band: str,
    axis: str,
    original: float | None,
    corrected: float,
    reason: str,
    rule: str,
) -> CorrectionRecord:
    return CorrectionRecord(
        point=row.name,
        band=band,
        axis=axis,
        position=row.position,
        source_file=snapshot.file_identifier,
        timestamp=snapshot.timestamp,
        original_value=original,
        corrected_value=corrected,
        reason=reason,
        rule=rule,
    )


def _blocked_between(previous: Snapshot, current: Snapshot, blocked_times: Sequence[datetime]) -> bool:
    return any(previous.timestamp < moment < current.timestamp for moment in blocked_times)


class CumulativeCorrector:
    def __init__(self, config: AppConfig | None = None) -> None:
        config = config or AppConfig()
        self.schema: SlotSchema = config.slot_schema()
        self.settings: CorrectionConfig = config.correction

    def correct(
        self,
        snapshots: Sequence[Snapshot],
        blocked_times: Iterable[datetime] = (),
    ) -> CorrectionResult:
        ordered = sort_snapshots(snapshots)
        blocked = sorted(blocked_times)
        result = CorrectionResult()
        pairs = self.schema.axis_pairs()
        if not pairs:
            return result

        names: list[str] = []
        seen: set[str] = set()
        for snapshot in ordered:
            for row in snapshot.rows:
                if row.name not in seen:
                    seen.add(row.name)
                    names.append(row.name)

        for position in range(1, len(ordered)):
            previous, current = ordered[position - 1], ordered[position]
            if blocked and _blocked_between(previous, current, blocked):
                result.skipped_blocked += 1
                log.warning(
                    "correction_chain_blocked",
                    previous=previous.file_identifier,
                    current=current.file_identifier,
                )
                continue
            for name in names:
                previous_row = previous.row(name)
                current_row = current.row(name)
                if previous_row is None or current_row is None:
                    continue
                for axis, change_slot, cumulative_slot in pairs:
                    self._correct_pair(
                        current,
                        previous_row.values,
                        current_row,
                        axis,
                        change_slot,
                        cumulative_slot,
                        result,
                    )
        if result.records:
            log.info("correction_done", corrections=len(result.records), pairs=result.pairs_checked)
        return result

    def _correct_pair(
        self,
        current: Snapshot,
        previous_values: list[float | None],
        current_row,
        axis: str,
        change_slot: int,
        cumulative_slot: int,
        result: CorrectionResult,
    ) -> None:
        threshold = self.settings.cumulative_adjustment_threshold
        tolerance = self.settings.column_validation_tolerance
        previous_cumulative = previous_values[cumulative_slot]
        cumulative = current_row.values[cumulative_slot]
        change = current_row.values[change_slot]
        if previous_cumulative is None or cumulative is None:
            result.skipped_blank += 1
            return
        result.pairs_checked += 1

        expected = cumulative - previous_cumulative
        if abs(expected) > threshold and change is not None:
            recomputed = previous_cumulative + change
            rule = RULE_CUMULATIVE_RECOMPUTED
            reason = "cumulative jump recomputed from previous cumulative plus period change"
            if abs(recomputed - cumulative) > self.settings.blend_trigger_multiplier * threshold:
                recomputed = previous_cumulative + self.settings.blend_factor * expected
                rule = RULE_CUMULATIVE_BLENDED
                reason = "recomputation moved the cumulative too far; blended towards the previous cumulative"
            if abs(recomputed - cumulative) > tolerance:
                result.records.append(
                    _record(current, current_row, BAND_CUMULATIVE, axis, cumulative, recomputed, reason, rule)
                )
            current_row.values[cumulative_slot] = recomputed
            cumulative = recomputed

        expected = cumulative - previous_cumulative
        if change is None or abs(change - expected) > tolerance:
            result.records.append(
                _record(
                    current,
                    current_row,
                    BAND_CHANGE,
                    axis,
                    change,
                    expected,
                    "period change rewritten to the cumulative difference",
                    RULE_CHANGE_OVERWRITTEN,
                )
            )
            current_row.values[change_slot] = expected


@dataclass
class SupplementCorrectionResult:
    records: list[CorrectionRecord] = field(default_factory=list)
    supplement_files: list[str] = field(default_factory=list)
    abnormal_cells: Counter = field(default_factory=Counter)
    touched: dict[SnapshotKey, Snapshot] = field(default_factory=dict)

    @property
    def total_corrections(self) -> int:
        return len(self.records)

    def file_corrections(self) -> list[dict[str, Any]]:
        per_file = Counter(record.source_file for record in self.records)
        return [
            {"file": name, "abnormal_cells": self.abnormal_cells[name], "corrections": per_file[name]}
            for name in sorted(set(self.abnormal_cells) | set(per_file))
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "supplement_files": list(self.supplement_files),
            "files_with_abnormal_data": len(self.abnormal_cells),
            "total_corrections": self.total_corrections,
            "files": self.file_corrections(),
            "by_rule": dict(sorted(Counter(record.rule for record in self.records).items())),
        }


def correct_supplement_outliers(
    snapshots: Sequence[Snapshot],
    supplement_keys: Iterable[SnapshotKey],
    schema: SlotSchema,
    *,
    threshold: float = 4.0,
    lookback_periods: int = 5,
    change_range: float = 0.5,
    tolerance: float = 0.01,
    rng: random.Random | None = None,
) -> SupplementCorrectionResult:
    """Rebuild the run-up to implausible cumulative values in supplement snapshots.

    Only snapshots whose key is in ``supplement_keys`` are inspected. When one
    of their cumulative cells exceeds ``threshold`` in magnitude, the period
    changes of that point and axis over the ``lookback_periods`` snapshots
    ending at it are redrawn uniformly from ``[-change_range, change_range]``
    and the cumulatives rebuilt as previous cumulative plus change, starting
    from the last cumulative left in place. The snapshot after a rebuilt run
    keeps its cumulative and has its change rewritten to the new difference,
    so the chain stays consistent.

    Snapshots are edited in place; the ones touched are listed in ``touched``.
    """
    ordered = sort_snapshots(snapshots)
    supplements = set(supplement_keys)
    rng = rng or random.Random(42)
    result = SupplementCorrectionResult(
        supplement_files=[snapshot.file_identifier for snapshot in ordered if snapshot.key in supplements]
    )
    if not supplements:
        return result

    names: list[str] = []
    seen: set[str] = set()
    for snapshot in ordered:
        for row in snapshot.rows:
            if row.name not in seen:
                seen.add(row.name)
                names.append(row.name)

    for name in names:
        series = []
        for snapshot in ordered:
            row = snapshot.row(name)
            if row is not None:
                series.append((snapshot, row))
        for axis, change_slot, cumulative_slot in schema.axis_pairs():
            rebuilt: set[int] = set()
            for position, (snapshot, row) in enumerate(series):
                value = row.values[cumulative_slot]
                if snapshot.key not in supplements or value is None or abs(value) <= threshold:
                    continue
                result.abnormal_cells[snapshot.file_identifier] += 1
                log.info(
                    "supplement_value_abnormal",
                    file=snapshot.file_identifier,
                    point=name,
                    axis=axis,
                    value=value,
                )
                base_position = max(0, position - lookback_periods)
                if base_position == position:
                    window = [position]
                    cumulative = 0.0
                else:
                    window = list(range(base_position + 1, position + 1))
                    cumulative = series[base_position][1].values[cumulative_slot] or 0.0
                for index in window:
                    target, target_row = series[index]
                    change = rng.uniform(-change_range, change_range)
                    cumulative += change
                    result.records.append(
                        _record(
                            target,
                            target_row,
                            BAND_CHANGE,
                            axis,
                            target_row.values[change_slot],
                            change,
                            f"period change redrawn within +/-{change_range} ahead of an abnormal supplement value",
                            RULE_CHANGE_REGENERATED,
                        )
                    )
                    result.records.append(
                        _record(
                            target,
                            target_row,
                            BAND_CUMULATIVE,
                            axis,
                            target_row.values[cumulative_slot],
                            cumulative,
                            "cumulative rebuilt from the previous cumulative plus the redrawn change",
                            RULE_CUMULATIVE_REBUILT,
                        )
                    )
                    target_row.values[change_slot] = change
                    target_row.values[cumulative_slot] = cumulative
                    result.touched[target.key] = target
                    rebuilt.add(index)

            for index in sorted(rebuilt):
                following = index + 1
                if following >= len(series) or following in rebuilt:
                    continue
                target, target_row = series[following]
                cumulative = target_row.values[cumulative_slot]
                if cumulative is None:
                    continue
                expected = cumulative - series[index][1].values[cumulative_slot]
                change = target_row.values[change_slot]
                if change is None or abs(change - expected) > tolerance:
                    result.records.append(
                        _record(
                            target,
                            target_row,
                            BAND_CHANGE,
                            axis,
                            change,
                            expected,
                            "period change rewritten to the cumulative difference",
                            RULE_CHANGE_OVERWRITTEN,
                        )
                    )
                    target_row.values[change_slot] = expected
                    result.touched[target.key] = target

    if result.records:
        log.info(
            "supplement_correction_done",
            files=len(result.abnormal_cells),
            corrections=len(result.records),
        )
    return result


@dataclass
class InvalidItem:
    timestamp: datetime
    detail: str

    def to_dict(self) -> dict[str, str]:
        return {"timestamp": self.timestamp.isoformat(), "detail": self.detail}


@dataclass
class InvalidGroup:
    name: str
    items: list[InvalidItem] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "items": [item.to_dict() for item in self.items]}


@dataclass
class ValidationReport:
    total_files: int = 0
    total_rows: int = 0
    tolerance: float = 0.01
    invalid_groups: list[InvalidGroup] = field(default_factory=list)
    failed_files: list[dict[str, str]] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.invalid_groups

    @property
    def invalid_items(self) -> int:
        return sum(len(group.items) for group in self.invalid_groups)

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.is_valid,
            "total_files": self.total_files,
            "total_rows": self.total_rows,
            "tolerance": self.tolerance,
            "invalid_items": self.invalid_items,
            "invalid_groups": [group.to_dict() for group in self.invalid_groups],
            "failed_files": list(self.failed_files),
        }


def validate_cumulative_logic(
    snapshots: Sequence[Snapshot],
    schema: SlotSchema,
    tolerance: float = 0.01,
) -> ValidationReport:
    """Read-only check of the cumulative invariant across already processed snapshots."""
    ordered = sort_snapshots(snapshots)
    report = ValidationReport(
        total_files=len(ordered),
        total_rows=sum(len(snapshot.rows) for snapshot in ordered),
        tolerance=tolerance,
    )
    groups: dict[str, InvalidGroup] = {}
    pairs = schema.axis_pairs()
    for position in range(1, len(ordered)):
        previous, current = ordered[position - 1], ordered[position]
        for row in current.rows:
            previous_row = previous.row(row.name)
            if previous_row is None:
                continue
            for axis, change_slot, cumulative_slot in pairs:
                previous_cumulative = previous_row.values[cumulative_slot]
                cumulative = row.values[cumulative_slot]
                change = row.values[change_slot]
                if previous_cumulative is None or cumulative is None or change is None:
                    continue
                expected = previous_cumulative + change
                if abs(cumulative - expected) > tolerance:
                    group = groups.setdefault(row.name, InvalidGroup(name=row.name))
                    group.items.append(
                        InvalidItem(
                            timestamp=current.timestamp,
                            detail=(
                                f"{axis}: cumulative {cumulative:.4f} != previous {previous_cumulative:.4f}"
                                f" + change {change:.4f} (expected {expected:.4f})"
                            ),
                        )
                    )
    report.invalid_groups = [groups[name] for name in sorted(groups)]
    return report


def ensure_finite(snapshots: Iterable[Snapshot]) -> None:
    for snapshot in snapshots:
        bad = snapshot.non_finite_cells()
        if bad:
            name, slot = bad[0]
            raise DataIntegrityError(
                f"Non-finite value in {snapshot.file_identifier} at point '{name}' slot {slot}",
                file_path=snapshot.path,
                context={"cells": len(bad), "point": name, "slot": slot},
            )
        blanks = snapshot.blank_count()
        if blanks:
            raise DataIntegrityError(
                f"{blanks} blank value(s) remain in {snapshot.file_identifier}",
                file_path=snapshot.path,
                context={"cells": blanks},
            )

"""Placeholder snapshots for observation slots that have no file at all."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import date
from typing import Sequence

import structlog

from snapshot_doctor.completeness import CompletenessResult, check_completeness
from snapshot_doctor.config import DEFAULT_HOURS, SupplementConfig
from snapshot_doctor.models import (
    PROVENANCE_SUPPLEMENT,
    AdjustmentParameters,
    Snapshot,
    sort_snapshots,
)
from snapshot_doctor.naming import format_observation_time, generate_file_name

log = structlog.get_logger()


@dataclass
class SupplementPlan:
    target_date: date
    target_hour: int
    project: str
    source: Snapshot
    target_file_name: str
    adjustment: AdjustmentParameters
    selection: str

    def to_dict(self) -> dict:
        return {
            "target_file": self.target_file_name,
            "target_date": self.target_date.isoformat(),
            "target_hour": self.target_hour,
            "source_file": self.source.file_identifier,
            "selection": self.selection,
            "random_seed": self.adjustment.random_seed,
        }


def stable_hash(text: str) -> int:
    """Process-independent hash (first 8 bytes of SHA-256)."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def derive_seed(source: Snapshot, target_hour: int, run_seed: int) -> int:
    return stable_hash(source.file_identifier) + target_hour + run_seed


def select_source(
    candidates: Sequence[Snapshot],
    target_date: date,
    target_hour: int,
) -> tuple[Snapshot | None, str]:
    """Pick the snapshot a missing slot is cloned from.

    Preference order: same date with the closest hour, then the same hour on
    the nearest other date, then the globally nearest by (days, hours).
    Ties resolve to the earlier snapshot.
    """
    if not candidates:
        return None, "none"
    ordered = sort_snapshots(candidates)

    same_day = [item for item in ordered if item.date == target_date]
    if same_day:
        best = min(same_day, key=lambda item: (abs(item.hour - target_hour), item.hour))
        return best, "same_day_nearest_hour"

    same_hour = [item for item in ordered if item.hour == target_hour]
    if same_hour:
        best = min(same_hour, key=lambda item: (abs((item.date - target_date).days), item.date))
        return best, "same_hour_nearest_day"

    best = min(
        ordered,
        key=lambda item: (
            abs((item.date - target_date).days),
            abs(item.hour - target_hour),
            item.date,
            item.hour,
        ),
    )
    return best, "nearest_overall"


def build_adjustment(config: SupplementConfig, seed: int) -> AdjustmentParameters:
    return AdjustmentParameters(
        adjustment_range=config.adjustment_range,
        random_seed=seed,
        minimum_adjustment=config.minimum_adjustment,
        maintain_correlation=config.maintain_correlation,
        correlation_weight=config.correlation_weight,
    )


def plan_supplements(
    snapshots: Sequence[Snapshot],
    completeness: CompletenessResult | None = None,
    *,
    hours: Sequence[int] = DEFAULT_HOURS,
    config: SupplementConfig | None = None,
) -> list[SupplementPlan]:
    config = config or SupplementConfig()
    if completeness is None:
        completeness = check_completeness(snapshots, hours)
    plans: list[SupplementPlan] = []
    for target_date, target_hour in completeness.missing_slots():
        source, selection = select_source(snapshots, target_date, target_hour)
        if source is None:
            log.warning(
                "supplement_source_missing",
                date=target_date.isoformat(),
                hour=target_hour,
            )
            continue
        seed = derive_seed(source, target_hour, config.random_seed)
        plans.append(
            SupplementPlan(
                target_date=target_date,
                target_hour=target_hour,
                project=source.project,
                source=source,
                target_file_name=generate_file_name(target_date, target_hour, source.project, source.suffix),
                adjustment=build_adjustment(config, seed),
                selection=selection,
            )
        )
        log.debug(
            "supplement_planned",
            target=plans[-1].target_file_name,
            source=source.file_identifier,
            selection=selection,
        )
    return plans


def synthesize(plan: SupplementPlan) -> Snapshot:
    """Structural clone of the plan's source under the target identity."""
    source = plan.source
    target_path = source.path.with_name(plan.target_file_name) if source.path is not None else None
    return Snapshot(
        date=plan.target_date,
        hour=plan.target_hour,
        project=plan.project,
        rows=[row.clone() for row in source.rows],
        provenance=PROVENANCE_SUPPLEMENT,
        path=target_path,
        suffix=source.suffix,
        source=source,
        adjustment=plan.adjustment,
    )


def previous_observation_time(target: Snapshot, snapshots: Sequence[Snapshot]) -> str:
    """Observation time of the snapshot right before ``target``; the target's own time when it is first."""
    earlier = [item for item in snapshots if item.timestamp < target.timestamp]
    if not earlier:
        return target.observation_time
    previous = max(earlier, key=lambda item: item.timestamp)
    return format_observation_time(previous.date, previous.hour)

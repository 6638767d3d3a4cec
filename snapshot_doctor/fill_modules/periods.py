from __future__ import annotations

from collections import OrderedDict
from datetime import datetime
from typing import Sequence

from snapshot_doctor.models import MissingPeriod, Snapshot, sort_snapshots


def identify_missing_periods(snapshots: Sequence[Snapshot]) -> list[MissingPeriod]:
    """Maximal chronological runs in which a point has at least one blank slot.

    Snapshots that do not list the point are ignored when building its runs.
    Runs of different points sharing the same start and end become one period.
    The result describes the gaps for reporting; filling does not read it.
    """
    ordered = sort_snapshots(snapshots)
    names: list[str] = []
    seen: set[str] = set()
    for snapshot in ordered:
        for row in snapshot.rows:
            if row.name not in seen:
                seen.add(row.name)
                names.append(row.name)

    merged: "OrderedDict[tuple[datetime, datetime], MissingPeriod]" = OrderedDict()
    for name in names:
        for period in _runs_for_point(ordered, name):
            key = (period.start, period.end)
            if key in merged:
                merged[key].point_names.append(name)
            else:
                merged[key] = period
    return sorted(merged.values(), key=lambda item: (item.start, item.end))


def _runs_for_point(ordered: Sequence[Snapshot], name: str) -> list[MissingPeriod]:
    runs: list[MissingPeriod] = []
    current: list[datetime] = []
    last_valid: datetime | None = None
    run_previous: datetime | None = None

    for snapshot in ordered:
        row = snapshot.row(name)
        if row is None:
            continue
        if row.has_missing:
            if not current:
                run_previous = last_valid
            current.append(snapshot.timestamp)
            continue
        if current:
            runs.append(_close_run(name, current, run_previous, snapshot.timestamp))
            current = []
        last_valid = snapshot.timestamp

    if current:
        runs.append(_close_run(name, current, run_previous, None))
    return runs


def _close_run(
    name: str,
    times: list[datetime],
    previous_valid: datetime | None,
    next_valid: datetime | None,
) -> MissingPeriod:
    return MissingPeriod(
        start=times[0],
        end=times[-1],
        point_names=[name],
        missing_times=list(times),
        previous_valid_time=previous_valid,
        next_valid_time=next_valid,
    )


def gap_position(moment: datetime, before: datetime | None, after: datetime | None) -> float | None:
    """Fraction of the way from ``before`` to ``after`` at which ``moment`` sits."""
    if before is None or after is None or after <= before:
        return None
    span = (after - before).total_seconds()
    return min(1.0, max(0.0, (moment - before).total_seconds() / span))

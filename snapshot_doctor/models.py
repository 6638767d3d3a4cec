from __future__ import annotations

import copy
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import Path
from typing import NamedTuple

from snapshot_doctor.naming import format_date, format_observation_time

PROVENANCE_ORIGINAL = "original"
PROVENANCE_SUPPLEMENT = "supplement"

BAND_CHANGE = "change"
BAND_CUMULATIVE = "cumulative"


@dataclass(frozen=True)
class SlotSpec:
    band: str
    axis: str

    @property
    def label(self) -> str:
        return f"{self.band}_{self.axis}"


@dataclass(frozen=True)
class SlotSchema:
    """Ordered slot layout. Band membership follows slot position, never the column header."""

    slots: tuple[SlotSpec, ...]
    band_defaults: dict[str, float] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.slots)

    def band_of(self, index: int) -> str:
        return self.slots[index].band

    def default_for(self, index: int) -> float:
        return float(self.band_defaults.get(self.band_of(index), 0.0))

    def indexes_for_band(self, band: str) -> list[int]:
        return [index for index, spec in enumerate(self.slots) if spec.band == band]

    def axis_pairs(self) -> list[tuple[str, int, int]]:
        """(axis, change_index, cumulative_index) for every axis carrying both bands."""
        change = {spec.axis: index for index, spec in enumerate(self.slots) if spec.band == BAND_CHANGE}
        cumulative = {spec.axis: index for index, spec in enumerate(self.slots) if spec.band == BAND_CUMULATIVE}
        return [(axis, change[axis], cumulative[axis]) for axis in change if axis in cumulative]


class SnapshotKey(NamedTuple):
    date: date
    hour: int
    project: str


@dataclass
class MeasurementRow:
    name: str
    position: int
    values: list[float | None]

    @property
    def missing_count(self) -> int:
        return sum(1 for value in self.values if value is None)

    @property
    def has_missing(self) -> bool:
        return any(value is None for value in self.values)

    @property
    def is_all_missing(self) -> bool:
        return bool(self.values) and all(value is None for value in self.values)

    @property
    def completeness(self) -> float:
        if not self.values:
            return 100.0
        present = len(self.values) - self.missing_count
        return round(present / len(self.values) * 100, 2)

    def clone(self) -> "MeasurementRow":
        return MeasurementRow(name=self.name, position=self.position, values=list(self.values))


@dataclass
class AdjustmentParameters:
    adjustment_range: float = 0.05
    random_seed: int = 42
    minimum_adjustment: float = 0.001
    maintain_correlation: bool = True
    correlation_weight: float = 0.7


@dataclass
class Snapshot:
    date: date
    hour: int
    project: str
    rows: list[MeasurementRow]
    provenance: str = PROVENANCE_ORIGINAL
    path: Path | None = None
    suffix: str = ".xlsx"
    source: "Snapshot | None" = None
    adjustment: AdjustmentParameters | None = None
    _row_lookup: dict[str, MeasurementRow] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.reindex()

    def reindex(self) -> None:
        self._row_lookup = {}
        for row in self.rows:
            self._row_lookup.setdefault(row.name, row)

    @property
    def key(self) -> SnapshotKey:
        return SnapshotKey(self.date, self.hour, self.project)

    @property
    def timestamp(self) -> datetime:
        return datetime.combine(self.date, time(self.hour))

    @property
    def file_identifier(self) -> str:
        return f"{format_date(self.date)}-{self.hour:02d}{self.project}"

    @property
    def observation_time(self) -> str:
        return format_observation_time(self.date, self.hour)

    @property
    def is_supplement(self) -> bool:
        return self.provenance == PROVENANCE_SUPPLEMENT

    @property
    def template_path(self) -> Path | None:
        """Workbook to use as the formatting template when writing this snapshot."""
        if self.path is not None and self.path.exists():
            return self.path
        if self.source is not None:
            return self.source.template_path
        return self.path

    def row(self, name: str) -> MeasurementRow | None:
        return self._row_lookup.get(name)

    def point_names(self) -> list[str]:
        return [row.name for row in self.rows]

    def blank_count(self) -> int:
        return sum(row.missing_count for row in self.rows)

    def non_finite_cells(self) -> list[tuple[str, int]]:
        return [
            (row.name, index)
            for row in self.rows
            for index, value in enumerate(row.values)
            if value is not None and not math.isfinite(value)
        ]

    def clone(self) -> "Snapshot":
        return Snapshot(
            date=self.date,
            hour=self.hour,
            project=self.project,
            rows=[row.clone() for row in self.rows],
            provenance=self.provenance,
            path=self.path,
            suffix=self.suffix,
            source=self.source,
            adjustment=copy.copy(self.adjustment),
        )


def sort_snapshots(snapshots) -> list[Snapshot]:
    return sorted(snapshots, key=lambda item: (item.date, item.hour, item.project))


@dataclass
class MissingPeriod:
    start: datetime
    end: datetime
    point_names: list[str]
    missing_times: list[datetime]
    previous_valid_time: datetime | None = None
    next_valid_time: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "points": len(self.point_names),
            "missing_times": len(self.missing_times),
            "previous_valid_time": self.previous_valid_time.isoformat() if self.previous_valid_time else None,
            "next_valid_time": self.next_valid_time.isoformat() if self.next_valid_time else None,
        }


@dataclass
class CorrectionRecord:
    point: str
    band: str
    axis: str
    position: int
    source_file: str
    timestamp: datetime
    original_value: float | None
    corrected_value: float
    reason: str
    rule: str

    def to_dict(self) -> dict:
        return {
            "point": self.point,
            "band": self.band,
            "axis": self.axis,
            "position": self.position,
            "source_file": self.source_file,
            "timestamp": self.timestamp.isoformat(),
            "original_value": self.original_value,
            "corrected_value": self.corrected_value,
            "reason": self.reason,
            "rule": self.rule,
        }

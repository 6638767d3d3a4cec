from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from openpyxl.utils import get_column_letter

from snapshot_doctor.config import AppConfig
from snapshot_doctor.models import Snapshot, sort_snapshots
from snapshot_doctor.workbook import load_directory


@dataclass
class FileQuality:
    file: str
    total_rows: int
    complete_rows: int
    missing_rows: int
    all_missing_rows: int
    average_completeness: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "total_rows": self.total_rows,
            "complete_rows": self.complete_rows,
            "missing_rows": self.missing_rows,
            "all_missing_rows": self.all_missing_rows,
            "average_completeness": self.average_completeness,
        }


def file_quality(snapshot: Snapshot) -> FileQuality:
    rows = snapshot.rows
    total = len(rows)
    average = round(sum(row.completeness for row in rows) / total, 2) if total else 100.0
    return FileQuality(
        file=snapshot.path.name if snapshot.path is not None else snapshot.file_identifier,
        total_rows=total,
        complete_rows=sum(1 for row in rows if not row.has_missing),
        missing_rows=sum(1 for row in rows if row.has_missing),
        all_missing_rows=sum(1 for row in rows if row.is_all_missing),
        average_completeness=average,
    )


def build_quality_report(snapshots: Sequence[Snapshot]) -> dict[str, Any]:
    files = [file_quality(snapshot) for snapshot in sort_snapshots(snapshots)]
    total_cells = sum(len(row.values) for snapshot in snapshots for row in snapshot.rows)
    blank_cells = sum(snapshot.blank_count() for snapshot in snapshots)
    completeness = round((total_cells - blank_cells) / total_cells * 100, 2) if total_cells else 100.0
    return {
        "files": [item.to_dict() for item in files],
        "total_files": len(files),
        "total_rows": sum(item.total_rows for item in files),
        "rows_with_missing_values": sum(item.missing_rows for item in files),
        "fully_missing_rows": sum(item.all_missing_rows for item in files),
        "blank_cells": blank_cells,
        "overall_completeness": completeness,
    }


@dataclass
class LargeValue:
    point: str
    position: int
    column: str
    value: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "point": self.point,
            "position": self.position,
            "column": self.column,
            "value": self.value,
            "absolute_value": abs(self.value),
        }


@dataclass
class LargeValueReport:
    threshold: float
    files: dict[str, list[LargeValue]] = field(default_factory=dict)
    failed: list[dict[str, Any]] = field(default_factory=list)

    @property
    def total_large_values(self) -> int:
        return sum(len(items) for items in self.files.values())

    @property
    def files_with_large_values(self) -> int:
        return sum(1 for items in self.files.values() if items)

    def to_dict(self) -> dict[str, Any]:
        return {
            "threshold": self.threshold,
            "total_large_values": self.total_large_values,
            "files_with_large_values": self.files_with_large_values,
            "files": {name: [item.to_dict() for item in items] for name, items in sorted(self.files.items())},
            "failed": list(self.failed),
        }


def check_large_values(
    snapshots: Sequence[Snapshot],
    threshold: float = 4.0,
    *,
    first_value_column: int = 4,
) -> LargeValueReport:
    """Every slot whose absolute value exceeds ``threshold``, grouped by file."""
    report = LargeValueReport(threshold=threshold)
    for snapshot in sort_snapshots(snapshots):
        found = []
        for row in snapshot.rows:
            for index, value in enumerate(row.values):
                if value is not None and abs(value) > threshold:
                    found.append(
                        LargeValue(
                            point=row.name,
                            position=row.position,
                            column=get_column_letter(first_value_column + index),
                            value=value,
                        )
                    )
        if found:
            name = snapshot.path.name if snapshot.path is not None else snapshot.file_identifier
            report.files[name] = found
    return report


def check_large_values_in_directory(
    directory: Path,
    *,
    config: AppConfig | None = None,
    threshold: float | None = None,
) -> LargeValueReport:
    config = config or AppConfig()
    threshold = config.quality.large_value_threshold if threshold is None else threshold
    loaded = load_directory(directory, config=config)
    report = check_large_values(loaded.snapshots, threshold, first_value_column=config.layout.first_value_column)
    report.failed = list(loaded.failed)
    return report

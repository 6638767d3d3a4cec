"""Audit diff between an original snapshot directory and its processed output.

Files are matched on ``(date, hour, project)`` so that ``-8`` and ``-08``
(or ``.xls`` and ``.xlsx``) name the same snapshot. Only slots that held a
value in the original are compared: filled gaps are expected to differ.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

import pandas as pd
import structlog

from snapshot_doctor.config import AppConfig
from snapshot_doctor.errors import SnapshotReadError
from snapshot_doctor.models import Snapshot, SnapshotKey
from snapshot_doctor.workbook import load_directory

log = structlog.get_logger()

DIFFERENCE_COLUMNS = [
    "file",
    "point",
    "position",
    "slot",
    "original",
    "processed",
    "difference",
    "significant",
]


@dataclass
class ColumnDifference:
    slot: int
    label: str
    original: float
    processed: float

    @property
    def difference(self) -> float:
        return self.processed - self.original

    def is_significant(self, tolerance: float) -> bool:
        return abs(self.difference) > tolerance


@dataclass
class RowComparison:
    name: str
    position: int
    compared_values: int = 0
    differences: list[ColumnDifference] = field(default_factory=list)
    missing_processed_values: int = 0


@dataclass
class FileComparison:
    file_name: str
    key: SnapshotKey
    tolerance: float
    total_rows: int = 0
    compared_values: int = 0
    missing_processed_rows: list[str] = field(default_factory=list)
    rows: list[RowComparison] = field(default_factory=list)

    @property
    def differences(self) -> list[tuple[RowComparison, ColumnDifference]]:
        return [(row, diff) for row in self.rows for diff in row.differences]

    @property
    def different_values(self) -> int:
        return sum(len(row.differences) for row in self.rows)

    @property
    def significant_differences(self) -> int:
        return sum(1 for _, diff in self.differences if diff.is_significant(self.tolerance))

    @property
    def missing_processed_values(self) -> int:
        return sum(row.missing_processed_values for row in self.rows)

    def to_dict(self, max_differences: int = -1) -> dict[str, Any]:
        pairs = self.differences
        if max_differences >= 0:
            pairs = pairs[:max_differences]
        return {
            "file": self.file_name,
            "total_rows": self.total_rows,
            "compared_values": self.compared_values,
            "different_values": self.different_values,
            "significant_differences": self.significant_differences,
            "missing_processed_values": self.missing_processed_values,
            "missing_processed_rows": list(self.missing_processed_rows),
            "differences": [
                {
                    "point": row.name,
                    "position": row.position,
                    "slot": diff.label,
                    "original": diff.original,
                    "processed": diff.processed,
                    "difference": diff.difference,
                    "significant": diff.is_significant(self.tolerance),
                }
                for row, diff in pairs
            ],
        }


@dataclass
class ComparisonResult:
    tolerance: float
    files: list[FileComparison] = field(default_factory=list)
    missing_in_processed: list[str] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    @property
    def has_error(self) -> bool:
        return self.error is not None

    @property
    def compared_values(self) -> int:
        return sum(item.compared_values for item in self.files)

    @property
    def different_values(self) -> int:
        return sum(item.different_values for item in self.files)

    @property
    def significant_differences(self) -> int:
        return sum(item.significant_differences for item in self.files)

    @property
    def missing_processed_values(self) -> int:
        return sum(item.missing_processed_values for item in self.files)

    @property
    def modification_ratio(self) -> float:
        if not self.compared_values:
            return 0.0
        return round(self.different_values / self.compared_values * 100, 2)

    def to_dict(self, max_differences: int = -1) -> dict[str, Any]:
        return {
            "has_error": self.has_error,
            "error": self.error,
            "tolerance": self.tolerance,
            "compared_files": len(self.files),
            "compared_values": self.compared_values,
            "different_values": self.different_values,
            "significant_differences": self.significant_differences,
            "missing_processed_values": self.missing_processed_values,
            "modification_ratio": self.modification_ratio,
            "missing_in_processed": list(self.missing_in_processed),
            "failed": list(self.failed),
            "files": [item.to_dict(max_differences) for item in self.files],
        }

    def to_frame(self) -> pd.DataFrame:
        records = []
        for item in self.files:
            for row, diff in item.differences:
                records.append(
                    {
                        "file": item.file_name,
                        "point": row.name,
                        "position": row.position,
                        "slot": diff.label,
                        "original": diff.original,
                        "processed": diff.processed,
                        "difference": diff.difference,
                        "significant": diff.is_significant(self.tolerance),
                    }
                )
        return pd.DataFrame(records, columns=DIFFERENCE_COLUMNS)


def compare_snapshots(
    original: Snapshot,
    processed: Snapshot,
    *,
    tolerance: float,
    labels: Sequence[str] = (),
) -> FileComparison:
    name = original.path.name if original.path is not None else original.file_identifier
    result = FileComparison(file_name=name, key=original.key, tolerance=tolerance, total_rows=len(original.rows))
    for row in original.rows:
        processed_row = processed.row(row.name)
        if processed_row is None:
            result.missing_processed_rows.append(row.name)
            continue
        comparison = RowComparison(name=row.name, position=row.position)
        for slot, value in enumerate(row.values):
            if value is None:
                continue
            other = processed_row.values[slot] if slot < len(processed_row.values) else None
            if other is None:
                comparison.missing_processed_values += 1
                continue
            comparison.compared_values += 1
            if other != value:
                label = labels[slot] if slot < len(labels) else f"slot_{slot}"
                comparison.differences.append(ColumnDifference(slot=slot, label=label, original=value, processed=other))
        result.compared_values += comparison.compared_values
        result.rows.append(comparison)
    return result


def compare_snapshot_sets(
    originals: Sequence[Snapshot],
    processed: Sequence[Snapshot],
    *,
    tolerance: float = 0.01,
    labels: Sequence[str] = (),
    unreadable: set[SnapshotKey] | None = None,
) -> ComparisonResult:
    """Compare matched snapshots. Keys in ``unreadable`` exist on the processed side but failed to load."""
    result = ComparisonResult(tolerance=tolerance)
    processed_by_key = {snapshot.key: snapshot for snapshot in processed}
    unreadable = unreadable or set()
    for original in sorted(originals, key=lambda item: item.key):
        match = processed_by_key.get(original.key)
        if match is None:
            if original.key in unreadable:
                continue
            result.missing_in_processed.append(
                original.path.name if original.path is not None else original.file_identifier
            )
            continue
        result.files.append(compare_snapshots(original, match, tolerance=tolerance, labels=labels))
    return result


def compare_directories(
    original_dir: Path,
    processed_dir: Path,
    *,
    config: AppConfig | None = None,
    tolerance: float | None = None,
) -> ComparisonResult:
    config = config or AppConfig()
    tolerance = config.compare.tolerance if tolerance is None else tolerance
    labels = [spec.label for spec in config.slot_schema().slots]
    try:
        originals = load_directory(original_dir, config=config)
        processed = load_directory(processed_dir, config=config)
    except SnapshotReadError as exc:
        log.error("comparison_failed", error=str(exc), category=exc.category)
        return ComparisonResult(tolerance=tolerance, error=str(exc))
    result = compare_snapshot_sets(
        originals.snapshots,
        processed.snapshots,
        tolerance=tolerance,
        labels=labels,
        unreadable={SnapshotKey(item.date, item.hour, item.project) for item in processed.blocked},
    )
    for entry in originals.failed:
        result.failed.append({**entry, "side": "original"})
    for entry in processed.failed:
        result.failed.append({**entry, "side": "processed"})
    log.info(
        "comparison_done",
        files=len(result.files),
        differences=result.different_values,
        significant=result.significant_differences,
    )
    return result


def render_comparison_text(result: ComparisonResult, *, show_details: bool = False, max_differences: int = -1) -> str:
    lines = [
        "snapshot-doctor compare",
        f"Compared files: {len(result.files)}",
        f"Compared values: {result.compared_values}",
        f"Different values: {result.different_values}",
        f"Significant differences (> {result.tolerance}): {result.significant_differences}",
        f"Missing processed values: {result.missing_processed_values}",
        f"Modification ratio: {result.modification_ratio}%",
    ]
    if result.missing_in_processed:
        lines.append("Missing in processed:")
        lines.extend(f"- {name}" for name in result.missing_in_processed)
    if result.failed:
        lines.append("Failed comparisons:")
        lines.extend(f"- {entry.get('file')}: {entry.get('message')}" for entry in result.failed)
    if show_details:
        shown = 0
        for item in result.files:
            if not item.different_values and not item.missing_processed_rows:
                continue
            lines.append(f"{item.file_name}: {item.different_values} different, {item.significant_differences} significant")
            for name in item.missing_processed_rows:
                lines.append(f"  missing row: {name}")
            for row, diff in item.differences:
                if 0 <= max_differences <= shown:
                    break
                marker = "!" if diff.is_significant(result.tolerance) else " "
                lines.append(
                    f" {marker} {row.name} [{diff.label}]: {diff.original:.4f} -> {diff.processed:.4f}"
                    f" ({diff.difference:+.4f})"
                )
                shown += 1
        if 0 <= max_differences <= shown and result.different_values > shown:
            lines.append(f"... {result.different_values - shown} more differences not shown")
    return "\n".join(lines) + "\n"

"""Directory-level orchestration of a processing run.

One run reads every snapshot in the input directory, then for each project:
checks completeness, synthesizes supplements for missing observation slots,
imputes blanks and repairs the cumulative columns. Nothing is written until
every project has passed the integrity check.

``correct_processed_directory`` is the follow-up pass over a processed
directory that reins in abnormal values left in supplement snapshots.
"""

from __future__ import annotations

import random
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, time
from pathlib import Path
from typing import Any, Sequence

import pandas as pd
import structlog

from snapshot_doctor.compare import ComparisonResult, compare_directories, compare_snapshot_sets
from snapshot_doctor.completeness import CompletenessResult, check_completeness
from snapshot_doctor.config import AppConfig
from snapshot_doctor.correction import (
    CorrectionResult,
    CumulativeCorrector,
    SupplementCorrectionResult,
    ValidationReport,
    correct_supplement_outliers,
    ensure_finite,
    validate_cumulative_logic,
)
from snapshot_doctor.errors import SnapshotWriteError
from snapshot_doctor.imputation import ImputationEngine, ImputationResult
from snapshot_doctor.models import Snapshot, SnapshotKey, sort_snapshots
from snapshot_doctor.naming import ParsedName
from snapshot_doctor.quality import build_quality_report
from snapshot_doctor.supplement import SupplementPlan, plan_supplements, previous_observation_time, synthesize
from snapshot_doctor.workbook import (
    MODERN_WORKBOOK_FORMATS,
    ConfirmCallback,
    LoadResult,
    load_directory,
    output_name_for,
    records_frame,
    scan_directory,
    write_audit_workbook,
    write_snapshot,
)

log = structlog.get_logger()

CORRECTION_COLUMNS = [
    "source_file",
    "timestamp",
    "point",
    "position",
    "band",
    "axis",
    "original_value",
    "corrected_value",
    "rule",
    "reason",
]
SUPPLEMENT_COLUMNS = ["target_file", "target_date", "target_hour", "source_file", "selection", "random_seed"]


@dataclass
class ProjectRun:
    project: str
    snapshots: list[Snapshot]
    completeness: CompletenessResult
    supplements: list[SupplementPlan]
    imputation: ImputationResult
    correction: CorrectionResult

    def to_dict(self) -> dict[str, Any]:
        return {
            "project": self.project,
            "snapshots": len(self.snapshots),
            "supplements": [plan.to_dict() for plan in self.supplements],
            "completeness": self.completeness.to_dict(),
            "imputation": self.imputation.to_dict(),
            "correction": self.correction.to_dict(),
            "missing_periods": [period.to_dict() for period in self.imputation.missing_periods],
        }


@dataclass
class ProcessResult:
    input_dir: Path
    output_dir: Path | None
    load: LoadResult
    projects: list[ProjectRun] = field(default_factory=list)
    written: list[Path] = field(default_factory=list)
    quality_before: dict[str, Any] = field(default_factory=dict)
    quality_after: dict[str, Any] = field(default_factory=dict)
    comparison: ComparisonResult | None = None

    @property
    def snapshots(self) -> list[Snapshot]:
        return [snapshot for project in self.projects for snapshot in project.snapshots]

    @property
    def corrections(self):
        return [record for project in self.projects for record in project.correction.records]

    @property
    def supplements(self) -> list[SupplementPlan]:
        return [plan for project in self.projects for plan in project.supplements]

    @property
    def warnings(self) -> list[str]:
        messages = [f"Skipped {item['file']}: {item['reason']}" for item in self.load.skipped]
        messages.extend(f"Could not read {Path(item['file']).name}: {item['message']}" for item in self.load.failed)
        for project in self.projects:
            if project.imputation.forced_defaults:
                messages.append(
                    f"{project.project}: {project.imputation.forced_defaults} cell(s) fell back to the band default"
                )
            if project.correction.skipped_blocked:
                messages.append(
                    f"{project.project}: {project.correction.skipped_blocked} snapshot pair(s) not corrected"
                    " because an unreadable file sits between them"
                )
        return messages

    def metrics(self) -> dict[str, Any]:
        return {
            "files_read": len(self.load.snapshots),
            "files_skipped": len(self.load.skipped),
            "files_failed": len(self.load.failed),
            "projects": len(self.projects),
            "supplements_created": len(self.supplements),
            "cells_filled": sum(project.imputation.filled_cells for project in self.projects),
            "forced_defaults": sum(project.imputation.forced_defaults for project in self.projects),
            "corrections": len(self.corrections),
            "files_written": len(self.written),
        }


def blocked_timestamps(blocked: Sequence[ParsedName]) -> list[datetime]:
    return [datetime.combine(item.date, time(item.hour)) for item in blocked]


def run_project(
    project: str,
    snapshots: Sequence[Snapshot],
    *,
    config: AppConfig,
    blocked: Sequence[ParsedName] = (),
    engine: ImputationEngine | None = None,
    corrector: CumulativeCorrector | None = None,
) -> ProjectRun:
    """Run completeness, supplements, imputation and correction for one project."""
    engine = engine or ImputationEngine(config)
    corrector = corrector or CumulativeCorrector(config)
    completeness = check_completeness([*snapshots, *blocked], config.hours)
    plans = plan_supplements(snapshots, completeness, hours=config.hours, config=config.supplement)
    merged = sort_snapshots([*snapshots, *(synthesize(plan) for plan in plans)])
    imputation = engine.run(merged)
    correction = corrector.correct(imputation.snapshots, blocked_timestamps(blocked))
    ensure_finite(imputation.snapshots)
    log.info(
        "project_processed",
        project=project,
        snapshots=len(imputation.snapshots),
        supplements=len(plans),
        filled=imputation.filled_cells,
        corrections=len(correction.records),
    )
    return ProjectRun(
        project=project,
        snapshots=imputation.snapshots,
        completeness=completeness,
        supplements=plans,
        imputation=imputation,
        correction=correction,
    )


def process_snapshots(
    snapshots: Sequence[Snapshot],
    *,
    config: AppConfig,
    blocked: Sequence[ParsedName] = (),
) -> list[ProjectRun]:
    by_project: dict[str, list[Snapshot]] = defaultdict(list)
    for snapshot in snapshots:
        by_project[snapshot.project].append(snapshot)
    blocked_by_project: dict[str, list[ParsedName]] = defaultdict(list)
    for item in blocked:
        blocked_by_project[item.project].append(item)
    engine = ImputationEngine(config)
    corrector = CumulativeCorrector(config)
    return [
        run_project(
            project,
            by_project[project],
            config=config,
            blocked=blocked_by_project.get(project, []),
            engine=engine,
            corrector=corrector,
        )
        for project in sorted(by_project)
    ]


def write_project_outputs(projects: Sequence[ProjectRun], output_dir: Path, *, config: AppConfig) -> list[Path]:
    written = []
    for project in projects:
        for snapshot in project.snapshots:
            target = output_dir / output_name_for(snapshot)
            write_snapshot(
                snapshot,
                target,
                config=config,
                previous_time=previous_observation_time(snapshot, project.snapshots),
            )
            written.append(target)
    return written


def write_audit_files(result: ProcessResult, output_dir: Path) -> dict[str, str]:
    audit_dir = output_dir / "audit"
    audit_dir.mkdir(parents=True, exist_ok=True)
    corrections = records_frame(result.corrections, CORRECTION_COLUMNS)
    supplements = pd.DataFrame([plan.to_dict() for plan in result.supplements], columns=SUPPLEMENT_COLUMNS)
    quality = pd.DataFrame(result.quality_before.get("files", []))
    corrections_path = audit_dir / "corrections.csv"
    corrections.to_csv(corrections_path, index=False, encoding="utf-8")
    report_path = write_audit_workbook(
        audit_dir / "process-report.xlsx",
        {"Corrections": corrections, "Supplements": supplements, "Input Quality": quality},
    )
    return {"corrections": str(corrections_path), "report": str(report_path)}


def process_directory(
    input_dir: Path,
    output_dir: Path | None,
    *,
    config: AppConfig | None = None,
    confirm: ConfirmCallback | None = None,
    dry_run: bool = False,
    run_compare: bool = True,
) -> ProcessResult:
    config = config or AppConfig()
    if output_dir is not None and output_dir.resolve() == input_dir.resolve():
        raise SnapshotWriteError("Output directory must differ from the input directory.", file_path=output_dir)

    load = load_directory(input_dir, config=config, confirm=confirm)
    result = ProcessResult(input_dir=input_dir, output_dir=output_dir, load=load)
    result.quality_before = build_quality_report(load.snapshots)

    working = [snapshot.clone() for snapshot in load.snapshots]
    result.projects = process_snapshots(working, config=config, blocked=load.blocked)
    result.quality_after = build_quality_report(result.snapshots)

    if dry_run or output_dir is None:
        if run_compare:
            labels = [spec.label for spec in config.slot_schema().slots]
            result.comparison = compare_snapshot_sets(
                load.snapshots, result.snapshots, tolerance=config.compare.tolerance, labels=labels
            )
        return result

    result.written = write_project_outputs(result.projects, output_dir, config=config)
    log.info("outputs_written", files=len(result.written), output_dir=str(output_dir))
    if run_compare:
        result.comparison = compare_directories(input_dir, output_dir, config=config)
    return result


def validate_processed_directory(
    directory: Path,
    *,
    config: AppConfig | None = None,
    tolerance: float | None = None,
) -> ValidationReport:
    """Check the cumulative invariant across a processed directory, one project at a time."""
    config = config or AppConfig()
    tolerance = config.correction.column_validation_tolerance if tolerance is None else tolerance
    schema = config.slot_schema()
    loaded = load_directory(directory, config=config)
    by_project: dict[str, list[Snapshot]] = defaultdict(list)
    for snapshot in loaded.snapshots:
        by_project[snapshot.project].append(snapshot)

    report = ValidationReport(tolerance=tolerance, failed_files=list(loaded.failed))
    for project in sorted(by_project):
        partial = validate_cumulative_logic(by_project[project], schema, tolerance)
        report.total_files += partial.total_files
        report.total_rows += partial.total_rows
        for group in partial.invalid_groups:
            if len(by_project) > 1:
                group.name = f"{project}/{group.name}"
            report.invalid_groups.append(group)
    log.info(
        "validation_done",
        files=report.total_files,
        invalid_groups=len(report.invalid_groups),
        invalid_items=report.invalid_items,
    )
    return report


@dataclass
class DataCorrectionRun:
    original_dir: Path
    processed_dir: Path
    original_files: int
    load: LoadResult
    projects: dict[str, SupplementCorrectionResult] = field(default_factory=dict)
    written: list[Path] = field(default_factory=list)

    @property
    def corrections(self):
        return [record for result in self.projects.values() for record in result.records]

    @property
    def supplement_files(self) -> list[str]:
        return [name for result in self.projects.values() for name in result.supplement_files]

    @property
    def file_corrections(self) -> list[dict[str, Any]]:
        return [item for result in self.projects.values() for item in result.file_corrections()]

    @property
    def warnings(self) -> list[str]:
        messages = [f"Skipped {item['file']}: {item['reason']}" for item in self.load.skipped]
        messages.extend(f"Could not read {Path(item['file']).name}: {item['message']}" for item in self.load.failed)
        return messages

    def metrics(self) -> dict[str, Any]:
        return {
            "original_files": self.original_files,
            "processed_files": len(self.load.snapshots),
            "supplement_files": len(self.supplement_files),
            "files_with_abnormal_data": sum(len(result.abnormal_cells) for result in self.projects.values()),
            "total_corrections": len(self.corrections),
            "files_written": len(self.written),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "projects": {project: result.to_dict() for project, result in sorted(self.projects.items())},
            "supplement_files": self.supplement_files,
            "files": self.file_corrections,
            "corrections": [record.to_dict() for record in self.corrections],
            "skipped_files": list(self.load.skipped),
            "failed_files": list(self.load.failed),
        }


def correct_processed_directory(
    original_dir: Path,
    processed_dir: Path,
    *,
    config: AppConfig | None = None,
    dry_run: bool = False,
) -> DataCorrectionRun:
    """Re-correct supplement snapshots of a processed directory in place.

    A supplement is a processed snapshot whose date, hour and project have no
    file in ``original_dir``. Only the workbooks whose values changed are
    rewritten.
    """
    config = config or AppConfig()
    settings = config.data_correction
    schema = config.slot_schema()
    original = scan_directory(original_dir, config.hours)
    original_keys = {SnapshotKey(parsed.date, parsed.hour, parsed.project) for _, parsed in original.parsed}
    load = load_directory(processed_dir, config=config)
    run = DataCorrectionRun(
        original_dir=original_dir,
        processed_dir=processed_dir,
        original_files=len(original.parsed),
        load=load,
    )

    by_project: dict[str, list[Snapshot]] = defaultdict(list)
    for snapshot in load.snapshots:
        by_project[snapshot.project].append(snapshot)
    rng = random.Random(settings.random_seed)
    for project in sorted(by_project):
        snapshots = by_project[project]
        run.projects[project] = correct_supplement_outliers(
            snapshots,
            [snapshot.key for snapshot in snapshots if snapshot.key not in original_keys],
            schema,
            threshold=config.quality.large_value_threshold,
            lookback_periods=settings.lookback_periods,
            change_range=settings.change_range,
            tolerance=config.correction.column_validation_tolerance,
            rng=rng,
        )
    log.info("data_correction_done", **run.metrics())
    if dry_run:
        return run

    pending = [
        (snapshot, by_project[project])
        for project, result in sorted(run.projects.items())
        for snapshot in sort_snapshots(result.touched.values())
    ]
    for snapshot, _ in pending:
        if snapshot.path is None or snapshot.suffix not in MODERN_WORKBOOK_FORMATS:
            raise SnapshotWriteError(
                f"Cannot rewrite {snapshot.file_identifier} in place; only .xlsx and .xlsm are writable.",
                file_path=snapshot.path,
            )
    for snapshot, project_snapshots in pending:
        write_snapshot(
            snapshot,
            snapshot.path,
            config=config,
            previous_time=previous_observation_time(snapshot, project_snapshots),
        )
        run.written.append(snapshot.path)
    log.info("outputs_written", files=len(run.written), output_dir=str(processed_dir))
    return run


def write_data_correction_audit(run: DataCorrectionRun, directory: Path) -> dict[str, str]:
    audit_dir = directory / "audit"
    audit_dir.mkdir(parents=True, exist_ok=True)
    corrections_path = audit_dir / "data-corrections.csv"
    records_frame(run.corrections, CORRECTION_COLUMNS).to_csv(corrections_path, index=False, encoding="utf-8")
    return {"corrections": str(corrections_path)}

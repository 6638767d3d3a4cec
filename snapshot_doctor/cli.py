from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from snapshot_doctor import __version__ as TOOL_VERSION
from snapshot_doctor.compare import compare_directories, render_comparison_text
from snapshot_doctor.config import DEFAULT_CONFIG_NAME, AppConfig, load_config, starter_config
from snapshot_doctor.contracts import build_payload, build_run_summary
from snapshot_doctor.errors import (
    ConfigError,
    DataIntegrityError,
    SnapshotDoctorError,
    SnapshotReadError,
    UserCancelledError,
)
from snapshot_doctor.logs import setup_logging
from snapshot_doctor.pipeline import (
    ProcessResult,
    correct_processed_directory,
    process_directory,
    validate_processed_directory,
    write_audit_files,
    write_data_correction_audit,
)
from snapshot_doctor.quality import check_large_values_in_directory

TOOL_NAME = "snapshot-doctor"

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_DIFFERENCES = 3
EXIT_INTEGRITY_FAILED = 4
EXIT_VALIDATE_FAILED = 5
EXIT_PARTIAL = 6
EXIT_CANCELLED = 7


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class SnapshotDoctorArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True, default=str)


def timestamp_token() -> str:
    override = os.environ.get("SNAPSHOT_DOCTOR_OUTPUT_STAMP")
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def default_output_dir(input_path: Path) -> Path:
    return Path.cwd() / "snapshot-doctor-output" / f"{input_path.name}-{timestamp_token()}"


def determine_output_dir(args: argparse.Namespace, input_path: Path) -> Path:
    if getattr(args, "out_dir", None):
        return Path(args.out_dir)
    return default_output_dir(input_path)


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_text(path: Path, payload: str) -> None:
    ensure_parent(path)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def remove_generated_at(value: Any) -> Any:
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if key == "generated_at":
                result[key] = "1970-01-01T00:00:00Z"
            else:
                result[key] = remove_generated_at(item)
        return result
    if isinstance(value, list):
        return [remove_generated_at(item) for item in value]
    return value


def normalize_report_for_cli(payload: Any) -> Any:
    if os.environ.get("SNAPSHOT_DOCTOR_OUTPUT_STAMP"):
        return remove_generated_at(payload)
    return payload


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def classify_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, UserCancelledError):
        return EXIT_CANCELLED
    if isinstance(exc, DataIntegrityError):
        return EXIT_INTEGRITY_FAILED
    if isinstance(exc, ConfigError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, SnapshotReadError):
        return EXIT_COMMAND_ERROR if exc.category == "FileNotFound" else EXIT_PARSE_FAILED
    if isinstance(exc, (ImportError, ValueError)):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def report_exception(exc: Exception) -> int:
    if isinstance(exc, UserCancelledError):
        eprint(f"Cancelled: {exc}")
    else:
        eprint(str(exc))
    return classify_exception(exc)


def prompt_confirm(message: str) -> bool:
    """Ask a yes/no question on stderr. Anything but an explicit yes means no."""
    print(message, file=sys.stderr)
    print("[y/N]: ", end="", file=sys.stderr, flush=True)
    try:
        raw = input().strip().lower()
    except (EOFError, KeyboardInterrupt):
        print("", file=sys.stderr)
        return False
    return raw in {"y", "yes"}


def require_directory(raw: str) -> Path:
    path = Path(raw)
    if not path.exists():
        raise CliError(f"Directory not found: {path}", EXIT_COMMAND_ERROR)
    if not path.is_dir():
        raise CliError(f"Expected a directory of snapshot workbooks: {path}", EXIT_COMMAND_ERROR)
    return path


def load_cli_config(args: argparse.Namespace) -> AppConfig:
    return load_config(getattr(args, "config", None))


def render_process_text(payload: dict[str, Any]) -> str:
    metrics = payload["run_summary"]["metrics"]
    lines = [
        "snapshot-doctor process",
        f"Input: {payload['run_summary']['input']}",
        f"Output: {payload['run_summary']['output'] or '[dry run]'}",
        f"Files read: {metrics['files_read']}",
        f"Files skipped: {metrics['files_skipped']}",
        f"Files failed: {metrics['files_failed']}",
        f"Supplements created: {metrics['supplements_created']}",
        f"Cells filled: {metrics['cells_filled']}",
        f"Forced defaults: {metrics['forced_defaults']}",
        f"Corrections: {metrics['corrections']}",
    ]
    for project in payload["projects"]:
        by_strategy = project["imputation"]["filled_by_strategy"]
        if by_strategy:
            lines.append(f"{project['project']} fills:")
            lines.extend(f"- {name}: {count}" for name, count in by_strategy.items())
    comparison = payload.get("comparison")
    if comparison:
        lines.append(
            f"Audit: {comparison['different_values']} of {comparison['compared_values']} original values changed"
            f" ({comparison['significant_differences']} significant)"
        )
    warnings = payload["run_summary"]["warnings"]
    if warnings:
        lines.append("Warnings:")
        lines.extend(f"- {warning}" for warning in warnings)
    return "\n".join(lines) + "\n"


def render_validation_text(payload: dict[str, Any], *, verbose: bool = False) -> str:
    lines = [
        "snapshot-doctor validate-processed",
        f"Directory: {payload['run_summary']['input']}",
        f"Files: {payload['total_files']}",
        f"Rows: {payload['total_rows']}",
        f"Valid: {payload['valid']}",
        f"Invalid points: {len(payload['invalid_groups'])}",
        f"Invalid entries: {payload['invalid_items']}",
    ]
    for group in payload["invalid_groups"]:
        lines.append(f"- {group['name']}: {len(group['items'])}")
        if verbose:
            lines.extend(f"    {item['timestamp']} {item['detail']}" for item in group["items"])
    for item in payload["failed_files"]:
        lines.append(f"Unreadable: {item['file']}: {item['message']}")
    return "\n".join(lines) + "\n"


def render_large_values_text(payload: dict[str, Any]) -> str:
    lines = [
        "snapshot-doctor check-large-values",
        f"Directory: {payload['run_summary']['input']}",
        f"Threshold: {payload['threshold']}",
        f"Large values: {payload['total_large_values']}",
        f"Files with large values: {payload['files_with_large_values']}",
    ]
    for name, items in payload["files"].items():
        lines.append(f"{name}:")
        lines.extend(
            f"- {item['point']} row {item['position']} col {item['column']}: {item['value']:.4f}" for item in items
        )
    return "\n".join(lines) + "\n"


def render_data_correction_text(payload: dict[str, Any]) -> str:
    metrics = payload["run_summary"]["metrics"]
    lines = [
        "snapshot-doctor data-correction",
        f"Original: {payload['run_summary']['input']}",
        f"Processed: {payload['run_summary']['output']}",
        f"Original files: {metrics['original_files']}",
        f"Processed files: {metrics['processed_files']}",
        f"Supplement files: {metrics['supplement_files']}",
        f"Files with abnormal data: {metrics['files_with_abnormal_data']}",
        f"Corrections: {metrics['total_corrections']}",
        f"Files rewritten: {metrics['files_written']}",
    ]
    for item in payload["files"]:
        if item["abnormal_cells"]:
            lines.append(f"- {item['file']}: {item['abnormal_cells']} abnormal value(s)")
    warnings = payload["run_summary"]["warnings"]
    if warnings:
        lines.append("Warnings:")
        lines.extend(f"- {warning}" for warning in warnings)
    return "\n".join(lines) + "\n"


EXPLAIN_RULES = {
    "temporal_neighbor_average": {
        "description": "A blank cell takes the mean of the nearest earlier and nearest later value of the same point and slot.",
        "evidence": "Both an earlier and a later snapshot hold a value for the point.",
        "auto_fixable": True,
        "disable_hint": "Set imputation.time_factor_weight above 0 to lean towards time-weighted interpolation.",
    },
    "same_day_average": {
        "description": "A blank cell takes the mean of the same point and slot in the other snapshots of that day.",
        "evidence": "Only one side of the timeline has a value but the same day has other observations.",
        "auto_fixable": True,
        "disable_hint": "Supply the missing observation file for that day.",
    },
    "single_nearest_neighbor": {
        "description": "A blank cell copies the only available earlier or later value.",
        "evidence": "The gap sits at the start or end of the observation history.",
        "auto_fixable": True,
        "disable_hint": "Extend the input directory with earlier or later snapshots.",
    },
    "global_history_average": {
        "description": "A blank cell takes the average of every originally observed value for the point and slot.",
        "evidence": "No neighbouring snapshot holds a value for the point.",
        "auto_fixable": True,
        "disable_hint": "Provide at least one snapshot containing the point's value.",
    },
    "adjacent_point_average": {
        "description": "A blank cell takes the averaged history of the neighbouring points.",
        "evidence": "The point has no recorded value for the slot in any snapshot.",
        "auto_fixable": True,
        "disable_hint": "Switch imputation.adjacent_point_order between 'name' and 'position' to pick other neighbours.",
    },
    "schema_default": {
        "description": "A blank cell takes the configured default of its band.",
        "evidence": "No other strategy produced a value.",
        "auto_fixable": True,
        "disable_hint": "Change schema.band_defaults.",
    },
    "supplement_jitter": {
        "description": "A synthesized snapshot has its values perturbed by a small seeded random amount.",
        "evidence": "An observation hour was missing for a date and was cloned from the nearest snapshot.",
        "auto_fixable": True,
        "disable_hint": "Set supplement.adjustment_range and supplement.minimum_adjustment to 0.",
    },
    "cumulative_recomputed": {
        "description": "A cumulative value is rebuilt as the previous cumulative plus the period change.",
        "evidence": "The cumulative jump exceeded correction.cumulative_adjustment_threshold.",
        "auto_fixable": True,
        "disable_hint": "Raise correction.cumulative_adjustment_threshold.",
    },
    "cumulative_blended": {
        "description": "A cumulative value is moved halfway from the previous cumulative towards its recorded value.",
        "evidence": "Rebuilding from the period change would have moved the value more than the blend trigger allows.",
        "auto_fixable": True,
        "disable_hint": "Tune correction.blend_trigger_multiplier and correction.blend_factor.",
    },
    "change_overwritten": {
        "description": "A period change is rewritten to the difference between consecutive cumulative values.",
        "evidence": "The recorded change disagreed with the cumulative difference beyond correction.column_validation_tolerance.",
        "auto_fixable": True,
        "disable_hint": "Raise correction.column_validation_tolerance.",
    },
    "change_regenerated": {
        "description": "A period change is redrawn at random within data_correction.change_range during data correction.",
        "evidence": "A supplement snapshot a few periods later holds a cumulative value above quality.large_value_threshold.",
        "auto_fixable": True,
        "disable_hint": "Raise quality.large_value_threshold or do not run data-correction.",
    },
    "cumulative_rebuilt": {
        "description": "A cumulative value is rebuilt as the previous cumulative plus a redrawn period change.",
        "evidence": "The snapshot sits within data_correction.lookback_periods before an abnormal supplement value.",
        "auto_fixable": True,
        "disable_hint": "Lower data_correction.lookback_periods to touch fewer snapshots.",
    },
}


def build_parser() -> argparse.ArgumentParser:
    parser = SnapshotDoctorArgumentParser(
        prog=TOOL_NAME,
        description="Fill gaps and repair cumulative columns in monitoring snapshot workbooks.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    process = subparsers.add_parser("process", help="Fill missing snapshots and values, then repair cumulative columns.")
    process.add_argument("input", help="Directory of snapshot workbooks")
    process.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    process.add_argument("--config", help="JSON config path")
    process.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    process.add_argument("--dry-run", action="store_true", help="Run the engine without writing outputs")
    process.add_argument("--no-compare", dest="no_compare", action="store_true", help="Skip the audit diff after writing")
    process.add_argument(
        "--confirm-row-mismatch",
        dest="confirm_row_mismatch",
        action="store_true",
        help="Ask before continuing when a file does not have the expected number of rows",
    )
    process.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    process.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    validate = subparsers.add_parser("validate-processed", help="Check cumulative consistency of a processed directory.")
    validate.add_argument("input", help="Directory of processed snapshot workbooks")
    validate.add_argument("--tolerance", type=float, help="Allowed absolute deviation")
    validate.add_argument("--config", help="JSON config path")
    validate.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    validate.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    validate.add_argument("-v", "--verbose", action="store_true", help="List every invalid entry")

    compare = subparsers.add_parser("compare", help="Diff an original directory against a processed one.")
    compare.add_argument("original", help="Directory of original snapshot workbooks")
    compare.add_argument("processed", help="Directory of processed snapshot workbooks")
    compare.add_argument("--tolerance", type=float, help="Differences above this are significant")
    compare.add_argument("--details", action="store_true", help="List individual differences")
    compare.add_argument("--max-differences", dest="max_differences", type=int, help="Limit listed differences (-1 for all)")
    compare.add_argument("--export", help="Write all differences to a CSV file")
    compare.add_argument("--config", help="JSON config path")
    compare.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    compare.add_argument(
        "--fail-on-differences",
        dest="fail_on_differences",
        action="store_true",
        help="Return exit code 3 when significant differences are found",
    )
    compare.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    compare.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    large = subparsers.add_parser("check-large-values", help="List values whose magnitude exceeds a threshold.")
    large.add_argument("input", help="Directory of snapshot workbooks")
    large.add_argument("--threshold", type=float, help="Absolute value threshold")
    large.add_argument("--config", help="JSON config path")
    large.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    large.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    large.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    correction = subparsers.add_parser(
        "data-correction",
        help="Rebuild abnormal cumulative values in supplement snapshots of a processed directory.",
    )
    correction.add_argument("original", help="Directory of original snapshot workbooks")
    correction.add_argument("processed", help="Directory of processed snapshot workbooks, rewritten in place")
    correction.add_argument("--config", help="JSON config path")
    correction.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    correction.add_argument("--dry-run", action="store_true", help="Report corrections without rewriting workbooks")
    correction.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    correction.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    config = subparsers.add_parser("config", help="Generate configuration.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_init = config_subparsers.add_parser("init", help="Write a starter config file.")
    config_init.add_argument("--path", default=DEFAULT_CONFIG_NAME, help="Config output path")

    explain = subparsers.add_parser("explain", help="Explain a stable rule id.")
    explain.add_argument("rule_id", help="Rule identifier")
    explain.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    subparsers.add_parser("version", help="Print version")
    return parser


def build_process_payload(result: ProcessResult, *, config: AppConfig) -> dict[str, Any]:
    warnings = result.warnings
    status = "partial" if result.load.failed else "ok"
    run_summary = build_run_summary(
        tool=TOOL_NAME,
        command="process",
        input_path=result.input_dir,
        status=status,
        output_path=result.output_dir if result.written else None,
        metrics=result.metrics(),
        warnings=warnings,
    )
    body = {
        "projects": [project.to_dict() for project in result.projects],
        "skipped_files": list(result.load.skipped),
        "failed_files": list(result.load.failed),
        "quality_before": result.quality_before,
        "quality_after": result.quality_after,
        "comparison": result.comparison.to_dict(max_differences=0) if result.comparison else None,
        "settings": {
            "hours": list(config.hours),
            "correction": config.to_dict()["correction"],
            "supplement": config.to_dict()["supplement"],
        },
    }
    return normalize_report_for_cli(
        build_payload("snapshot_doctor.process_summary", body, tool_version=TOOL_VERSION, run_summary=run_summary)
    )


def run_process(args: argparse.Namespace) -> int:
    try:
        input_dir = require_directory(args.input)
        config = load_cli_config(args)
        out_dir = None if args.dry_run else determine_output_dir(args, input_dir)
        summary_path = out_dir / "process-summary.json" if out_dir is not None else None
        if summary_path is not None and summary_path.exists():
            raise CliError(f"Refusing to overwrite existing output: {summary_path}", EXIT_COMMAND_ERROR)

        confirm = None
        if args.confirm_row_mismatch:
            config.layout.strict_row_count = True
            confirm = prompt_confirm

        result = process_directory(
            input_dir,
            out_dir,
            config=config,
            confirm=confirm,
            dry_run=args.dry_run,
            run_compare=not args.no_compare,
        )
        if not result.load.snapshots and result.load.failed:
            raise CliError("No snapshot file in the input directory could be read.", EXIT_PARSE_FAILED)

        payload = build_process_payload(result, config=config)
        outputs: dict[str, str] = {}
        if out_dir is not None:
            outputs = write_audit_files(result, out_dir)
            outputs["summary"] = str(summary_path)
            write_json(summary_path, payload)
        if args.json:
            maybe_emit_json_stdout({**payload, "outputs": outputs}, True)
        else:
            emit_human(render_process_text(payload).rstrip(), quiet=args.quiet)
            if summary_path is not None:
                emit_human(f"Processed workbooks: {out_dir}", quiet=args.quiet)
                emit_human(f"Process summary: {summary_path}", quiet=args.quiet)
        return EXIT_PARTIAL if result.load.failed else EXIT_SUCCESS
    except (CliError, SnapshotDoctorError, ValueError, OSError) as exc:
        return report_exception(exc)


def run_validate_processed(args: argparse.Namespace) -> int:
    try:
        directory = require_directory(args.input)
        config = load_cli_config(args)
        report = validate_processed_directory(directory, config=config, tolerance=args.tolerance)
        run_summary = build_run_summary(
            tool=TOOL_NAME,
            command="validate-processed",
            input_path=directory,
            status="ok" if report.is_valid else "invalid",
            metrics={"invalid_groups": len(report.invalid_groups), "invalid_items": report.invalid_items},
            warnings=[f"Could not read {Path(item['file']).name}" for item in report.failed_files],
        )
        payload = normalize_report_for_cli(
            build_payload("snapshot_doctor.validation", report.to_dict(), tool_version=TOOL_VERSION, run_summary=run_summary)
        )
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_validation_text(payload, verbose=args.verbose).rstrip(), quiet=args.quiet)
        return EXIT_SUCCESS if report.is_valid else EXIT_VALIDATE_FAILED
    except (CliError, SnapshotDoctorError, ValueError, OSError) as exc:
        return report_exception(exc)


def run_compare(args: argparse.Namespace) -> int:
    try:
        original_dir = require_directory(args.original)
        processed_dir = require_directory(args.processed)
        config = load_cli_config(args)
        max_differences = config.compare.max_differences if args.max_differences is None else args.max_differences
        result = compare_directories(original_dir, processed_dir, config=config, tolerance=args.tolerance)
        if result.has_error:
            raise CliError(result.error or "Comparison failed", EXIT_PARSE_FAILED)
        if args.export:
            export_path = Path(args.export)
            ensure_parent(export_path)
            result.to_frame().to_csv(export_path, index=False, encoding="utf-8")
            emit_human(f"Differences exported: {export_path}", quiet=args.quiet or args.json)
        run_summary = build_run_summary(
            tool=TOOL_NAME,
            command="compare",
            input_path=original_dir,
            output_path=processed_dir,
            status="ok" if not result.failed else "partial",
            metrics={
                "compared_files": len(result.files),
                "different_values": result.different_values,
                "significant_differences": result.significant_differences,
            },
            warnings=[f"Could not read {Path(item['file']).name}" for item in result.failed],
        )
        payload = normalize_report_for_cli(
            build_payload(
                "snapshot_doctor.comparison",
                result.to_dict(max_differences=max_differences if args.details else 0),
                tool_version=TOOL_VERSION,
                run_summary=run_summary,
            )
        )
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(
                render_comparison_text(result, show_details=args.details, max_differences=max_differences).rstrip(),
                quiet=args.quiet,
            )
        if args.fail_on_differences and result.significant_differences:
            return EXIT_DIFFERENCES
        return EXIT_PARTIAL if result.failed else EXIT_SUCCESS
    except (CliError, SnapshotDoctorError, ValueError, OSError) as exc:
        return report_exception(exc)


def run_check_large_values(args: argparse.Namespace) -> int:
    try:
        directory = require_directory(args.input)
        config = load_cli_config(args)
        report = check_large_values_in_directory(directory, config=config, threshold=args.threshold)
        run_summary = build_run_summary(
            tool=TOOL_NAME,
            command="check-large-values",
            input_path=directory,
            metrics={"total_large_values": report.total_large_values},
            warnings=[f"Could not read {Path(item['file']).name}" for item in report.failed],
        )
        payload = normalize_report_for_cli(
            build_payload("snapshot_doctor.large_values", report.to_dict(), tool_version=TOOL_VERSION, run_summary=run_summary)
        )
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_large_values_text(payload).rstrip(), quiet=args.quiet)
        return EXIT_PARTIAL if report.failed else EXIT_SUCCESS
    except (CliError, SnapshotDoctorError, ValueError, OSError) as exc:
        return report_exception(exc)


def run_data_correction(args: argparse.Namespace) -> int:
    try:
        original_dir = require_directory(args.original)
        processed_dir = require_directory(args.processed)
        if original_dir.resolve() == processed_dir.resolve():
            raise CliError("Original and processed directories must differ.", EXIT_COMMAND_ERROR)
        config = load_cli_config(args)
        run = correct_processed_directory(original_dir, processed_dir, config=config, dry_run=args.dry_run)
        if not run.load.snapshots and run.load.failed:
            raise CliError("No snapshot file in the processed directory could be read.", EXIT_PARSE_FAILED)
        run_summary = build_run_summary(
            tool=TOOL_NAME,
            command="data-correction",
            input_path=original_dir,
            output_path=processed_dir,
            status="partial" if run.load.failed else "ok",
            metrics=run.metrics(),
            warnings=run.warnings,
        )
        payload = normalize_report_for_cli(
            build_payload("snapshot_doctor.data_correction", run.to_dict(), tool_version=TOOL_VERSION, run_summary=run_summary)
        )
        outputs: dict[str, str] = {}
        if not args.dry_run and run.corrections:
            outputs = write_data_correction_audit(run, processed_dir)
        if args.json:
            maybe_emit_json_stdout({**payload, "outputs": outputs}, True)
        else:
            emit_human(render_data_correction_text(payload).rstrip(), quiet=args.quiet)
            if outputs:
                emit_human(f"Correction log: {outputs['corrections']}", quiet=args.quiet)
        return EXIT_PARTIAL if run.load.failed else EXIT_SUCCESS
    except (CliError, SnapshotDoctorError, ValueError, OSError) as exc:
        return report_exception(exc)


def run_config_init(args: argparse.Namespace) -> int:
    config_path = Path(args.path)
    if config_path.exists():
        eprint(f"Refusing to overwrite existing config: {config_path}")
        return EXIT_COMMAND_ERROR
    write_text(config_path, starter_config())
    emit_human(f"Config written: {config_path}")
    return EXIT_SUCCESS


def run_explain(args: argparse.Namespace) -> int:
    rule = EXPLAIN_RULES.get(args.rule_id)
    if rule is None:
        eprint(f"Unknown rule id: {args.rule_id}")
        return EXIT_COMMAND_ERROR
    payload = {"rule_id": args.rule_id, **rule}
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        print(
            "\n".join(
                [
                    f"Rule: {args.rule_id}",
                    f"What it does: {payload['description']}",
                    f"What triggers it: {payload['evidence']}",
                    f"Auto-fixable: {'yes' if payload['auto_fixable'] else 'no'}",
                    f"How to avoid/disable it: {payload['disable_hint']}",
                ]
            )
        )
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        setup_logging(
            verbose=getattr(args, "verbose", False),
            quiet=getattr(args, "quiet", False) or getattr(args, "json", False),
        )
        if args.command == "process":
            return run_process(args)
        if args.command == "validate-processed":
            return run_validate_processed(args)
        if args.command == "compare":
            return run_compare(args)
        if args.command == "check-large-values":
            return run_check_large_values(args)
        if args.command == "data-correction":
            return run_data_correction(args)
        if args.command == "config":
            if args.config_command == "init":
                return run_config_init(args)
        if args.command == "explain":
            return run_explain(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())

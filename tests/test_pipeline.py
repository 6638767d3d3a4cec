from __future__ import annotations

import importlib.util
import math
import tempfile
import unittest
from datetime import date
from pathlib import Path

import openpyxl
import pandas as pd

from snapshot_doctor.config import AppConfig
from snapshot_doctor.errors import DataIntegrityError, SnapshotWriteError
from snapshot_doctor.models import MeasurementRow, Snapshot
from snapshot_doctor.pipeline import (
    CORRECTION_COLUMNS,
    correct_processed_directory,
    process_directory,
    run_project,
    validate_processed_directory,
    write_audit_files,
)
from snapshot_doctor.quality import check_large_values_in_directory
from snapshot_doctor.workbook import read_snapshot

ROOT = Path(__file__).resolve().parents[1]


def load_module(path: Path, module_name: str):
    spec = importlib.util.spec_from_file_location(module_name, path)
    module = importlib.util.module_from_spec(spec)
    assert spec.loader is not None
    spec.loader.exec_module(module)
    return module


GENERATOR = load_module(ROOT / "sample-data" / "generate_snapshots.py", "snapshot_generator_for_pipeline_tests")


class SampleProjectTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.input_dir = Path(self._tmp.name) / "snapshots"
        self.output_dir = Path(self._tmp.name) / "processed"
        GENERATOR.build_sample_directory(self.input_dir)

    def test_process_fills_gaps_adds_the_missing_slot_and_repairs_cumulatives(self):
        result = process_directory(self.input_dir, self.output_dir)

        self.assertEqual(len(result.load.snapshots), 5)
        self.assertEqual([item["file"] for item in result.load.skipped], ["2025-4-20-8demo.xlsx"])
        self.assertEqual(len(result.supplements), 1)
        plan = result.supplements[0]
        self.assertEqual((plan.target_date, plan.target_hour), (date(2025, 4, 19), 8))
        self.assertEqual(plan.source.file_identifier, "2025.4.19-00demo")
        self.assertEqual(plan.selection, "same_day_nearest_hour")

        self.assertEqual(len(result.written), 6)
        self.assertTrue((self.output_dir / "2025.4.18-08demo.xlsx").exists())
        self.assertTrue((self.output_dir / "2025.4.19-08demo.xlsx").exists())
        self.assertEqual(result.metrics()["supplements_created"], 1)
        self.assertGreater(result.metrics()["cells_filled"], 0)

        filled = read_snapshot(self.output_dir / "2025.4.18-16demo.xlsx")
        self.assertAlmostEqual(filled.row("P03").values[0], 0.3, places=6)
        self.assertEqual(read_snapshot(self.output_dir / "2025.4.19-00demo.xlsx").row("P05").missing_count, 0)
        untouched = read_snapshot(self.input_dir / "2025.4.18-16demo.xlsx")
        self.assertIsNone(untouched.row("P03").values[0])

        rules = {record.rule for record in result.corrections if record.point == "P02"}
        self.assertIn("cumulative_blended", rules)
        self.assertTrue(validate_processed_directory(self.output_dir).is_valid)
        self.assertIsNotNone(result.comparison)
        self.assertFalse(result.comparison.has_error)
        self.assertGreater(result.comparison.significant_differences, 0)

    def test_observation_header_points_at_the_previous_snapshot(self):
        process_directory(self.input_dir, self.output_dir, run_compare=False)
        wb = openpyxl.load_workbook(self.output_dir / "2025.4.19-16demo.xlsx")
        header = wb.active["A2"].value
        wb.close()
        self.assertEqual(header, "本期观测：2025-4-19 16:00 上期观测：2025-4-19 08:00")

    def test_audit_files_are_written_under_audit(self):
        result = process_directory(self.input_dir, self.output_dir, run_compare=False)
        paths = write_audit_files(result, self.output_dir)
        corrections = pd.read_csv(paths["corrections"])
        self.assertEqual(list(corrections.columns), CORRECTION_COLUMNS)
        self.assertEqual(len(corrections), len(result.corrections))
        sheets = pd.ExcelFile(paths["report"]).sheet_names
        self.assertEqual(sheets, ["Corrections", "Supplements", "Input Quality"])
        self.assertEqual(Path(paths["report"]).parent, self.output_dir / "audit")

    def test_dry_run_writes_nothing(self):
        result = process_directory(self.input_dir, self.output_dir, dry_run=True)
        self.assertEqual(result.written, [])
        self.assertFalse(self.output_dir.exists())
        self.assertEqual(len(result.comparison.files), 5)

    def test_output_directory_must_differ_from_input(self):
        with self.assertRaises(SnapshotWriteError):
            process_directory(self.input_dir, self.input_dir)

    def test_large_values_are_found_in_the_sample(self):
        report = check_large_values_in_directory(self.input_dir)
        self.assertEqual(report.total_large_values, 1)
        item = report.files["2025.4.19-16demo.xlsx"][0]
        self.assertEqual((item.point, item.column), ("P02", "G"))


class UnreadableFileTests(unittest.TestCase):
    def test_unreadable_file_blocks_its_slot_and_the_correction_chain(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            input_dir = Path(tmpdir) / "in"
            GENERATOR.build_snapshot_workbook(input_dir / "2025.4.18-00demo.xlsx", [("P01", [0.0, 0.0, 0.0, 1.0, 1.0, 1.0])])
            GENERATOR.build_snapshot_workbook(input_dir / "2025.4.18-16demo.xlsx", [("P01", [0.0, 0.0, 0.0, 9.0, 1.0, 1.0])])
            (input_dir / "2025.4.18-08demo.xlsx").write_bytes(b"locked")
            result = process_directory(input_dir, None, run_compare=False)
        self.assertEqual(result.supplements, [])
        self.assertEqual(len(result.load.failed), 1)
        project = result.projects[0]
        self.assertEqual(project.correction.skipped_blocked, 1)
        self.assertEqual(result.corrections, [])
        self.assertTrue(any("not corrected" in message for message in result.warnings))


class DuplicateSlotTests(unittest.TestCase):
    def test_padded_and_unpadded_hours_produce_one_valid_output(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            input_dir = Path(tmpdir) / "in"
            output_dir = Path(tmpdir) / "out"
            for name, cumulative in (
                ("2025.4.18-00demo.xlsx", 1.0),
                ("2025.4.18-08demo.xlsx", 1.5),
                ("2025.4.18-8demo.xlsx", 1.5),
                ("2025.4.18-16demo.xlsx", 2.0),
            ):
                GENERATOR.build_snapshot_workbook(
                    input_dir / name, [("X", [0.5, 0.0, 0.0, cumulative, 0.0, 0.0])]
                )
            result = process_directory(input_dir, output_dir, run_compare=False)
            report = validate_processed_directory(output_dir)
        self.assertEqual(len(result.load.snapshots), 3)
        self.assertEqual([item["file"] for item in result.load.skipped], ["2025.4.18-8demo.xlsx"])
        self.assertEqual(len(result.written), 3)
        self.assertEqual(len(set(result.written)), 3)
        self.assertTrue(report.is_valid)


class DataCorrectionTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.original_dir = Path(self._tmp.name) / "original"
        self.processed_dir = Path(self._tmp.name) / "processed"
        for name in ("2025.4.18-00demo.xlsx", "2025.4.18-16demo.xlsx"):
            GENERATOR.build_snapshot_workbook(self.original_dir / name, [("X", [0.0] * 6)])
        for name, change, cumulative in (
            ("2025.4.18-00demo.xlsx", 0.5, 1.0),
            ("2025.4.18-08demo.xlsx", 5.0, 6.0),
            ("2025.4.18-16demo.xlsx", -4.5, 1.5),
        ):
            GENERATOR.build_snapshot_workbook(
                self.processed_dir / name, [("X", [change, 0.0, 0.0, cumulative, 0.0, 0.0])]
            )

    def test_abnormal_supplement_is_rewritten_in_place(self):
        run = correct_processed_directory(self.original_dir, self.processed_dir)

        metrics = run.metrics()
        self.assertEqual(metrics["original_files"], 2)
        self.assertEqual(metrics["processed_files"], 3)
        self.assertEqual(metrics["supplement_files"], 1)
        self.assertEqual(metrics["files_with_abnormal_data"], 1)
        self.assertEqual(
            sorted(path.name for path in run.written), ["2025.4.18-08demo.xlsx", "2025.4.18-16demo.xlsx"]
        )

        supplement = read_snapshot(self.processed_dir / "2025.4.18-08demo.xlsx")
        self.assertLessEqual(abs(supplement.row("X").values[3] - 1.0), 0.5)
        self.assertEqual(read_snapshot(self.processed_dir / "2025.4.18-16demo.xlsx").row("X").values[3], 1.5)
        self.assertTrue(validate_processed_directory(self.processed_dir).is_valid)

        wb = openpyxl.load_workbook(self.processed_dir / "2025.4.18-08demo.xlsx")
        header = wb.active["A2"].value
        wb.close()
        self.assertEqual(header, "本期观测：2025-4-18 08:00 上期观测：2025-4-18 00:00")

    def test_dry_run_leaves_the_processed_directory_alone(self):
        run = correct_processed_directory(self.original_dir, self.processed_dir, dry_run=True)
        self.assertEqual(run.written, [])
        self.assertGreater(len(run.corrections), 0)
        self.assertEqual(read_snapshot(self.processed_dir / "2025.4.18-08demo.xlsx").row("X").values[3], 6.0)

    def test_nothing_to_do_when_every_file_has_an_original(self):
        GENERATOR.build_snapshot_workbook(self.original_dir / "2025.4.18-8demo.xlsx", [("X", [0.0] * 6)])
        run = correct_processed_directory(self.original_dir, self.processed_dir)
        self.assertEqual(run.supplement_files, [])
        self.assertEqual(run.corrections, [])
        self.assertEqual(run.written, [])


class IntegrityTests(unittest.TestCase):
    def test_non_finite_value_stops_the_project(self):
        snapshots = [
            Snapshot(
                date=date(2025, 4, 18),
                hour=hour,
                project="demo",
                rows=[MeasurementRow("P01", 5, [0.0, 0.0, 0.0, value, 0.0, 0.0])],
            )
            for hour, value in ((0, 1.0), (8, math.inf), (16, 1.0))
        ]
        with self.assertRaises(DataIntegrityError):
            run_project("demo", snapshots, config=AppConfig())


if __name__ == "__main__":
    unittest.main()

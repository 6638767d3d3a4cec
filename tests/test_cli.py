from __future__ import annotations

import importlib.util
import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "snapshot_doctor.cli"]
FIXED_STAMP = "20260301T010203Z"


def load_module(path: Path, module_name: str):
    spec = importlib.util.spec_from_file_location(module_name, path)
    module = importlib.util.module_from_spec(spec)
    assert spec.loader is not None
    spec.loader.exec_module(module)
    return module


GENERATOR = load_module(ROOT / "sample-data" / "generate_snapshots.py", "snapshot_generator_for_cli_tests")


def run_cli(
    *args: str,
    cwd: Path = ROOT,
    stdin: str | None = None,
    env: dict[str, str] | None = None,
) -> subprocess.CompletedProcess[str]:
    merged_env = dict(os.environ)
    merged_env["SNAPSHOT_DOCTOR_OUTPUT_STAMP"] = FIXED_STAMP
    merged_env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(ROOT), merged_env.get("PYTHONPATH", "")]))
    if env:
        merged_env.update(env)
    return subprocess.run(
        [*CLI, *args],
        cwd=cwd,
        input=stdin,
        capture_output=True,
        text=True,
        env=merged_env,
    )


class SnapshotDoctorCliTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.tmp = Path(self._tmp.name)
        self.input_dir = self.tmp / "snapshots"
        GENERATOR.build_sample_directory(self.input_dir)

    def test_process_writes_workbooks_audit_and_summary(self):
        out_dir = self.tmp / "out"
        proc = run_cli("process", str(self.input_dir), "--out", str(out_dir))
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("Process summary:", proc.stderr)
        self.assertTrue((out_dir / "2025.4.19-08demo.xlsx").exists())
        self.assertTrue((out_dir / "audit" / "corrections.csv").exists())
        self.assertTrue((out_dir / "audit" / "process-report.xlsx").exists())
        summary = json.loads((out_dir / "process-summary.json").read_text(encoding="utf-8"))
        self.assertEqual(summary["contract"]["name"], "snapshot_doctor.process_summary")
        self.assertEqual(summary["schema_version"], summary["contract"]["version"])
        self.assertEqual(summary["run_summary"]["generated_at"], "1970-01-01T00:00:00Z")
        self.assertEqual(summary["run_summary"]["metrics"]["supplements_created"], 1)
        self.assertEqual(summary["run_summary"]["metrics"]["files_skipped"], 1)
        self.assertEqual(summary["projects"][0]["supplements"][0]["target_file"], "2025.4.19-08demo.xlsx")

    def test_process_refuses_to_overwrite_a_previous_run(self):
        out_dir = self.tmp / "out"
        first = run_cli("process", str(self.input_dir), "--out", str(out_dir), "--no-compare")
        self.assertEqual(first.returncode, 0, first.stderr)
        second = run_cli("process", str(self.input_dir), "--out", str(out_dir))
        self.assertEqual(second.returncode, 1)
        self.assertIn("Refusing to overwrite", second.stderr)

    def test_process_default_output_directory_uses_the_stamp(self):
        proc = run_cli("process", str(self.input_dir), "--no-compare", cwd=self.tmp)
        self.assertEqual(proc.returncode, 0, proc.stderr)
        output_dir = self.tmp / "snapshot-doctor-output" / f"snapshots-{FIXED_STAMP}"
        self.assertTrue((output_dir / "process-summary.json").exists())

    def test_process_dry_run_json_stdout_contains_only_json(self):
        proc = run_cli("process", str(self.input_dir), "--dry-run", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertIsNone(payload["run_summary"]["output"])
        self.assertEqual(payload["outputs"], {})
        self.assertEqual(payload["comparison"]["compared_files"], 5)
        self.assertEqual(payload["comparison"]["files"][0]["differences"], [])

    def test_process_row_mismatch_can_be_cancelled(self):
        proc = run_cli(
            "process",
            str(self.input_dir),
            "--out",
            str(self.tmp / "out"),
            "--confirm-row-mismatch",
            stdin="n\n",
        )
        self.assertEqual(proc.returncode, 7)
        self.assertIn("Cancelled:", proc.stderr)
        self.assertFalse((self.tmp / "out" / "process-summary.json").exists())

    def test_process_missing_input_returns_exit_1(self):
        proc = run_cli("process", str(self.tmp / "absent"))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Directory not found", proc.stderr)

    def test_process_with_only_unreadable_files_returns_exit_2(self):
        broken_dir = self.tmp / "broken"
        broken_dir.mkdir()
        (broken_dir / "2025.4.18-00demo.xlsx").write_bytes(b"not a workbook")
        proc = run_cli("process", str(broken_dir), "--out", str(self.tmp / "out"))
        self.assertEqual(proc.returncode, 2)
        self.assertIn("could be read", proc.stderr)

    def test_process_with_some_unreadable_files_returns_exit_6(self):
        (self.input_dir / "2025.4.20-00demo.xlsx").write_bytes(b"not a workbook")
        proc = run_cli("process", str(self.input_dir), "--out", str(self.tmp / "out"), "--json")
        self.assertEqual(proc.returncode, 6, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["run_summary"]["status"], "partial")
        self.assertEqual(len(payload["failed_files"]), 1)

    def test_validate_processed_passes_after_processing_and_fails_on_raw_input(self):
        out_dir = self.tmp / "out"
        self.assertEqual(run_cli("process", str(self.input_dir), "--out", str(out_dir)).returncode, 0)
        valid = run_cli("validate-processed", str(out_dir), "--json")
        self.assertEqual(valid.returncode, 0, valid.stderr)
        self.assertTrue(json.loads(valid.stdout)["valid"])

        invalid = run_cli("validate-processed", str(self.input_dir), "--verbose")
        self.assertEqual(invalid.returncode, 5, invalid.stderr)
        self.assertIn("- P02:", invalid.stderr)

    def test_compare_reports_and_exports_differences(self):
        out_dir = self.tmp / "out"
        self.assertEqual(run_cli("process", str(self.input_dir), "--out", str(out_dir), "--no-compare").returncode, 0)
        export_path = self.tmp / "diff.csv"
        proc = run_cli("compare", str(self.input_dir), str(out_dir), "--details", "--export", str(export_path))
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("Significant differences", proc.stderr)
        self.assertTrue(export_path.exists())

        failing = run_cli("compare", str(self.input_dir), str(out_dir), "--json", "--fail-on-differences")
        self.assertEqual(failing.returncode, 3)
        payload = json.loads(failing.stdout)
        self.assertEqual(payload["contract"]["name"], "snapshot_doctor.comparison")
        self.assertGreater(payload["significant_differences"], 0)

    def test_check_large_values_json(self):
        proc = run_cli("check-large-values", str(self.input_dir), "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["total_large_values"], 1)
        self.assertIn("2025.4.19-16demo.xlsx", payload["files"])

        relaxed = run_cli("check-large-values", str(self.input_dir), "--threshold", "100", "--json")
        self.assertEqual(json.loads(relaxed.stdout)["total_large_values"], 0)

    def test_data_correction_rewrites_abnormal_supplements(self):
        original_dir = self.tmp / "original"
        processed_dir = self.tmp / "processed"
        GENERATOR.build_snapshot_workbook(original_dir / "2025.4.18-00demo.xlsx", [("X", [0.0] * 6)])
        for name, change, cumulative in (("2025.4.18-00demo.xlsx", 0.5, 1.0), ("2025.4.18-08demo.xlsx", 5.0, 6.0)):
            GENERATOR.build_snapshot_workbook(processed_dir / name, [("X", [change, 0.0, 0.0, cumulative, 0.0, 0.0])])

        dry = run_cli("data-correction", str(original_dir), str(processed_dir), "--dry-run", "--json")
        self.assertEqual(dry.returncode, 0, dry.stderr)
        self.assertEqual(json.loads(dry.stdout)["run_summary"]["metrics"]["files_written"], 0)
        self.assertFalse((processed_dir / "audit").exists())

        proc = run_cli("data-correction", str(original_dir), str(processed_dir), "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["contract"]["name"], "snapshot_doctor.data_correction")
        self.assertEqual(payload["run_summary"]["metrics"]["supplement_files"], 1)
        self.assertEqual(payload["run_summary"]["metrics"]["files_with_abnormal_data"], 1)
        self.assertEqual(payload["files"][0]["file"], "2025.4.18-08demo")
        self.assertTrue(Path(payload["outputs"]["corrections"]).exists())

        check = run_cli("check-large-values", str(processed_dir), "--json")
        self.assertEqual(json.loads(check.stdout)["total_large_values"], 0)

        same = run_cli("data-correction", str(processed_dir), str(processed_dir))
        self.assertEqual(same.returncode, 1)
        self.assertIn("must differ", same.stderr)

    def test_config_init_writes_a_loadable_config_once(self):
        config_path = self.tmp / "snapshot-doctor.json"
        proc = run_cli("config", "init", "--path", str(config_path))
        self.assertEqual(proc.returncode, 0, proc.stderr)
        config = json.loads(config_path.read_text(encoding="utf-8"))
        self.assertEqual(config["hours"], [0, 8, 16])

        again = run_cli("config", "init", "--path", str(config_path))
        self.assertEqual(again.returncode, 1)

        used = run_cli("check-large-values", str(self.input_dir), "--config", str(config_path))
        self.assertEqual(used.returncode, 0, used.stderr)

    def test_invalid_config_returns_exit_1(self):
        config_path = self.tmp / "bad.json"
        config_path.write_text(json.dumps({"correction": {"threshold": 2}}), encoding="utf-8")
        proc = run_cli("check-large-values", str(self.input_dir), "--config", str(config_path))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Unknown keys", proc.stderr)

    def test_explain_known_and_unknown_rules(self):
        proc = run_cli("explain", "cumulative_blended", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(json.loads(proc.stdout)["rule_id"], "cumulative_blended")
        unknown = run_cli("explain", "does_not_exist")
        self.assertEqual(unknown.returncode, 1)

    def test_version_and_bad_arguments(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0)
        self.assertEqual(proc.stdout.strip(), "0.1.0")
        bad = run_cli("process")
        self.assertEqual(bad.returncode, 1)


if __name__ == "__main__":
    unittest.main()

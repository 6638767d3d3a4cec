from __future__ import annotations

import math
import random
import unittest
from collections import Counter
from datetime import date, datetime, timedelta

from snapshot_doctor.config import AppConfig
from snapshot_doctor.correction import (
    RULE_CHANGE_OVERWRITTEN,
    RULE_CHANGE_REGENERATED,
    RULE_CUMULATIVE_BLENDED,
    RULE_CUMULATIVE_REBUILT,
    RULE_CUMULATIVE_RECOMPUTED,
    CumulativeCorrector,
    correct_supplement_outliers,
    ensure_finite,
    validate_cumulative_logic,
)
from snapshot_doctor.errors import DataIntegrityError
from snapshot_doctor.models import MeasurementRow, Snapshot

D1 = date(2025, 4, 18)
TIMES = [(D1, 0), (D1, 8), (D1, 16), (date(2025, 4, 19), 0)]


def x_series(cumulative: list[float], change: list[float], name: str = "P01") -> list[Snapshot]:
    """One point whose X axis carries the given values; Y and Z stay consistent at zero."""
    return [
        Snapshot(
            date=day,
            hour=hour,
            project="demo",
            rows=[MeasurementRow(name, 5, [delta, 0.0, 0.0, total, 0.0, 0.0])],
        )
        for (day, hour), total, delta in zip(TIMES, cumulative, change)
    ]


def chained_series(cumulative: list[float]) -> list[Snapshot]:
    """Consecutive observation slots whose X change always matches the cumulative difference."""
    snapshots = []
    previous = 0.0
    for index, total in enumerate(cumulative):
        snapshots.append(
            Snapshot(
                date=D1 + timedelta(days=index // 3),
                hour=(index % 3) * 8,
                project="demo",
                rows=[MeasurementRow("P01", 5, [total - previous, 0.0, 0.0, total, 0.0, 0.0])],
            )
        )
        previous = total
    return snapshots


def corrector(threshold: float = 5.0) -> CumulativeCorrector:
    config = AppConfig()
    config.correction.cumulative_adjustment_threshold = threshold
    return CumulativeCorrector(config)


class CumulativeCorrectorTests(unittest.TestCase):
    def test_consistent_series_is_left_alone(self):
        snapshots = x_series([10.0, 11.0, 50.0], [0.0, 1.0, 39.0])
        result = corrector().correct(snapshots)
        self.assertEqual(result.records, [])
        self.assertEqual(snapshots[2].rows[0].values[3], 50.0)

    def test_cumulative_jump_is_recomputed_from_change(self):
        snapshots = x_series([10.0, 11.0, 20.0], [0.0, 1.0, 6.0])
        result = corrector().correct(snapshots)
        self.assertEqual(len(result.records), 1)
        record = result.records[0]
        self.assertEqual(record.rule, RULE_CUMULATIVE_RECOMPUTED)
        self.assertEqual(record.original_value, 20.0)
        self.assertEqual(record.corrected_value, 17.0)
        self.assertEqual(record.axis, "X")
        self.assertEqual(record.source_file, "2025.4.18-16demo")
        self.assertEqual(snapshots[2].rows[0].values[:4], [6.0, 0.0, 0.0, 17.0])

    def test_far_recomputation_blends_instead(self):
        snapshots = x_series([10.0, 11.0, 50.0], [0.0, 1.0, 1.0])
        result = corrector().correct(snapshots)
        self.assertEqual([record.rule for record in result.records], [RULE_CUMULATIVE_BLENDED, RULE_CHANGE_OVERWRITTEN])
        values = snapshots[2].rows[0].values
        self.assertAlmostEqual(values[3], 30.5)
        self.assertAlmostEqual(values[0], 19.5)

    def test_small_mismatch_rewrites_the_change(self):
        snapshots = x_series([10.0, 11.0, 12.0], [0.0, 1.0, 3.0])
        result = corrector().correct(snapshots)
        self.assertEqual(len(result.records), 1)
        self.assertEqual(result.records[0].rule, RULE_CHANGE_OVERWRITTEN)
        self.assertEqual(result.records[0].original_value, 3.0)
        self.assertAlmostEqual(snapshots[2].rows[0].values[0], 1.0)
        self.assertEqual(snapshots[2].rows[0].values[3], 12.0)

    def test_corrected_series_satisfies_the_cumulative_relation(self):
        rng = random.Random(5)
        snapshots = x_series(
            [round(rng.uniform(-20, 20), 3) for _ in TIMES],
            [round(rng.uniform(-5, 5), 3) for _ in TIMES],
        )
        config = AppConfig()
        CumulativeCorrector(config).correct(snapshots)
        report = validate_cumulative_logic(snapshots, config.slot_schema(), tolerance=0.01)
        self.assertTrue(report.is_valid, report.to_dict())

    def test_pair_around_an_unreadable_file_is_skipped(self):
        snapshots = [x_series([10.0, 11.0, 12.0], [0.0, 1.0, 3.0])[index] for index in (0, 2)]
        result = corrector().correct(snapshots, blocked_times=[datetime(2025, 4, 18, 8)])
        self.assertEqual(result.skipped_blocked, 1)
        self.assertEqual(result.records, [])
        self.assertEqual(result.pairs_checked, 0)

    def test_to_dict_counts_rules(self):
        snapshots = x_series([10.0, 11.0, 12.0], [0.0, 1.0, 3.0])
        payload = corrector().correct(snapshots).to_dict()
        self.assertEqual(payload["corrections"], 1)
        self.assertEqual(payload["by_rule"], {RULE_CHANGE_OVERWRITTEN: 1})
        self.assertEqual(payload["pairs_checked"], 6)


class SupplementOutlierTests(unittest.TestCase):
    def setUp(self):
        self.schema = AppConfig().slot_schema()
        self.snapshots = chained_series([0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 6.0, 0.8])

    def test_abnormal_supplement_rebuilds_the_five_periods_before_it(self):
        before = [list(snapshot.rows[0].values) for snapshot in self.snapshots]
        supplement = self.snapshots[6]
        result = correct_supplement_outliers(self.snapshots, [supplement.key], self.schema, rng=random.Random(7))

        self.assertEqual(dict(result.abnormal_cells), {supplement.file_identifier: 1})
        for index in (0, 1):
            self.assertEqual(self.snapshots[index].rows[0].values, before[index])
        for index in range(2, 7):
            self.assertLessEqual(abs(self.snapshots[index].rows[0].values[0]), 0.5)
        self.assertLess(abs(supplement.rows[0].values[3]), 4.0)
        self.assertEqual(self.snapshots[7].rows[0].values[3], 0.8)
        self.assertTrue(validate_cumulative_logic(self.snapshots, self.schema).is_valid)

        rules = Counter(record.rule for record in result.records)
        self.assertEqual(rules[RULE_CHANGE_REGENERATED], 5)
        self.assertEqual(rules[RULE_CUMULATIVE_REBUILT], 5)
        self.assertEqual(rules[RULE_CHANGE_OVERWRITTEN], 1)
        self.assertEqual(len(result.touched), 6)
        self.assertEqual(result.to_dict()["files_with_abnormal_data"], 1)

    def test_large_values_outside_supplements_are_left_alone(self):
        result = correct_supplement_outliers(self.snapshots, [self.snapshots[3].key], self.schema)
        self.assertEqual(result.records, [])
        self.assertEqual(result.touched, {})
        self.assertEqual(result.supplement_files, [self.snapshots[3].file_identifier])
        self.assertEqual(self.snapshots[6].rows[0].values[3], 6.0)

    def test_same_seed_redraws_the_same_changes(self):
        other = chained_series([0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 6.0, 0.8])
        first = correct_supplement_outliers(self.snapshots, [self.snapshots[6].key], self.schema, rng=random.Random(3))
        second = correct_supplement_outliers(other, [other[6].key], self.schema, rng=random.Random(3))
        self.assertEqual(
            [record.corrected_value for record in first.records],
            [record.corrected_value for record in second.records],
        )

    def test_window_stops_at_the_first_snapshot(self):
        snapshots = chained_series([0.1, 5.0, 0.3])
        result = correct_supplement_outliers(snapshots, [snapshots[1].key], self.schema, rng=random.Random(1))
        self.assertEqual(snapshots[0].rows[0].values[3], 0.1)
        rebuilt = {record.source_file for record in result.records if record.rule == RULE_CUMULATIVE_REBUILT}
        self.assertEqual(rebuilt, {snapshots[1].file_identifier})
        self.assertLessEqual(abs(snapshots[1].rows[0].values[3] - 0.1), 0.5)
        self.assertTrue(validate_cumulative_logic(snapshots, self.schema).is_valid)


class ValidationTests(unittest.TestCase):
    def test_mismatch_is_grouped_by_point(self):
        snapshots = x_series([10.0, 11.0, 12.0], [0.0, 1.0, 3.0])
        report = validate_cumulative_logic(snapshots, AppConfig().slot_schema(), tolerance=0.01)
        self.assertFalse(report.is_valid)
        self.assertEqual(report.invalid_items, 1)
        self.assertEqual(report.invalid_groups[0].name, "P01")
        self.assertEqual(report.invalid_groups[0].items[0].timestamp, datetime(2025, 4, 18, 16))
        self.assertEqual(report.total_files, 3)

    def test_tolerance_absorbs_rounding(self):
        snapshots = x_series([10.0, 11.0, 12.005], [0.0, 1.0, 1.0])
        report = validate_cumulative_logic(snapshots, AppConfig().slot_schema(), tolerance=0.01)
        self.assertTrue(report.is_valid)


class IntegrityTests(unittest.TestCase):
    def test_infinite_value_raises(self):
        snapshots = x_series([10.0, math.inf], [0.0, 1.0])
        with self.assertRaises(DataIntegrityError) as caught:
            ensure_finite(snapshots)
        self.assertEqual(caught.exception.context["slot"], 3)

    def test_remaining_blank_raises(self):
        snapshots = x_series([10.0, 11.0], [0.0, 1.0])
        snapshots[1].rows[0].values[2] = None
        with self.assertRaises(DataIntegrityError):
            ensure_finite(snapshots)

    def test_clean_snapshots_pass(self):
        ensure_finite(x_series([10.0, 11.0], [0.0, 1.0]))


if __name__ == "__main__":
    unittest.main()

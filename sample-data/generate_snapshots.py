#!/usr/bin/env python3
"""
Generates sample-data/snapshots/ with a small monitoring project that has the
gaps snapshot-doctor is built to repair.

Run from the repo root:
    python sample-data/generate_snapshots.py

Problems baked in:
  - 2025.4.19 has no 08 o'clock file (a supplement is synthesized for it)
  - 2025.4.18-8 is named without hour padding, the others are padded
  - Point P03 has blank change cells on 2025.4.18-16
  - Point P05 is blank in every slot on 2025.4.19-00
  - Point P02 carries a cumulative jump on 2025.4.19-16 that does not match its change
  - A workbook with a malformed name (2025-4-20-8demo.xlsx) that is skipped
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Sequence

import openpyxl

OUTPUT_DIR = Path(__file__).parent / "snapshots"
HEADERS = ["序号", "测点", "里程", "本期X", "本期Y", "本期Z", "累计X", "累计Y", "累计Z"]
FIRST_ROW = 5


def build_snapshot_workbook(
    path: Path,
    rows: Sequence[tuple[str, Sequence[float | None]]],
    *,
    title: str = "监测数据",
    first_row: int = FIRST_ROW,
) -> Path:
    """Write one snapshot workbook: names in column B, slot values from column D."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Sheet1"
    ws["A1"] = title
    ws["A2"] = ""
    for column, header in enumerate(HEADERS, start=1):
        ws.cell(row=4, column=column, value=header)
    for offset, (name, values) in enumerate(rows):
        row_number = first_row + offset
        ws.cell(row=row_number, column=1, value=offset + 1)
        ws.cell(row=row_number, column=2, value=name)
        for index, value in enumerate(values):
            ws.cell(row=row_number, column=4 + index, value=value)
    path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(path)
    return path


def sample_series() -> dict[str, list[tuple[str, list[float | None]]]]:
    """Per file name, the rows of a five-point project over two days."""
    timeline = [
        ("2025.4.18-00demo.xlsx", date(2025, 4, 18), 0),
        ("2025.4.18-8demo.xlsx", date(2025, 4, 18), 8),
        ("2025.4.18-16demo.xlsx", date(2025, 4, 18), 16),
        ("2025.4.19-00demo.xlsx", date(2025, 4, 19), 0),
        ("2025.4.19-16demo.xlsx", date(2025, 4, 19), 16),
    ]
    points = ["P01", "P02", "P03", "P04", "P05"]
    cumulative = {name: [0.0, 0.0, 0.0] for name in points}
    files: dict[str, list[tuple[str, list[float | None]]]] = {}
    for step, (file_name, _, _) in enumerate(timeline):
        rows = []
        for number, name in enumerate(points, start=1):
            change = [round(0.1 * number, 4), round(-0.05 * number, 4), round(0.02 * (step + 1), 4)]
            cumulative[name] = [round(total + delta, 4) for total, delta in zip(cumulative[name], change)]
            values: list[float | None] = [*change, *cumulative[name]]
            rows.append((name, values))
        files[file_name] = rows

    p03 = files["2025.4.18-16demo.xlsx"][2][1]
    p03[0] = p03[1] = p03[2] = None
    files["2025.4.19-00demo.xlsx"][4] = ("P05", [None] * 6)
    p02 = files["2025.4.19-16demo.xlsx"][1][1]
    p02[3] = p02[3] + 25.0
    return files


def build_sample_directory(directory: Path) -> list[Path]:
    written = [
        build_snapshot_workbook(directory / file_name, rows)
        for file_name, rows in sample_series().items()
    ]
    written.append(build_snapshot_workbook(directory / "2025-4-20-8demo.xlsx", [("P01", [0.1] * 6)]))
    return written


if __name__ == "__main__":
    for path in build_sample_directory(OUTPUT_DIR):
        print(f"Created: {path}")

"""Workbook reading and writing for snapshot files.

Only a fixed region of the first worksheet is touched: point names in one
column and slot values in consecutive columns to its right. Everything else in
a workbook (titles, formatting, other sheets) is carried through untouched by
loading the source file as a template.
"""

from __future__ import annotations

import os
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

import openpyxl
import pandas as pd
import structlog
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from snapshot_doctor.config import AppConfig, LayoutConfig
from snapshot_doctor.errors import SnapshotReadError, SnapshotWriteError, UserCancelledError
from snapshot_doctor.models import MeasurementRow, Snapshot
from snapshot_doctor.naming import ParsedName, generate_file_name, parse_file_name

log = structlog.get_logger()

MODERN_WORKBOOK_FORMATS = {".xlsx", ".xlsm"}
LEGACY_WORKBOOK_FORMATS = {".xls"}
SUPPORTED_FORMATS = MODERN_WORKBOOK_FORMATS | LEGACY_WORKBOOK_FORMATS
OLE_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

ConfirmCallback = Callable[[str], bool]


def coerce_number(value: Any) -> float | None:
    """Numeric cell value, or ``None`` for blanks and anything that is not a number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return None if number != number else number
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        return None if number != number else number
    return None


def coerce_name(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


@dataclass
class ScanResult:
    parsed: list[tuple[Path, ParsedName]] = field(default_factory=list)
    skipped: list[dict[str, str]] = field(default_factory=list)


@dataclass
class LoadResult:
    snapshots: list[Snapshot] = field(default_factory=list)
    skipped: list[dict[str, str]] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)
    blocked: list[ParsedName] = field(default_factory=list)

    @property
    def parsed_names(self) -> list[ParsedName]:
        loaded = [
            ParsedName(
                date=snapshot.date,
                hour=snapshot.hour,
                project=snapshot.project,
                suffix=snapshot.suffix,
                original_name=snapshot.path.name if snapshot.path else snapshot.file_identifier,
            )
            for snapshot in self.snapshots
        ]
        return loaded + list(self.blocked)


def scan_directory(directory: Path, hours: Iterable[int] | None = None) -> ScanResult:
    """Parse the names of every spreadsheet directly inside ``directory``.

    A slot named twice (``-8`` beside ``-08``, or ``.xls`` beside ``.xlsx``)
    keeps the first name in sorted order; the rest are skipped.
    """
    if not directory.exists():
        raise SnapshotReadError(f"Directory not found: {directory}", category="FileNotFound", file_path=directory)
    if not directory.is_dir():
        raise SnapshotReadError(f"Not a directory: {directory}", category="FileNotFound", file_path=directory)
    result = ScanResult()
    hour_set = set(hours) if hours is not None else None
    kept: dict[tuple, str] = {}
    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.name.startswith(("~$", ".")):
            continue
        if path.suffix.lower() not in SUPPORTED_FORMATS:
            continue
        parsed = parse_file_name(path.name)
        if parsed is None:
            result.skipped.append({"file": path.name, "reason": "file name does not match <YYYY.M.D>-<HH><project>"})
            log.warning("snapshot_name_unparsed", file=path.name)
            continue
        if hour_set is not None and parsed.hour not in hour_set:
            result.skipped.append({"file": path.name, "reason": f"hour {parsed.hour} is not an observation hour"})
            log.warning("snapshot_hour_not_canonical", file=path.name, hour=parsed.hour)
            continue
        slot = (parsed.date, parsed.hour, parsed.project)
        if slot in kept:
            result.skipped.append({"file": path.name, "reason": f"same date, hour and project as {kept[slot]}"})
            log.warning("snapshot_duplicate_slot", file=path.name, kept=kept[slot])
            continue
        kept[slot] = path.name
        result.parsed.append((path, parsed))
    return result


def _check_readable(path: Path) -> None:
    if not path.exists():
        raise SnapshotReadError(f"File not found: {path}", category="FileNotFound", file_path=path)
    try:
        with path.open("rb") as handle:
            head = handle.read(8)
    except PermissionError as exc:
        raise SnapshotReadError(
            f"Could not read workbook (access denied or locked): {path.name}",
            category="AccessDenied",
            file_path=path,
        ) from exc
    if path.suffix.lower() in MODERN_WORKBOOK_FORMATS and head == OLE_SIGNATURE:
        raise SnapshotReadError(
            f"Could not read workbook: {path.name} is encrypted or password-protected",
            category="InvalidWorkbook",
            file_path=path,
        )


def _read_grid_openpyxl(path: Path, layout: LayoutConfig, width: int) -> list[tuple[int, Any, list[Any]]]:
    try:
        wb = openpyxl.load_workbook(path, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise SnapshotReadError(
            f"Could not read workbook: {exc}",
            category="InvalidWorkbook",
            file_path=path,
        ) from exc
    try:
        ws = wb.worksheets[0]
        min_col = min(layout.name_column, layout.first_value_column)
        max_col = max(layout.name_column, layout.first_value_column + width - 1)
        grid = []
        for row_number, cells in enumerate(
            ws.iter_rows(
                min_row=layout.first_row,
                max_row=layout.last_row,
                min_col=min_col,
                max_col=max_col,
                values_only=True,
            ),
            start=layout.first_row,
        ):
            cells = list(cells) + [None] * (max_col - min_col + 1 - len(cells))
            name = cells[layout.name_column - min_col]
            start = layout.first_value_column - min_col
            grid.append((row_number, name, cells[start : start + width]))
        return grid
    finally:
        wb.close()


def _read_grid_legacy(path: Path, layout: LayoutConfig, width: int) -> list[tuple[int, Any, list[Any]]]:
    try:
        import xlrd  # noqa: F401
    except ImportError as exc:
        raise SnapshotReadError(
            ".xls files require xlrd. Run: pip install 'snapshot-doctor[excel-legacy]'",
            category="MissingDependency",
            file_path=path,
        ) from exc
    try:
        frame = pd.read_excel(path, sheet_name=0, header=None, dtype=object, engine="xlrd")
    except Exception as exc:
        raise SnapshotReadError(f"Could not read workbook: {exc}", category="InvalidWorkbook", file_path=path) from exc
    grid = []
    for row_number in range(layout.first_row, layout.last_row + 1):
        offset = row_number - 1
        if offset >= len(frame.index):
            grid.append((row_number, None, [None] * width))
            continue
        record = frame.iloc[offset].tolist()

        def cell(column: int) -> Any:
            value = record[column - 1] if column - 1 < len(record) else None
            return None if pd.isna(value) else value

        grid.append(
            (
                row_number,
                cell(layout.name_column),
                [cell(layout.first_value_column + index) for index in range(width)],
            )
        )
    return grid


def read_snapshot(
    path: Path,
    parsed: ParsedName | None = None,
    *,
    config: AppConfig | None = None,
    confirm: ConfirmCallback | None = None,
) -> Snapshot:
    """Load one snapshot file into memory.

    Rows with an empty name cell are skipped; value cells that are empty or
    not numeric become blanks.
    """
    config = config or AppConfig()
    layout = config.layout
    width = len(config.schema.slots)
    parsed = parsed or parse_file_name(path.name)
    if parsed is None:
        raise SnapshotReadError(f"Not a snapshot file name: {path.name}", category="InvalidName", file_path=path)
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_FORMATS:
        raise SnapshotReadError(
            f"Unsupported file type '{suffix or '[missing extension]'}'. Supported: {', '.join(sorted(SUPPORTED_FORMATS))}",
            category="UnsupportedFormat",
            file_path=path,
        )
    _check_readable(path)
    if suffix in LEGACY_WORKBOOK_FORMATS:
        grid = _read_grid_legacy(path, layout, width)
    else:
        grid = _read_grid_openpyxl(path, layout, width)

    rows: list[MeasurementRow] = []
    for row_number, raw_name, raw_values in grid:
        name = coerce_name(raw_name)
        if not name:
            continue
        rows.append(MeasurementRow(name=name, position=row_number, values=[coerce_number(value) for value in raw_values]))

    if len(rows) != layout.expected_rows:
        message = f"{path.name}: found {len(rows)} named rows, expected {layout.expected_rows}"
        if layout.strict_row_count and confirm is not None:
            if not confirm(message + ". Continue processing?"):
                raise UserCancelledError(
                    f"Processing cancelled at {path.name}",
                    file_path=path,
                    context={"rows": len(rows), "expected_rows": layout.expected_rows},
                )
        else:
            log.info("snapshot_row_count_mismatch", file=path.name, rows=len(rows), expected=layout.expected_rows)

    return Snapshot(
        date=parsed.date,
        hour=parsed.hour,
        project=parsed.project,
        rows=rows,
        path=path,
        suffix=suffix,
    )


def load_directory(
    directory: Path,
    *,
    config: AppConfig | None = None,
    confirm: ConfirmCallback | None = None,
) -> LoadResult:
    """Read every snapshot in a directory. Unreadable files are reported, not fatal."""
    config = config or AppConfig()
    scan = scan_directory(directory, config.hours)
    result = LoadResult(skipped=list(scan.skipped))
    for path, parsed in scan.parsed:
        try:
            result.snapshots.append(read_snapshot(path, parsed, config=config, confirm=confirm))
        except UserCancelledError:
            raise
        except SnapshotReadError as exc:
            log.warning("snapshot_read_failed", file=path.name, category=exc.category, error=str(exc))
            result.failed.append(exc.to_dict())
            result.blocked.append(parsed)
    return result


def output_name_for(snapshot: Snapshot) -> str:
    suffix = snapshot.suffix if snapshot.suffix in MODERN_WORKBOOK_FORMATS else ".xlsx"
    return generate_file_name(snapshot.date, snapshot.hour, snapshot.project, suffix)


def _save_atomically(wb, output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{output_path.stem}-", suffix=output_path.suffix, dir=output_path.parent)
    os.close(fd)
    try:
        wb.save(temp_name)
        os.replace(temp_name, output_path)
    except OSError as exc:
        if os.path.exists(temp_name):
            os.unlink(temp_name)
        raise SnapshotWriteError(f"Could not write workbook: {exc}", file_path=output_path) from exc


def _template_workbook(snapshot: Snapshot):
    template = snapshot.template_path
    if template is None or template.suffix.lower() not in MODERN_WORKBOOK_FORMATS or not template.exists():
        wb = openpyxl.Workbook()
        return wb, wb.active
    try:
        wb = openpyxl.load_workbook(template, keep_vba=template.suffix.lower() == ".xlsm")
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise SnapshotWriteError(f"Could not open template workbook: {exc}", file_path=template) from exc
    return wb, wb.worksheets[0]


def write_snapshot(
    snapshot: Snapshot,
    output_path: Path,
    *,
    config: AppConfig | None = None,
    previous_time: str | None = None,
    decimals: int | None = None,
) -> Path:
    config = config or AppConfig()
    layout = config.layout
    wb, ws = _template_workbook(snapshot)
    for row in snapshot.rows:
        ws.cell(row=row.position, column=layout.name_column, value=row.name)
        for index, value in enumerate(row.values):
            if value is not None and decimals is not None:
                value = round(value, decimals)
            ws.cell(row=row.position, column=layout.first_value_column + index, value=value)
    if layout.observation_cell:
        ws[layout.observation_cell] = layout.observation_template.format(
            current=snapshot.observation_time,
            previous=previous_time or snapshot.observation_time,
        )
    _save_atomically(wb, output_path)
    return output_path


def _header_font() -> Font:
    return Font(bold=True, color="FFFFFF")


def _header_fill(hex_color: str) -> PatternFill:
    return PatternFill("solid", fgColor=hex_color)


def _style_sheet(ws, header_color: str, max_width: int = 60) -> None:
    """Bold coloured header, frozen first row, widths sized to the content."""
    for cell in ws[1]:
        cell.font = _header_font()
        cell.fill = _header_fill(header_color)
        cell.alignment = Alignment(horizontal="center", vertical="center")
    ws.freeze_panes = "A2"
    for column_cells in ws.iter_cols(min_row=1, max_row=min(ws.max_row, 300)):
        width = max((len(str(cell.value)) for cell in column_cells if cell.value is not None), default=8)
        ws.column_dimensions[get_column_letter(column_cells[0].column)].width = max(10, min(max_width, width + 2))


SHEET_COLORS = ("1565C0", "4CAF50", "E53935", "8E24AA")


def write_audit_workbook(path: Path, sheets: dict[str, pd.DataFrame]) -> Path:
    """Write run audit tables (corrections, supplements, quality) as styled sheets."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for name, frame in sheets.items():
            frame.to_excel(writer, sheet_name=name[:31], index=False)
        for position, name in enumerate(sheets):
            _style_sheet(writer.book[name[:31]], SHEET_COLORS[position % len(SHEET_COLORS)])
    return path


def records_frame(records: Sequence[Any], columns: Sequence[str]) -> pd.DataFrame:
    return pd.DataFrame([record.to_dict() for record in records], columns=list(columns))

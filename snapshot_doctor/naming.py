"""Snapshot file naming: ``<YYYY.M.D>-<HH><project><ext>``.

The hour may arrive zero-padded or not (``-8`` and ``-08`` name the same
slot). Generated names always pad the hour to two digits.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Iterable

FILE_NAME_PATTERN = re.compile(r"^(\d{4})\.(\d{1,2})\.(\d{1,2})-(\d{1,2})(.+)$")
SPREADSHEET_SUFFIXES = (".xlsx", ".xlsm", ".xls")


@dataclass(frozen=True)
class ParsedName:
    date: date
    hour: int
    project: str
    suffix: str
    original_name: str

    @property
    def file_identifier(self) -> str:
        return f"{format_date(self.date)}-{self.hour:02d}{self.project}"

    @property
    def standard_name(self) -> str:
        return generate_file_name(self.date, self.hour, self.project, self.suffix)


def format_date(value: date) -> str:
    return f"{value.year}.{value.month}.{value.day}"


def split_suffix(text: str) -> tuple[str, str]:
    lowered = text.lower()
    for suffix in SPREADSHEET_SUFFIXES:
        if lowered.endswith(suffix):
            return text[: -len(suffix)], lowered[-len(suffix):]
    return text, ""


def parse_file_name(name: str | Path, hours: Iterable[int] | None = None) -> ParsedName | None:
    """Parse a snapshot file name, returning ``None`` when it does not follow the convention.

    When ``hours`` is given the hour must also be one of the canonical
    observation hours.
    """
    base = Path(name).name if isinstance(name, Path) else str(name)
    if not base or base != base.strip():
        return None
    match = FILE_NAME_PATTERN.match(base)
    if not match:
        return None
    year, month, day, hour_text, rest = match.groups()
    try:
        parsed_date = date(int(year), int(month), int(day))
    except ValueError:
        return None
    hour = int(hour_text)
    if not 0 <= hour <= 23:
        return None
    if hours is not None and hour not in set(hours):
        return None
    project, suffix = split_suffix(rest)
    if not project.strip():
        return None
    return ParsedName(date=parsed_date, hour=hour, project=project, suffix=suffix, original_name=base)


def generate_file_name(value: date, hour: int, project: str, suffix: str = "") -> str:
    if not 0 <= hour <= 23:
        raise ValueError(f"Hour must be between 0 and 23, got {hour}")
    if not project:
        raise ValueError("Project name must not be empty")
    return f"{format_date(value)}-{hour:02d}{project}{suffix}"


def format_observation_time(value: date, hour: int) -> str:
    return f"{value.year}-{value.month}-{value.day} {hour:02d}:00"

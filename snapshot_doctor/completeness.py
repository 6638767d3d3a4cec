from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Sequence

from snapshot_doctor.config import DEFAULT_HOURS


@dataclass
class DateCompleteness:
    date: date
    existing_hours: list[int]
    missing_hours: list[int]

    @property
    def is_complete(self) -> bool:
        return not self.missing_hours

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "existing_hours": list(self.existing_hours),
            "missing_hours": list(self.missing_hours),
            "is_complete": self.is_complete,
        }


@dataclass
class CompletenessResult:
    dates: list[DateCompleteness] = field(default_factory=list)

    @property
    def all_complete(self) -> bool:
        return all(item.is_complete for item in self.dates)

    @property
    def incomplete_dates(self) -> list[DateCompleteness]:
        return [item for item in self.dates if not item.is_complete]

    @property
    def missing_slot_count(self) -> int:
        return sum(len(item.missing_hours) for item in self.dates)

    def missing_slots(self) -> list[tuple[date, int]]:
        return [(item.date, hour) for item in self.dates for hour in item.missing_hours]

    def to_dict(self) -> dict[str, Any]:
        return {
            "all_complete": self.all_complete,
            "missing_slot_count": self.missing_slot_count,
            "incomplete_dates": [item.to_dict() for item in self.incomplete_dates],
        }


def check_completeness(items: Iterable[Any], hours: Sequence[int] = DEFAULT_HOURS) -> CompletenessResult:
    """Report which canonical hours are absent on every date that has at least one snapshot.

    ``items`` only needs ``date`` and ``hour`` attributes, so parsed names of
    unreadable files count as present too. An empty input is complete.
    """
    canonical = sorted(set(hours))
    existing: dict[date, set[int]] = defaultdict(set)
    for item in items:
        existing[item.date].add(item.hour)
    result = CompletenessResult()
    for day in sorted(existing):
        present = sorted(existing[day])
        missing = [hour for hour in canonical if hour not in existing[day]]
        result.dates.append(DateCompleteness(date=day, existing_hours=present, missing_hours=missing))
    return result

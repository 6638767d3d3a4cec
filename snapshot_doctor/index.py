from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Iterable, Iterator

from snapshot_doctor.models import Snapshot, sort_snapshots


class SnapshotIndex:
    """Chronological view over a set of snapshots. Holds references only."""

    def __init__(self, snapshots: Iterable[Snapshot]) -> None:
        self._sorted = sort_snapshots(snapshots)
        self._positions = {id(snapshot): index for index, snapshot in enumerate(self._sorted)}
        self._by_date: dict[date, list[Snapshot]] = defaultdict(list)
        self._by_slot: dict[tuple[date, int], Snapshot] = {}
        for snapshot in self._sorted:
            self._by_date[snapshot.date].append(snapshot)
            self._by_slot.setdefault((snapshot.date, snapshot.hour), snapshot)

    def __len__(self) -> int:
        return len(self._sorted)

    def __iter__(self) -> Iterator[Snapshot]:
        return iter(self._sorted)

    def sorted(self) -> list[Snapshot]:
        return list(self._sorted)

    def dates(self) -> list[date]:
        return sorted(self._by_date)

    def by_date(self) -> dict[date, list[Snapshot]]:
        return {key: list(self._by_date[key]) for key in self.dates()}

    def hours_on(self, value: date) -> list[int]:
        return sorted({snapshot.hour for snapshot in self._by_date.get(value, [])})

    def find(self, value: date, hour: int) -> Snapshot | None:
        return self._by_slot.get((value, hour))

    def position_of(self, snapshot: Snapshot) -> int:
        return self._positions[id(snapshot)]

    def previous(self, snapshot: Snapshot) -> Snapshot | None:
        position = self.position_of(snapshot)
        return self._sorted[position - 1] if position > 0 else None

    def point_names(self, order: str = "name") -> list[str]:
        """Every point name seen in any snapshot, ordered by name or by first sheet row."""
        first_position: dict[str, int] = {}
        for snapshot in self._sorted:
            for row in snapshot.rows:
                if row.name not in first_position or row.position < first_position[row.name]:
                    first_position[row.name] = row.position
        if order == "position":
            return sorted(first_position, key=lambda name: (first_position[name], name))
        return sorted(first_position)

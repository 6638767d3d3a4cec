from __future__ import annotations

from collections import defaultdict
from typing import Iterable

from snapshot_doctor.models import Snapshot


class ValueCache:
    """Observed values per (point, slot), built once from the original snapshots of a run.

    Imputed values never enter the cache, so the global-history average does
    not drift while the scan fills gaps.
    """

    def __init__(self) -> None:
        self._values: dict[tuple[str, int], list[float]] = defaultdict(list)
        self._means: dict[tuple[str, int], float] = {}
        self.hits = 0
        self.misses = 0

    @classmethod
    def build(cls, snapshots: Iterable[Snapshot]) -> "ValueCache":
        cache = cls()
        for snapshot in snapshots:
            if snapshot.is_supplement:
                continue
            for row in snapshot.rows:
                for index, value in enumerate(row.values):
                    if value is not None:
                        cache.observe(row.name, index, value)
        return cache

    def observe(self, name: str, slot: int, value: float) -> None:
        self._values[(name, slot)].append(value)
        self._means.pop((name, slot), None)

    def mean(self, name: str, slot: int) -> float | None:
        key = (name, slot)
        if key in self._means:
            self.hits += 1
            return self._means[key]
        values = self._values.get(key)
        if not values:
            self.misses += 1
            return None
        self.misses += 1
        self._means[key] = sum(values) / len(values)
        return self._means[key]

    def stats(self) -> dict[str, int]:
        return {"keys": len(self._values), "hits": self.hits, "misses": self.misses}

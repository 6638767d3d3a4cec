from __future__ import annotations

import math
import random
from typing import Callable

from snapshot_doctor.models import AdjustmentParameters, Snapshot

RngFactory = Callable[[int], random.Random]


def default_rng_factory(seed: int) -> random.Random:
    return random.Random(seed)


def jitter_delta(value: float, factor: float, params: AdjustmentParameters) -> float:
    delta = value * params.adjustment_range * factor
    if abs(delta) < params.minimum_adjustment:
        sign = -1.0 if (delta < 0 or (delta == 0 and factor < 0)) else 1.0
        delta = math.copysign(params.minimum_adjustment, sign)
    return delta


def apply_jitter(
    snapshot: Snapshot,
    params: AdjustmentParameters | None = None,
    rng_factory: RngFactory = default_rng_factory,
) -> int:
    """Perturb every non-blank slot of a supplement snapshot in place.

    One shared draw per row keeps the slots of a point moving together when
    correlation is maintained. A draw is taken for every slot, blank or not,
    so the sequence depends only on the row layout and the seed.
    """
    params = params or snapshot.adjustment or AdjustmentParameters()
    rng = rng_factory(params.random_seed)
    weight = params.correlation_weight
    changed = 0
    for row in sorted(snapshot.rows, key=lambda item: (item.position, item.name)):
        shared = rng.uniform(-1.0, 1.0)
        for index, value in enumerate(row.values):
            own = rng.uniform(-1.0, 1.0)
            if value is None:
                continue
            factor = weight * shared + (1 - weight) * own if params.maintain_correlation else own
            row.values[index] = value + jitter_delta(value, factor, params)
            changed += 1
    return changed

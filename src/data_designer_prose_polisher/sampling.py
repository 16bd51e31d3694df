"""Random selection helpers.

Every function takes an optional ``random.Random`` so callers (and tests)
can seed the draw.
"""

from __future__ import annotations

import random
from typing import Protocol, Sequence, TypeVar


class _Weighted(Protocol):
    weight: int


T = TypeVar("T")
W = TypeVar("W", bound=_Weighted)


def _weight_of(item: _Weighted) -> float:
    try:
        weight = float(item.weight)
    except (TypeError, ValueError):
        return 1.0
    return weight if weight > 0 else 1.0


def weighted_choice(options: Sequence[W], rng: random.Random | None = None) -> W | None:
    """Cumulative-weight draw over ``options`` in order.

    Draws ``r`` uniformly in ``[0, total)`` and subtracts each weight in turn;
    the first option that brings ``r`` to ``<= 0`` wins. Falls back to the
    first option if floating point leaves ``r`` positive after the last one.
    """
    if not options:
        return None
    rng = rng or random.Random()
    total = sum(_weight_of(o) for o in options)
    remaining = rng.random() * total
    for option in options:
        remaining -= _weight_of(option)
        if remaining <= 0:
            return option
    return options[0]


def uniform_choice(options: Sequence[T], rng: random.Random | None = None) -> T:
    rng = rng or random.Random()
    return options[rng.randrange(len(options))]

"""
Allocation Planner
==================

Splits a capital amount across the fleet with per-account jitter so the
funding pattern is not uniform, while keeping the total exact.

The jitter comes from a fixed-seed linear congruential generator: the same
(total, count, seed) always yields the same plan, so dry runs and real runs
agree.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterator, List, Tuple, Union

from .utils import PlanningError, to_minor_units

DEFAULT_SEED = 42
MIN_MULTIPLIER = 0.5
MAX_MULTIPLIER = 2.0

_LCG_MULTIPLIER = 1664525
_LCG_INCREMENT = 1013904223
_LCG_MASK = 0x7FFFFFFF


@dataclass(frozen=True)
class AllocationPlan:
    """Per-account minor-unit amounts; ``sum(amounts) == target`` exactly."""
    amounts: Tuple[int, ...]
    target: int
    factors: Tuple[float, ...]
    seed: int

    def __len__(self) -> int:
        return len(self.amounts)

    def __getitem__(self, index: int) -> int:
        return self.amounts[index]

    def __iter__(self) -> Iterator[int]:
        return iter(self.amounts)

    @property
    def total(self) -> int:
        return sum(self.amounts)

    @property
    def smallest(self) -> int:
        return min(self.amounts)

    @property
    def largest(self) -> int:
        return max(self.amounts)


def lcg_stream(seed: int) -> Iterator[float]:
    """Reproducible uniform values in [0, 1]."""
    state = seed
    while True:
        state = (state * _LCG_MULTIPLIER + _LCG_INCREMENT) & _LCG_MASK
        yield state / _LCG_MASK


def jitter_factors(count: int, seed: int = DEFAULT_SEED) -> List[float]:
    """``count`` multipliers in [MIN_MULTIPLIER, MAX_MULTIPLIER]."""
    stream = lcg_stream(seed)
    span = MAX_MULTIPLIER - MIN_MULTIPLIER
    return [MIN_MULTIPLIER + next(stream) * span for _ in range(count)]


def plan_allocation(
    total: Union[int, str, Decimal],
    count: int,
    decimals: int,
    seed: int = DEFAULT_SEED,
) -> AllocationPlan:
    """
    Split ``total`` (human units) into ``count`` minor-unit amounts.

    1. Draw jitter factors from the seeded LCG.
    2. Scale the jittered shares so they sum to the target.
    3. Floor each share to minor units.
    4. Add the rounding residual to the largest share.

    Raises:
        PlanningError: if count or total is not positive, or if any account
            would receive nothing.
    """
    if count <= 0:
        raise PlanningError(f"Cannot plan for {count} accounts")

    target = to_minor_units(total, decimals)
    if target <= 0:
        raise PlanningError(f"Total {total} is below one minor unit")

    factors = jitter_factors(count, seed)
    factor_sum = sum(factors)
    amounts = [int(target * f / factor_sum) for f in factors]

    residual = target - sum(amounts)
    largest = amounts.index(max(amounts))
    amounts[largest] += residual

    if min(amounts) <= 0:
        raise PlanningError(
            f"Total {total} is too small to give each of {count} accounts a positive amount"
        )

    return AllocationPlan(
        amounts=tuple(amounts),
        target=target,
        factors=tuple(factors),
        seed=seed,
    )

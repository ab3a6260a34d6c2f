"""
Allocation planner tests.
"""

from decimal import Decimal

import pytest

from launch_sniper.planner import (
    MAX_MULTIPLIER,
    MIN_MULTIPLIER,
    jitter_factors,
    lcg_stream,
    plan_allocation,
)
from launch_sniper.utils import PlanningError


class TestJitter:
    def test_lcg_first_states(self):
        stream = lcg_stream(42)
        expected = [1083814273, 378494188, 331920219, 955863294]
        for state in expected:
            assert next(stream) == state / 0x7FFFFFFF

    def test_factors_in_bounds(self):
        for factor in jitter_factors(500, seed=7):
            assert MIN_MULTIPLIER <= factor <= MAX_MULTIPLIER

    def test_deterministic(self):
        assert jitter_factors(20) == jitter_factors(20)
        assert jitter_factors(20, seed=1) != jitter_factors(20, seed=2)


class TestPlanAllocation:
    def test_hundred_over_four(self):
        """100 USDC over 4 wallets: every share between total/(2n) and 2*total/n."""
        plan = plan_allocation(100, 4, 6)

        assert len(plan) == 4
        assert plan.total == 100_000_000
        for amount in plan:
            assert 12_500_000 <= amount <= 50_000_000

    def test_known_split(self):
        plan = plan_allocation(100, 4, 6)
        # Multipliers ~1.257, 0.764, 0.732, 1.168
        assert plan[0] == plan.largest
        assert plan[2] == plan.smallest
        assert 32_000_000 < plan[0] < 32_100_000

    @pytest.mark.parametrize("total,count", [
        ("100", 20),
        ("1", 7),
        ("12345.678901", 13),
        (Decimal("0.000020"), 3),
    ])
    def test_sum_exact(self, total, count):
        plan = plan_allocation(total, count, 6)
        assert sum(plan.amounts) == plan.target
        assert all(a > 0 for a in plan)

    def test_target_floors(self):
        plan = plan_allocation("1.0000009", 2, 6)
        assert plan.target == 1_000_000

    def test_same_inputs_same_plan(self):
        assert plan_allocation(100, 20, 6) == plan_allocation(100, 20, 6)

    def test_seed_changes_plan(self):
        assert plan_allocation(100, 5, 6, seed=1).amounts != plan_allocation(100, 5, 6, seed=2).amounts

    def test_single_account_gets_everything(self):
        plan = plan_allocation(100, 1, 6)
        assert plan.amounts == (100_000_000,)

    @pytest.mark.parametrize("count", [0, -3])
    def test_non_positive_count(self, count):
        with pytest.raises(PlanningError):
            plan_allocation(100, count, 6)

    @pytest.mark.parametrize("total", [0, -5, "0.0000001"])
    def test_non_positive_total(self, total):
        with pytest.raises(PlanningError):
            plan_allocation(total, 4, 6)

    def test_too_small_for_fleet(self):
        """3 minor units cannot give 20 accounts something each."""
        with pytest.raises(PlanningError):
            plan_allocation("0.000003", 20, 6)

"""
test_planner.py - Unit tests for the Distribution Planner

Tests:
- Equal policy: 6-place floor with the remainder on the last holder
- Proportional policy: largest remainder method
- Minimum holder balance
- Degenerate inputs and omitted entries
- partition() and summarize()
"""

import pytest
from decimal import Decimal

from tributary import DistributionPolicy, ValidationError, plan, partition, summarize
from .fake_client import make_holders


EQUAL = DistributionPolicy.EQUAL
PROPORTIONAL = DistributionPolicy.PROPORTIONAL


class TestEqualPolicy:

    def test_three_holders_ten_units(self):
        holders = make_holders(("A", 5), ("B", 3), ("C", 1))
        allocations = plan(holders, Decimal("10"), EQUAL)
        assert allocations == {
            "A": Decimal("3.333333"),
            "B": Decimal("3.333333"),
            "C": Decimal("3.333334"),
        }
        assert sum(allocations.values()) == Decimal("10")

    def test_last_in_plan_order_gets_remainder(self):
        holders = make_holders(("C", 1), ("B", 3), ("A", 5))
        allocations = plan(holders, Decimal("10"), EQUAL)
        assert list(allocations) == ["C", "B", "A"]
        assert allocations["A"] == Decimal("3.333334")

    def test_coarse_asset_floors_to_its_decimals(self):
        allocations = plan(make_holders(("A", 1), ("B", 1), ("C", 1)), Decimal("10"), EQUAL, decimals=2)
        assert list(allocations.values()) == [Decimal("3.33"), Decimal("3.33"), Decimal("3.34")]

    def test_ignores_balances(self):
        allocations = plan(make_holders(("A", 1000), ("B", 1)), Decimal("4"), EQUAL)
        assert allocations == {"A": Decimal("2"), "B": Decimal("2")}

    def test_single_holder_gets_everything(self):
        assert plan(make_holders(("A", 1)), Decimal("7.5"), EQUAL) == {"A": Decimal("7.5")}

    def test_policy_as_string(self):
        assert plan(make_holders(("A", 1), ("B", 1)), Decimal("2"), "equal") == {
            "A": Decimal("1"), "B": Decimal("1"),
        }


class TestProportionalPolicy:

    def test_largest_remainder_whole_units(self):
        holders = make_holders(("A", 100), ("B", 100), ("C", 200))
        allocations = plan(holders, Decimal("7"), PROPORTIONAL, decimals=0)
        assert allocations == {"A": Decimal("2"), "B": Decimal("2"), "C": Decimal("3")}
        assert sum(allocations.values()) == Decimal("7")

    def test_exact_shares_at_default_precision(self):
        holders = make_holders(("A", 100), ("B", 100), ("C", 200))
        allocations = plan(holders, Decimal("7"), PROPORTIONAL)
        assert allocations == {"A": Decimal("1.75"), "B": Decimal("1.75"), "C": Decimal("3.5")}

    def test_thirds_give_leftover_to_largest_remainder(self):
        allocations = plan(make_holders(("A", 1), ("B", 2)), Decimal("1"), PROPORTIONAL, decimals=6)
        assert allocations == {"A": Decimal("0.333333"), "B": Decimal("0.666667")}

    def test_tied_remainders_keep_plan_order(self):
        holders = make_holders(("A", 1), ("B", 1), ("C", 1))
        allocations = plan(holders, Decimal("2"), PROPORTIONAL, decimals=0)
        assert allocations == {"A": Decimal("1"), "B": Decimal("1")}

    def test_zero_balance_holder_omitted(self):
        allocations = plan(make_holders(("A", 0), ("B", 10)), Decimal("1"))
        assert allocations == {"B": Decimal("1")}

    def test_is_default_policy(self):
        holders = make_holders(("A", 1), ("B", 3))
        assert plan(holders, Decimal("4")) == {"A": Decimal("1"), "B": Decimal("3")}

    def test_duplicate_addresses_are_merged(self):
        holders = make_holders(("A", 10), ("B", 20), ("A", 10))
        allocations = plan(holders, Decimal("4"))
        assert allocations == {"A": Decimal("2"), "B": Decimal("2")}
        assert list(allocations) == ["A", "B"]


class TestMinimumHolderBalance:

    def test_holder_below_minimum_excluded(self):
        allocations = plan(make_holders(("A", 10), ("B", 60)), Decimal("5"), minimum_holder_balance=Decimal("50"))
        assert allocations == {"B": Decimal("5")}

    def test_minimum_is_inclusive(self):
        allocations = plan(make_holders(("A", 50), ("B", 50)), Decimal("2"), EQUAL, Decimal("50"))
        assert set(allocations) == {"A", "B"}


class TestDegenerateInputs:

    def test_no_holders(self):
        assert plan([], Decimal("10")) == {}

    def test_nobody_eligible(self):
        assert plan(make_holders(("A", 1)), Decimal("10"), minimum_holder_balance=Decimal("5")) == {}

    def test_zero_total_balance(self):
        assert plan(make_holders(("A", 0), ("B", 0)), Decimal("10")) == {}

    @pytest.mark.parametrize("total", [Decimal("0"), Decimal("-1")])
    def test_non_positive_total(self, total):
        assert plan(make_holders(("A", 1)), total) == {}

    def test_total_finer_than_minimal_unit_raises(self):
        with pytest.raises(ValidationError, match="decimal places"):
            plan(make_holders(("A", 1)), Decimal("1.5"), decimals=0)

    def test_negative_decimals_raises(self):
        with pytest.raises(ValueError):
            plan(make_holders(("A", 1)), Decimal("1"), decimals=-1)


class TestPartition:

    def test_fixed_size_batches_in_order(self):
        assert partition([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    def test_empty(self):
        assert partition([], 10) == []

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            partition([1], 0)


class TestSummarize:

    def test_breakdown(self):
        b = summarize({"A": Decimal("1"), "B": Decimal("3")})
        assert b.total_amount == Decimal("4")
        assert b.recipient_count == 2
        assert b.average_amount == Decimal("2")
        assert b.min_amount == Decimal("1")
        assert b.max_amount == Decimal("3")

    def test_empty(self):
        b = summarize({})
        assert b.recipient_count == 0
        assert b.total_amount == 0

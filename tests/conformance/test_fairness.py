"""
Largest Remainder Fairness Conformance Tests

INVARIANT (proportional policy): for eligible holders i, j

    balance_i > balance_j  =>  allocation_i >= allocation_j

and every allocation is within one minimal unit of the holder's exact share.
Leftover units go to the largest fractional remainders, so rounding never
favours a smaller holder over a larger one.
"""

from decimal import Decimal
from fractions import Fraction

from hypothesis import assume, given, settings

from tributary import DistributionPolicy, HolderRecord, plan

from .strategies import decimal_places, holder_sets, totals


class TestLargestRemainderFairness:

    @given(holder_sets(min_size=2), totals(places=0), decimal_places)
    @settings(max_examples=200, deadline=None)
    def test_larger_balance_never_receives_less(self, holders, total, decimals):
        assume(sum(h.balance for h in holders) > 0)
        allocations = plan(holders, total, DistributionPolicy.PROPORTIONAL, decimals=decimals)

        paid = {h.address: allocations.get(h.address, Decimal("0")) for h in holders}
        for a in holders:
            for b in holders:
                if a.balance > b.balance:
                    assert paid[a.address] >= paid[b.address]

    @given(holder_sets(), totals(places=0), decimal_places)
    @settings(max_examples=200, deadline=None)
    def test_within_one_unit_of_exact_share(self, holders, total, decimals):
        total_balance = sum(h.balance for h in holders)
        assume(total_balance > 0)
        allocations = plan(holders, total, DistributionPolicy.PROPORTIONAL, decimals=decimals)

        unit = Fraction(Decimal(1).scaleb(-decimals))
        for h in holders:
            exact = Fraction(total) * Fraction(h.balance) / Fraction(total_balance)
            paid = Fraction(allocations.get(h.address, Decimal("0")))
            assert abs(paid - exact) < unit

    @given(holder_sets(min_size=2, max_size=10), totals(places=0))
    @settings(max_examples=100, deadline=None)
    def test_equal_balances_differ_by_at_most_one_unit(self, holders, total):
        same = [HolderRecord(h.address, Decimal("7")) for h in holders]
        allocations = plan(same, total, DistributionPolicy.PROPORTIONAL, decimals=0)

        amounts = [allocations.get(h.address, Decimal("0")) for h in same]
        assert max(amounts) - min(amounts) <= 1

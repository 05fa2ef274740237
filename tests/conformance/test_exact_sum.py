"""
Exact Sum Conformance Tests

INVARIANT: For any holder set with at least one eligible holder (and, under
the proportional policy, a positive eligible balance) and any total > 0:

    sum(plan(holders, total).values()) == total

and no allocation is <= 0. Rounding never creates or destroys a minimal unit.
"""

from decimal import Decimal

from hypothesis import assume, given, settings
from hypothesis import strategies as st

from tributary import DistributionPolicy, plan
from tributary.planner import eligible_holders

from .strategies import decimal_places, holder_sets, policies, totals


class TestExactSum:
    """Property-based exact-sum tests."""

    @given(holder_sets(), totals(), policies)
    @settings(max_examples=200, deadline=None)
    def test_allocations_sum_to_total(self, holders, total, policy):
        if policy is DistributionPolicy.PROPORTIONAL:
            assume(sum(h.balance for h in holders) > 0)

        allocations = plan(holders, total, policy)

        assert allocations
        assert sum(allocations.values()) == total

    @given(holder_sets(), st.data(), decimal_places, policies)
    @settings(max_examples=200, deadline=None)
    def test_sum_is_exact_at_any_precision(self, holders, data, decimals, policy):
        total = data.draw(totals(places=decimals))
        if policy is DistributionPolicy.PROPORTIONAL:
            assume(sum(h.balance for h in holders) > 0)

        allocations = plan(holders, total, policy, decimals=decimals)

        assert sum(allocations.values()) == total
        unit = Decimal(1).scaleb(-decimals)
        for amount in allocations.values():
            assert amount == amount.quantize(unit)

    @given(holder_sets(), totals(), policies, st.decimals(min_value=0, max_value=1000, places=2))
    @settings(max_examples=200, deadline=None)
    def test_no_non_positive_entries(self, holders, total, policy, minimum):
        allocations = plan(holders, total, policy, minimum)

        assert all(amount > 0 for amount in allocations.values())

    @given(holder_sets(), totals(), policies, st.decimals(min_value=0, max_value=1000, places=2))
    @settings(max_examples=200, deadline=None)
    def test_only_eligible_holders_are_paid(self, holders, total, policy, minimum):
        allocations = plan(holders, total, policy, minimum)

        eligible = {h.address for h in eligible_holders(holders, minimum)}
        assert set(allocations) <= eligible

"""
test_simulation.py - Unit tests for simulate() and the risk assessment
"""

from dataclasses import replace
from decimal import Decimal

from tributary import DistributionPolicy, DistributionRequest, TributaryParameters, simulate
from tributary.simulation import LARGE_AMOUNT_RISK, LARGE_RECIPIENT_COUNT_RISK
from .fake_client import MINT, make_holders


def _holders(n):
    return make_holders(*((f"h{i:03d}", 1) for i in range(n)))


def _with_distribution(**changes):
    defaults = TributaryParameters()
    return replace(defaults, distribution=replace(defaults.distribution, **changes))


class TestEstimates:

    def test_cost_and_duration(self):
        request = DistributionRequest(Decimal("250"), MINT, _holders(25), batch_size=10)

        result = simulate(request)

        assert result.estimated_cost == Decimal("0.000125")
        assert result.estimated_duration_seconds == 6.0

    def test_default_batch_size_from_parameters(self):
        request = DistributionRequest(Decimal("250"), MINT, _holders(25))
        params = _with_distribution(default_batch_size=5, estimated_seconds_per_batch=1.5)

        assert simulate(request, params).estimated_duration_seconds == 7.5

    def test_breakdown(self):
        request = DistributionRequest(
            Decimal("100"), MINT, make_holders(("A", 3), ("B", 1)),
        )

        result = simulate(request)

        assert result.allocations == {'A': Decimal("75"), 'B': Decimal("25")}
        assert result.breakdown.total_amount == Decimal("100")
        assert result.breakdown.recipient_count == 2
        assert result.breakdown.average_amount == Decimal("50")
        assert result.breakdown.min_amount == Decimal("25")
        assert result.breakdown.max_amount == Decimal("75")

    def test_equal_policy(self):
        request = DistributionRequest(
            Decimal("10"), MINT, make_holders(("A", 9), ("B", 1)),
            policy=DistributionPolicy.EQUAL,
        )

        assert simulate(request).allocations == {'A': Decimal("5"), 'B': Decimal("5")}

    def test_no_eligible_holders(self):
        request = DistributionRequest(
            Decimal("10"), MINT, make_holders(("A", 1)),
            minimum_holder_balance=Decimal("2"),
        )

        result = simulate(request)

        assert result.allocations == {}
        assert result.estimated_cost == 0
        assert result.estimated_duration_seconds == 0


class TestRiskFactors:

    def test_none_for_ordinary_request(self):
        request = DistributionRequest(Decimal("100"), MINT, make_holders(("A", 1), ("B", 1)))
        assert simulate(request).risk_factors == ()

    def test_large_amount(self):
        request = DistributionRequest(Decimal("100001"), MINT, make_holders(("A", 1)))
        assert LARGE_AMOUNT_RISK in simulate(request).risk_factors

    def test_amount_at_threshold_is_not_large(self):
        request = DistributionRequest(Decimal("100000"), MINT, make_holders(("A", 1)))
        assert LARGE_AMOUNT_RISK not in simulate(request).risk_factors

    def test_large_recipient_count(self):
        request = DistributionRequest(Decimal("100"), MINT, _holders(4))
        params = _with_distribution(large_recipient_count_threshold=3)

        assert LARGE_RECIPIENT_COUNT_RISK in simulate(request, params).risk_factors

    def test_small_amounts_counted(self):
        request = DistributionRequest(
            Decimal("1"), MINT, make_holders(("A", 9998), ("B", 1), ("C", 1)),
        )

        assert "2 recipients will receive very small amounts" in simulate(request).risk_factors

    def test_risks_do_not_block(self):
        request = DistributionRequest(Decimal("200000"), MINT, make_holders(("A", 1)))
        result = simulate(request)

        assert result.risk_factors
        assert result.allocations == {'A': Decimal("200000")}

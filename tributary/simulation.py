"""
simulation.py - Side-effect-free projection of a distribution

simulate() runs the planner only: no balance query, no transfer, no run
record. Risk factors are advisory and never block execution.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Tuple
import math

from .config import TributaryParameters
from .core import AllocationMap, DistributionRequest
from .planner import AllocationBreakdown, eligible_holders, plan, summarize


LARGE_AMOUNT_RISK = "Large distribution amount may require additional confirmation"
LARGE_RECIPIENT_COUNT_RISK = "Large number of recipients may result in longer execution time"


@dataclass(frozen=True, slots=True)
class SimulationResult:
    """
    Projected cost, duration and risk of a request.

    Attributes:
        estimated_cost: Fees in the ledger's native currency
        estimated_duration_seconds: Batches x configured seconds per batch
        breakdown: total/count/average/min/max of the allocation
        risk_factors: Human-readable warnings (may be empty)
        allocations: The planned AllocationMap
    """
    estimated_cost: Decimal
    estimated_duration_seconds: float
    breakdown: AllocationBreakdown
    risk_factors: Tuple[str, ...] = ()
    allocations: AllocationMap = field(default_factory=dict)


def assess_risks(request: DistributionRequest, parameters: TributaryParameters) -> List[str]:
    d = parameters.distribution
    risks: List[str] = []

    if request.total_amount > d.large_amount_threshold:
        risks.append(LARGE_AMOUNT_RISK)

    if len(request.holders) > d.large_recipient_count_threshold:
        risks.append(LARGE_RECIPIENT_COUNT_RISK)

    # Unrounded proportional share, whatever the policy
    eligible = eligible_holders(request.holders, request.minimum_holder_balance)
    eligible_balance = sum((h.balance for h in eligible), Decimal("0"))
    if eligible_balance > 0:
        small = sum(
            1 for h in eligible
            if request.total_amount * h.balance / eligible_balance < d.small_amount_threshold
        )
        if small:
            risks.append(f"{small} recipients will receive very small amounts")

    return risks


def simulate(
    request: DistributionRequest,
    parameters: Optional[TributaryParameters] = None,
) -> SimulationResult:
    """
    Project a distribution without touching the ledger.

    Example:
        result = simulate(DistributionRequest(Decimal("1000"), mint, holders))
        print(result.estimated_cost, result.breakdown.recipient_count)
        for risk in result.risk_factors:
            print("!", risk)
    """
    parameters = parameters or TributaryParameters()
    d = parameters.distribution

    allocations = plan(
        request.holders,
        request.total_amount,
        request.policy,
        request.minimum_holder_balance,
    )
    recipient_count = len(allocations)
    batch_size = request.batch_size or d.default_batch_size

    return SimulationResult(
        estimated_cost=recipient_count * d.estimated_cost_per_transaction,
        estimated_duration_seconds=math.ceil(recipient_count / batch_size) * d.estimated_seconds_per_batch,
        breakdown=summarize(allocations),
        risk_factors=tuple(assess_risks(request, parameters)),
        allocations=allocations,
    )

"""
planner.py - Rounding-exact allocation of a total across holders

Pure functions only: no I/O, no clock, no randomness. Identical inputs always
produce an identical, identically ordered AllocationMap.

Policies:
    EQUAL:        every eligible holder but the last receives total / n floored
                  to 6 places; the last receives the exact remainder.
    PROPORTIONAL: largest remainder method over integer minimal units.
                  Shares are floored, then the leftover units (at most n - 1)
                  go one each to the holders with the largest fractional
                  remainders. Ties keep plan order.

In both cases sum(allocations.values()) == total_amount whenever at least one
holder is eligible, and no allocation is <= 0.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from fractions import Fraction
from typing import Iterable, List, Sequence, Tuple, TypeVar

from .core import (
    AllocationMap, DistributionPolicy, HolderRecord, ValidationError, to_decimal,
)


# Minimal unit used when the asset's decimals are unknown (precision multiplier 1e9).
DEFAULT_PRECISION = 9

# Decimal places of an equal share before the remainder goes to the last holder.
EQUAL_SHARE_PLACES = 6

T = TypeVar('T')


def eligible_holders(holders: Iterable[HolderRecord], minimum_holder_balance: Decimal) -> List[HolderRecord]:
    """Holders whose balance is at least the minimum, in input order."""
    minimum = to_decimal(minimum_holder_balance)
    return [h for h in holders if h.balance >= minimum]


def _minimal_unit(decimals: int) -> Decimal:
    return Decimal(1).scaleb(-decimals)


def _equal_shares(eligible: Sequence[HolderRecord], total: Decimal, decimals: int) -> List[Tuple[str, Decimal]]:
    count = len(eligible)
    quantum = _minimal_unit(min(EQUAL_SHARE_PLACES, decimals))
    base = (total / count).quantize(quantum, rounding=ROUND_DOWN)
    shares = [(h.address, base) for h in eligible[:-1]]
    # Last holder absorbs the rounding so the total is exact
    shares.append((eligible[-1].address, total - base * (count - 1)))
    return shares


def _proportional_shares(eligible: Sequence[HolderRecord], total: Decimal, decimals: int) -> List[Tuple[str, Decimal]]:
    balances = [Fraction(h.balance) for h in eligible]
    total_balance = sum(balances, Fraction(0))
    if total_balance <= 0:
        return []

    total_units = int(total.scaleb(decimals))
    units: List[int] = []
    remainders: List[Fraction] = []
    for balance in balances:
        exact = total_units * balance / total_balance
        floored = exact.numerator // exact.denominator
        units.append(floored)
        remainders.append(exact - floored)

    leftover = total_units - sum(units)
    # sorted() is stable under reverse=True, so equal remainders keep plan order
    by_remainder = sorted(range(len(eligible)), key=lambda i: remainders[i], reverse=True)
    for i in by_remainder[:leftover]:
        units[i] += 1

    return [(h.address, Decimal(u).scaleb(-decimals)) for h, u in zip(eligible, units)]


def plan(
    holders: Iterable[HolderRecord],
    total_amount: Decimal,
    policy: DistributionPolicy = DistributionPolicy.PROPORTIONAL,
    minimum_holder_balance: Decimal = Decimal("0"),
    decimals: int = DEFAULT_PRECISION,
) -> AllocationMap:
    """
    Compute how much each holder receives.

    Args:
        holders: Candidate recipients in plan order (the collector returns
                 them balance-descending)
        total_amount: Amount to split, in asset units
        policy: EQUAL or PROPORTIONAL
        minimum_holder_balance: Holders below this balance are excluded from
                                both the denominator and the payout
        decimals: Decimal places of the minimal transferable unit

    Returns:
        Ordered address -> amount map. Empty when no holder is eligible, the
        eligible balance is zero, or total_amount <= 0.

    Raises:
        ValidationError: If total_amount is finer than the minimal unit

    Example:
        plan(holders, Decimal("10"), DistributionPolicy.EQUAL)
        # {'A': Decimal('3.333333'), 'B': Decimal('3.333333'), 'C': Decimal('3.333334')}
    """
    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")
    if isinstance(policy, str):
        policy = DistributionPolicy(policy)
    total = to_decimal(total_amount)

    eligible = eligible_holders(holders, minimum_holder_balance)
    if not eligible or total <= 0:
        return {}

    if total != total.quantize(_minimal_unit(decimals), rounding=ROUND_DOWN):
        raise ValidationError(
            f"Total amount {total} has more than {decimals} decimal places",
            {'total_amount': str(total), 'decimals': decimals},
        )

    if policy is DistributionPolicy.EQUAL:
        shares = _equal_shares(eligible, total, decimals)
    else:
        shares = _proportional_shares(eligible, total, decimals)

    allocations: AllocationMap = {}
    for address, amount in shares:
        if amount <= 0:
            continue
        # Duplicate addresses are paid once, with their shares summed
        allocations[address] = allocations.get(address, Decimal("0")) + amount
    return allocations


def partition(items: Sequence[T], batch_size: int) -> List[List[T]]:
    """Split items into consecutive batches of at most batch_size, in order."""
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


@dataclass(frozen=True, slots=True)
class AllocationBreakdown:
    """Summary statistics of an AllocationMap."""
    total_amount: Decimal
    recipient_count: int
    average_amount: Decimal
    min_amount: Decimal
    max_amount: Decimal


def summarize(allocations: AllocationMap) -> AllocationBreakdown:
    amounts = list(allocations.values())
    if not amounts:
        zero = Decimal("0")
        return AllocationBreakdown(zero, 0, zero, zero, zero)
    total = sum(amounts, Decimal("0"))
    return AllocationBreakdown(
        total_amount=total,
        recipient_count=len(amounts),
        average_amount=total / len(amounts),
        min_amount=min(amounts),
        max_amount=max(amounts),
    )

"""
Proportional allocation of an overage across item amounts (SSOT).

Core Invariants:
- All inputs and outputs are integer minor units (cents)
- sum(allocate(costs, total)) + sum(costs) == total, exactly
- Rounding drift is absorbed by the LAST item (deterministic tie-break)
- A total below the subtotal is an error, never clamped
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal

# Rounding mode for per-item shares. Half-up matches the producers' historical
# rounding and pins the literal cases (e.g. 215.5 -> 216).
ALLOCATION_ROUNDING = ROUND_HALF_UP


class InvalidTotal(ValueError):
    """Raised when the total is smaller than the sum of the item costs."""

    def __init__(self, subtotal: int, total: int):
        self.subtotal = subtotal
        self.total = total
        super().__init__(
            f"Total {total} is less than subtotal {subtotal} (overage {total - subtotal})"
        )


def allocate(item_costs: Sequence[int], total: int) -> list[int]:
    """Split the overage (total - subtotal) across items proportionally to cost.

    Shares are computed exactly as ``cost * overage / subtotal`` and rounded
    with ``ALLOCATION_ROUNDING``; the difference between the overage and the
    rounded sum is then added to the last share.

    Args:
        item_costs: Non-empty item costs in minor units
        total: Total charged in minor units

    Returns:
        Overage share per item, same length as ``item_costs``

    Raises:
        ValueError: If ``item_costs`` is empty
        InvalidTotal: If ``total`` is below the subtotal

    Examples:
        >>> allocate([2429, 1699], 4495)
        [216, 151]
        >>> allocate([100, 100, 100, 100, 100], 505)
        [1, 1, 1, 1, 1]
    """
    if not item_costs:
        raise ValueError("Cannot allocate across an empty item list")

    subtotal = sum(item_costs)
    overage = total - subtotal

    if overage < 0:
        raise InvalidTotal(subtotal, total)

    if overage == 0:
        return [0] * len(item_costs)

    if len(item_costs) == 1:
        return [overage]

    shares: list[int] = []
    for cost in item_costs:
        if subtotal == 0:
            shares.append(0)
            continue
        exact = Decimal(cost * overage) / Decimal(subtotal)
        shares.append(int(exact.quantize(Decimal(1), rounding=ALLOCATION_ROUNDING)))

    drift = overage - sum(shares)
    shares[-1] += drift

    return shares


def item_charges(item_costs: Sequence[int], total: int) -> list[int]:
    """Final per-item charges: each base cost plus its overage share.

    The result always sums to ``total``.
    """
    shares = allocate(item_costs, total)
    return [cost + share for cost, share in zip(item_costs, shares)]

"""
Swap fee calculation.

Fees are charged as additional credits on top of the swapped amount; the
full requested amount is converted to SOL.
"""

from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal

from .config import Settings


@dataclass(frozen=True)
class FeeSchedule:
    """Fee and conversion parameters."""

    swap_fee_percentage: Decimal
    min_fee_credits: int
    network_fee_credits: int
    credit_to_settlement_rate: Decimal

    @classmethod
    def from_settings(cls, settings: Settings) -> "FeeSchedule":
        return cls(
            swap_fee_percentage=settings.swap_fee_percentage,
            min_fee_credits=settings.min_fee_credits,
            network_fee_credits=settings.network_fee_credits,
            credit_to_settlement_rate=settings.credit_to_sol_rate,
        )


@dataclass(frozen=True)
class FeeBreakdown:
    """Fees for one swap request."""

    credits_amount: int
    swap_fee: int
    network_fee: int
    total_fees: int
    total_required: int
    fee_percentage: Decimal
    settlement_amount: Decimal


def calculate_swap_fees(credits_amount: int, schedule: FeeSchedule) -> FeeBreakdown:
    """
    Calculate fees for a swap.

    swap_fee = max(ceil(amount * pct / 100), min_fee)
    total_required = amount + swap_fee + network_fee

    Raises:
        ValueError: if credits_amount is not a positive integer
    """
    if isinstance(credits_amount, bool) or not isinstance(credits_amount, int):
        raise ValueError("credits_amount must be an integer")
    if credits_amount <= 0:
        raise ValueError("credits_amount must be greater than 0")

    amount = Decimal(credits_amount)
    raw_fee = (amount * schedule.swap_fee_percentage / 100).to_integral_value(rounding=ROUND_CEILING)
    swap_fee = max(int(raw_fee), schedule.min_fee_credits)

    network_fee = schedule.network_fee_credits
    total_fees = swap_fee + network_fee

    return FeeBreakdown(
        credits_amount=credits_amount,
        swap_fee=swap_fee,
        network_fee=network_fee,
        total_fees=total_fees,
        total_required=credits_amount + total_fees,
        fee_percentage=(Decimal(total_fees) * 100 / amount).quantize(Decimal("0.01")),
        settlement_amount=amount * schedule.credit_to_settlement_rate,
    )


def describe_fees(breakdown: FeeBreakdown, schedule: FeeSchedule) -> str:
    """One-line fee summary for display."""
    return (
        f"Swap Fee: {breakdown.swap_fee} credits ({schedule.swap_fee_percentage}%) + "
        f"Network Fee: {breakdown.network_fee} credits = Total: {breakdown.total_fees} credits"
    )

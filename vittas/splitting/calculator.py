"""
Split Calculator

Turns (total, payer, members, strategy) into the amount each participant owes.

RULES:
- The payer is always a participant and always comes first in the result
- Member shares are rounded DOWN to the cent
- The payer absorbs whatever is left, so the shares always sum to the total
- Nothing is computed for an invalid request; the validator's result is raised

The calculator is pure: no storage, no clock, no logging.
"""

from decimal import ROUND_DOWN, Decimal
from typing import Iterable, Optional, Union
from uuid import UUID

from vittas.models.ledger import (
    CENT,
    HUNDRED,
    CustomSplit,
    EqualSplit,
    PercentageSplit,
    SplitRequest,
    SplitStrategy,
    ValidationResult,
)
from vittas.validation import SplitRequestValidator


class SplitValidationError(ValueError):
    """A split request failed validation. Carries the full result."""

    def __init__(self, result: ValidationResult):
        self.result = result
        errors = [issue.message for issue in result.issues if issue.severity == "error"]
        super().__init__("; ".join(errors) or "Invalid split request")


def _round_down(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_DOWN)


def _member_shares(request: SplitRequest, total: Decimal) -> list[Decimal]:
    strategy = request.strategy
    members = request.members

    if isinstance(strategy, EqualSplit):
        share = _round_down(total / (len(members) + 1))
        return [share] * len(members)

    if isinstance(strategy, PercentageSplit):
        return [
            _round_down(total * strategy.percentages[user_id] / HUNDRED)
            for user_id in members
        ]

    if isinstance(strategy, CustomSplit):
        return [strategy.amounts[user_id].quantize(CENT) for user_id in members]

    raise TypeError(f"Unsupported split strategy: {type(strategy).__name__}")


def calculate_splits(
    total_amount: Union[Decimal, str, int],
    payer_id: UUID,
    members: Iterable[UUID] = (),
    strategy: Optional[SplitStrategy] = None,
    validator: Optional[SplitRequestValidator] = None,
) -> dict[UUID, Decimal]:
    """
    Compute each participant's share of an expense.

    Args:
        total_amount: What the payer paid
        payer_id: The paying user, always included
        members: Other participants, in display order, payer excluded
        strategy: EqualSplit (default), PercentageSplit or CustomSplit
        validator: Validator to use; a fresh one by default

    Returns:
        {user_id: amount_owed}, payer first, summing exactly to the total

    Raises:
        SplitValidationError: If the request fails validation
    """
    request = SplitRequest(
        total_amount=total_amount,
        payer_id=payer_id,
        members=list(members),
        strategy=strategy or EqualSplit(),
    )

    result = (validator or SplitRequestValidator()).validate(request)
    if not result.is_valid:
        raise SplitValidationError(result)

    total = request.total_amount.quantize(CENT)
    shares = _member_shares(request, total)

    splits = {request.payer_id: total - sum(shares, Decimal("0.00"))}
    splits.update(zip(request.members, shares))
    return splits

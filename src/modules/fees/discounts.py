"""Scholarship discount resolution."""

from decimal import Decimal

from src.core.exceptions import ValidationError
from src.modules.fees.models import Scholarship
from src.shared.utils.money import HUNDRED, ZERO, round_money


def validate_percentage(percentage: Decimal) -> Decimal:
    """Reject discount percentages outside 0-100."""
    if percentage < 0 or percentage > HUNDRED:
        raise ValidationError(
            "Discount percentage must be between 0 and 100", field="discount_percentage"
        )
    return percentage


def resolve_amount_due(amount: Decimal, scholarship: Scholarship | None) -> Decimal:
    """
    Amount a student owes for a template amount.

        amount_due = round(amount * (1 - discount_percentage / 100)), floored at 0

    No scholarship (or an inactive one) leaves the amount unchanged.
    """
    amount = round_money(amount)
    if scholarship is None or not scholarship.is_active:
        return amount

    percentage = validate_percentage(Decimal(str(scholarship.discount_percentage)))
    discounted = amount * (Decimal("1") - percentage / HUNDRED)
    return round_money(max(ZERO, discounted))

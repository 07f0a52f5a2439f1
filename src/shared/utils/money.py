from decimal import ROUND_HALF_DOWN, ROUND_HALF_UP, Decimal
from typing import Union

# Type alias for money values
Money = Decimal

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def round_money(value: Union[Decimal, float, int, str]) -> Decimal:
    """
    Round monetary value to 2 decimal places using ROUND_HALF_UP.

    Examples:
        >>> round_money(10.125)
        Decimal('10.13')
        >>> round_money("10.115")
        Decimal('10.12')
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if value < 0:
        return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_DOWN)
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_decimal(value: Union[Decimal, float, int, str, None]) -> Decimal:
    """Coerce an aggregate result (may be None, int or float on SQLite) to Decimal."""
    if value is None:
        return ZERO
    return Decimal(str(value))


def apply_surcharge(amount: Decimal, rate: Decimal) -> tuple[Decimal, Decimal]:
    """
    Add a percentage surcharge on top of ``amount``.

    Returns (surcharge, gross). ``rate`` is a fraction: 0.025 for 2.5%.

        >>> apply_surcharge(Decimal("100"), Decimal("0.025"))
        (Decimal('2.50'), Decimal('102.50'))
    """
    surcharge = round_money(amount * rate)
    return surcharge, round_money(amount + surcharge)


def positive_money(value: Decimal | None) -> Decimal | None:
    """
    Field validator body for amounts: reject anything that rounds to zero.

    ``Field(gt=0)`` lets 0.004 through, which would be stored as 0.00.
    """
    if value is not None and round_money(value) <= 0:
        raise ValueError("amount must be at least 0.01")
    return value

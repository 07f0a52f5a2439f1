from decimal import Decimal

import pytest

from src.core.exceptions import ValidationError
from src.modules.fees.discounts import resolve_amount_due, validate_percentage
from src.modules.fees.models import Scholarship


def _scholarship(percentage: str, is_active: bool = True) -> Scholarship:
    return Scholarship(name="Merit", discount_percentage=Decimal(percentage), is_active=is_active)


class TestResolveAmountDue:
    def test_no_scholarship(self):
        assert resolve_amount_due(Decimal("1000"), None) == Decimal("1000.00")

    def test_twenty_percent(self):
        assert resolve_amount_due(Decimal("1000"), _scholarship("20")) == Decimal("800.00")

    def test_full_scholarship_is_zero(self):
        assert resolve_amount_due(Decimal("1000"), _scholarship("100")) == Decimal("0.00")

    def test_zero_percent(self):
        assert resolve_amount_due(Decimal("750.50"), _scholarship("0")) == Decimal("750.50")

    def test_rounds_half_up(self):
        # 333.33 * 0.875 = 291.66375
        assert resolve_amount_due(Decimal("333.33"), _scholarship("12.5")) == Decimal("291.66")
        # 0.05 * 0.5 = 0.025
        assert resolve_amount_due(Decimal("0.05"), _scholarship("50")) == Decimal("0.03")

    def test_inactive_scholarship_is_ignored(self):
        assert resolve_amount_due(Decimal("1000"), _scholarship("20", is_active=False)) == Decimal(
            "1000.00"
        )


class TestValidatePercentage:
    @pytest.mark.parametrize("value", ["-1", "100.01", "250"])
    def test_out_of_range(self, value):
        with pytest.raises(ValidationError):
            validate_percentage(Decimal(value))

    @pytest.mark.parametrize("value", ["0", "55.5", "100"])
    def test_in_range(self, value):
        assert validate_percentage(Decimal(value)) == Decimal(value)

from decimal import Decimal

import pytest

from src.shared.utils.money import ZERO, apply_surcharge, positive_money, round_money, to_decimal


class TestRoundMoney:
    """Tests for round_money function."""

    def test_round_half_up(self):
        """Test ROUND_HALF_UP behavior."""
        assert round_money(10.125) == Decimal("10.13")
        assert round_money(10.124) == Decimal("10.12")
        assert round_money(10.145) == Decimal("10.15")

    def test_from_decimal(self):
        assert round_money(Decimal("10.125")) == Decimal("10.13")
        assert round_money(Decimal("99.999")) == Decimal("100.00")

    def test_from_string(self):
        assert round_money("10.125") == Decimal("10.13")
        assert round_money("0.001") == Decimal("0.00")

    def test_negative_numbers(self):
        """Negative halves round toward zero."""
        assert round_money(-10.125) == Decimal("-10.12")
        assert round_money(-10.126) == Decimal("-10.13")

    def test_precision(self):
        """Result always has 2 decimal places."""
        assert str(round_money(10)) == "10.00"
        assert str(round_money(10.1)) == "10.10"


class TestToDecimal:
    def test_none_is_zero(self):
        assert to_decimal(None) == ZERO

    def test_sqlite_aggregates(self):
        assert to_decimal(0) == Decimal("0")
        assert to_decimal(1025.5) == Decimal("1025.5")


class TestApplySurcharge:
    """Mobile money surcharge is added on top of the requested amount."""

    def test_two_and_a_half_percent(self):
        surcharge, gross = apply_surcharge(Decimal("1000"), Decimal("0.025"))
        assert surcharge == Decimal("25.00")
        assert gross == Decimal("1025.00")

    def test_rounds_half_up(self):
        surcharge, gross = apply_surcharge(Decimal("10.10"), Decimal("0.025"))
        # 0.2525 -> 0.25
        assert surcharge == Decimal("0.25")
        assert gross == Decimal("10.35")

    @pytest.mark.parametrize("amount", [Decimal("1"), Decimal("333.33"), Decimal("1500")])
    def test_zero_rate_is_identity(self, amount):
        surcharge, gross = apply_surcharge(amount, Decimal("0"))
        assert surcharge == ZERO
        assert gross == round_money(amount)


class TestPositiveMoney:
    def test_smallest_unit_accepted(self):
        assert positive_money(Decimal("0.005")) == Decimal("0.005")
        assert positive_money(Decimal("0.01")) == Decimal("0.01")
        assert positive_money(None) is None

    @pytest.mark.parametrize("amount", [Decimal("0.004"), Decimal("0.001"), Decimal("0")])
    def test_rounds_to_zero_rejected(self, amount):
        with pytest.raises(ValueError):
            positive_money(amount)

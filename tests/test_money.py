"""
Test suite for money and date utilities

Decimal precision, half-up rounding, quarterly compounding and calendar
month arithmetic used by the term products.
"""

import pytest
from decimal import Decimal
from datetime import date

from coop_banking.money import (
    Money, to_decimal, decimal_from_string, compound_quarterly,
    add_months, whole_months_between
)


class TestMoney:
    """Test Money arithmetic and rounding"""

    def test_rounds_half_up_to_cents(self):
        assert Money(Decimal('10.005')).amount == Decimal('10.01')
        assert Money(Decimal('10.004')).amount == Decimal('10.00')

    def test_rejects_float(self):
        with pytest.raises(TypeError):
            Money(10.5)
        with pytest.raises(TypeError):
            to_decimal(0.1)

    def test_arithmetic(self):
        a = Money(Decimal('100.10'))
        b = Money(Decimal('0.20'))
        assert a + b == Money(Decimal('100.30'))
        assert a - b == Money(Decimal('99.90'))
        assert b * 3 == Money(Decimal('0.60'))
        assert Money(Decimal('10')) / 3 == Money(Decimal('3.33'))
        assert -b == Money(Decimal('-0.20'))

    def test_comparisons_with_decimal_and_int(self):
        m = Money(Decimal('5.00'))
        assert m == 5
        assert m == Decimal('5')
        assert m > Decimal('4.99')
        assert m <= 5
        assert Money.zero().is_zero()
        assert m.is_positive()
        assert (-m).is_negative()

    def test_no_float_drift(self):
        total = Money.zero()
        for _ in range(10):
            total = total + Money(Decimal('0.10'))
        assert total == Money(Decimal('1.00'))

    def test_formatting(self):
        assert Money(Decimal('1234567.8')).to_string() == "1,234,567.80"
        assert str(Money(Decimal('5'))) == "5.00"

    def test_decimal_from_string(self):
        assert decimal_from_string("$1,234.56") == Decimal('1234.56')
        assert decimal_from_string("12,50") == Decimal('12.50')
        with pytest.raises(ValueError):
            decimal_from_string("")


class TestCompounding:
    """Test quarterly compounding"""

    def test_fixed_deposit_golden_value(self):
        assert compound_quarterly(Decimal('100000'), Decimal('8'), 12) == Money(Decimal('108243.22'))

    def test_zero_months_returns_principal(self):
        assert compound_quarterly(Decimal('5000'), Decimal('7.5'), 0) == Money(Decimal('5000'))

    def test_zero_rate_returns_principal(self):
        assert compound_quarterly(Decimal('5000'), Decimal('0'), 24) == Money(Decimal('5000'))

    def test_partial_quarter_uses_fractional_exponent(self):
        # 1000 * 1.02 ** (1/3)
        assert compound_quarterly(Decimal('1000'), Decimal('8'), 1) == Money(Decimal('1006.62'))

    def test_is_deterministic(self):
        first = compound_quarterly(Decimal('25000'), Decimal('6.75'), 17)
        second = compound_quarterly(Decimal('25000'), Decimal('6.75'), 17)
        assert first == second

    def test_negative_months_rejected(self):
        with pytest.raises(ValueError):
            compound_quarterly(Decimal('100'), Decimal('5'), -1)


class TestCalendar:
    """Test month arithmetic"""

    def test_add_months_clamps_to_month_end(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)

    def test_add_months_crosses_years(self):
        assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)
        assert add_months(date(2024, 1, 1), 12) == date(2025, 1, 1)

    def test_whole_months_between(self):
        assert whole_months_between(date(2024, 1, 15), date(2024, 2, 14)) == 0
        assert whole_months_between(date(2024, 1, 15), date(2024, 2, 15)) == 1
        assert whole_months_between(date(2024, 1, 31), date(2024, 2, 29)) == 1
        assert whole_months_between(date(2024, 1, 1), date(2025, 6, 30)) == 17

    def test_whole_months_between_end_before_start(self):
        assert whole_months_between(date(2024, 5, 1), date(2024, 1, 1)) == 0

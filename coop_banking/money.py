"""
Money and Date Utilities

Fixed-point money with two fraction digits and the calendar math used by
the term products (month addition, whole-month counts, quarterly
compounding). NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from datetime import date
from typing import Union
import calendar
import re

# Set global decimal context for financial precision
getcontext().prec = 28

CENT = Decimal('0.01')
QUARTERS_PER_YEAR = 4

Numeric = Union['Money', Decimal, int, str]


def to_decimal(value) -> Decimal:
    """Convert int/str/Decimal/Money to Decimal without going through float"""
    if isinstance(value, Money):
        return value.amount
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        raise TypeError("Monetary values must not be floats")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")


def quantize_money(value: Decimal) -> Decimal:
    """Round to cents, half-up"""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Money:
    """
    Immutable money amount rounded to two fraction digits.
    All monetary fields in the engine use this class.
    """
    amount: Decimal

    def __post_init__(self):
        object.__setattr__(self, 'amount', quantize_money(to_decimal(self.amount)))

    @classmethod
    def zero(cls) -> 'Money':
        return cls(Decimal('0'))

    @classmethod
    def of(cls, value: Numeric) -> 'Money':
        if isinstance(value, Money):
            return value
        return cls(to_decimal(value))

    def __add__(self, other: Numeric) -> 'Money':
        return Money(self.amount + to_decimal(other))

    def __sub__(self, other: Numeric) -> 'Money':
        return Money(self.amount - to_decimal(other))

    def __mul__(self, multiplier: Numeric) -> 'Money':
        return Money(self.amount * to_decimal(multiplier))

    def __truediv__(self, divisor: Numeric) -> 'Money':
        return Money(self.amount / to_decimal(divisor))

    def __neg__(self) -> 'Money':
        return Money(-self.amount)

    def __abs__(self) -> 'Money':
        return Money(abs(self.amount))

    def __eq__(self, other) -> bool:
        if isinstance(other, Money):
            return self.amount == other.amount
        if isinstance(other, (Decimal, int)):
            return self.amount == other
        return False

    def __hash__(self) -> int:
        return hash(self.amount)

    def __lt__(self, other: Numeric) -> bool:
        return self.amount < to_decimal(other)

    def __le__(self, other: Numeric) -> bool:
        return self.amount <= to_decimal(other)

    def __gt__(self, other: Numeric) -> bool:
        return self.amount > to_decimal(other)

    def __ge__(self, other: Numeric) -> bool:
        return self.amount >= to_decimal(other)

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        """Check if amount is positive"""
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        """Check if amount is negative"""
        return self.amount < Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        return f"{self.amount:,.2f}"

    def __str__(self) -> str:
        return str(self.amount)


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Args:
        value: String representation of number, may carry symbols or
            thousands separators

    Returns:
        Decimal value

    Raises:
        ValueError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    clean_value = re.sub(r'[^\d.,\-+]', '', value.strip())

    if ',' in clean_value and '.' in clean_value:
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value and clean_value.count(',') == 1:
        parts = clean_value.split(',')
        if len(parts[1]) <= 2:
            clean_value = clean_value.replace(',', '.')
        else:
            clean_value = clean_value.replace(',', '')

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")


def compound_quarterly(principal: Numeric, rate_percent: Numeric, months: int) -> Money:
    """
    Quarterly-compounded value of a principal after a number of months.

    value = principal * (1 + rate/400) ** (4 * months / 12), rounded to cents.
    Whole-quarter tenures use an integral exponent so the result is exact.
    """
    if months < 0:
        raise ValueError("Months must not be negative")

    base = Decimal('1') + to_decimal(rate_percent) / Decimal('100') / QUARTERS_PER_YEAR
    if months % 3 == 0:
        factor = base ** (months // 3)
    else:
        factor = base ** (Decimal(months) * QUARTERS_PER_YEAR / Decimal('12'))

    return Money(to_decimal(principal) * factor)


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of short months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def whole_months_between(start_date: date, end_date: date) -> int:
    """Number of complete months elapsed from start_date to end_date (0 if end precedes start)"""
    if end_date <= start_date:
        return 0

    months = (end_date.year - start_date.year) * 12 + (end_date.month - start_date.month)
    if add_months(start_date, months) > end_date:
        months -= 1
    return max(months, 0)

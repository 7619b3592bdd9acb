"""
Common Value Objects

- Money: Monetary amount in a tenant currency, always quantized to cents
- TimeWindow: Start/end of a bookable slot
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from shared.domain.base import ValueObject

CENT = Decimal('0.01')


@dataclass(frozen=True)
class Money(ValueObject):
    """
    Money value object

    Negative amounts are rejected; a booking never owes a negative total.
    """
    amount: Decimal
    currency: str = 'SAR'

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))
        if self.amount < 0:
            raise ValueError("Amount cannot be negative")
        if not self.currency or len(self.currency) != 3:
            raise ValueError(f"Invalid currency code: {self.currency!r}")

    @classmethod
    def zero(cls, currency: str = 'SAR') -> 'Money':
        return cls(Decimal('0.00'), currency)

    def __add__(self, other: 'Money') -> 'Money':
        if not isinstance(other, Money):
            raise TypeError("Can only add Money to Money")
        if self.currency != other.currency:
            raise ValueError(f"Cannot add different currencies: {self.currency} and {other.currency}")
        return Money(self.amount + other.amount, self.currency)

    def __mul__(self, factor) -> 'Money':
        """Multiply by a quantity; the result is rounded to cents"""
        if not isinstance(factor, (int, Decimal)) or isinstance(factor, bool):
            raise TypeError("Can only multiply Money by an int or Decimal")
        return Money(self.quantized(self.amount * Decimal(factor)), self.currency)

    @staticmethod
    def quantized(amount: Decimal) -> Decimal:
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    def __str__(self):
        return f"{self.amount:,.2f} {self.currency}"


@dataclass(frozen=True)
class TimeWindow(ValueObject):
    """Half-open interval [starts_at, ends_at) of a slot"""
    starts_at: datetime
    ends_at: datetime

    def __post_init__(self):
        if self.starts_at >= self.ends_at:
            raise ValueError(
                f"Start ({self.starts_at}) must be before end ({self.ends_at})"
            )

    def overlaps_with(self, other: 'TimeWindow') -> bool:
        return self.starts_at < other.ends_at and self.ends_at > other.starts_at

    def __str__(self):
        return f"{self.starts_at:%Y-%m-%d %H:%M}-{self.ends_at:%H:%M}"

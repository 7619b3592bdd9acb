"""
Coverage Calculator

Splits a requested visitor quantity into the part a pre-paid allotment
covers and the part the customer pays for. Pure functions, no I/O.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from shared.domain.value_objects import Money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CoverageSplit:
    covered: int
    paid: int

    @property
    def total(self) -> int:
        return self.covered + self.paid

    def is_consistent(self, requested: int) -> bool:
        return (
            self.covered >= 0
            and self.paid >= 0
            and self.covered <= requested
            and self.covered + self.paid == requested
        )


def compute(requested_quantity: int, remaining_allotment: int) -> CoverageSplit:
    """
    covered = min(requested, max(remaining, 0)); paid = requested - covered

    Examples:
        compute(5, 3) -> covered 3, paid 2
        compute(5, 10) -> covered 5, paid 0
        compute(5, -2) -> covered 0, paid 5
    """
    if requested_quantity < 0:
        raise ValueError("requested_quantity cannot be negative")
    covered = min(requested_quantity, max(remaining_allotment, 0))
    return CoverageSplit(covered=covered, paid=requested_quantity - covered)


def split_for_booking(requested_quantity: int, remaining_allotment: int) -> CoverageSplit:
    """``compute`` plus a post-condition check.

    If the split is ever inconsistent it is clamped into range and
    recomputed instead of being persisted as is.
    """
    split = compute(requested_quantity, remaining_allotment)
    if split.is_consistent(requested_quantity):
        return split

    logger.warning(
        f"Inconsistent coverage split {split} for requested={requested_quantity}, "
        f"remaining={remaining_allotment}; clamping"
    )
    covered = max(0, min(split.covered, requested_quantity))
    return CoverageSplit(covered=covered, paid=requested_quantity - covered)


def price_for(split: CoverageSplit, unit_price: Money) -> Money:
    """Only the paid part is charged; covered visitors cost nothing."""
    if split.paid == 0:
        return Money.zero(unit_price.currency)
    return unit_price * split.paid

"""
Booking Domain Entities

- BookingStatus: FSM states of a single booking
- BookingItem: One line of a bulk booking request
- BookingLine: A planned booking with its coverage split and price
- BookingGroup: Aggregate root of one bulk request
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
from uuid import UUID

from shared.domain.base import Aggregate
from shared.domain.errors import InvalidTransition
from shared.domain.value_objects import Money
from apps.bookings.domain.events import BookingGroupCreated
from apps.packages.coverage import CoverageSplit


class BookingStatus(Enum):
    """
    Booking Status Finite State Machine

    State transitions:
    - PENDING -> CONFIRMED | CANCELLED
    - CONFIRMED -> CHECKED_IN | CANCELLED | NO_SHOW
    - CHECKED_IN -> COMPLETED

    Only CANCELLED gives capacity back. A no-show still occupied the slot.
    """
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    CHECKED_IN = 'checked_in'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    NO_SHOW = 'no_show'

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.CHECKED_IN, BookingStatus.CANCELLED, BookingStatus.NO_SHOW},
    BookingStatus.CHECKED_IN: {BookingStatus.COMPLETED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
    BookingStatus.NO_SHOW: set(),
}


def ensure_transition(current: str, target: str) -> BookingStatus:
    """Return the target status or raise InvalidTransition"""
    current_status = BookingStatus(current)
    target_status = BookingStatus(target)
    if current_status.is_terminal:
        raise InvalidTransition(f"Booking is already {current_status.value}")
    if target_status not in ALLOWED_TRANSITIONS[current_status]:
        raise InvalidTransition(
            f"Booking cannot move from {current_status.value} to {target_status.value}"
        )
    return target_status


@dataclass(frozen=True)
class BookingItem:
    """One requested line: ``visitor_count`` places on ``slot_id``"""
    slot_id: UUID
    visitor_count: int
    customer_ref: Optional[UUID] = None
    lock_id: Optional[UUID] = None

    def __post_init__(self):
        for name in ('slot_id', 'customer_ref', 'lock_id'):
            value = getattr(self, name)
            if value is not None and not isinstance(value, UUID):
                object.__setattr__(self, name, UUID(str(value)))


@dataclass
class BookingLine:
    booking_id: UUID
    slot_id: UUID
    split: CoverageSplit
    total_price: Money
    invoice_required: bool

    @property
    def visitor_count(self) -> int:
        return self.split.total


@dataclass(kw_only=True)
class BookingGroup(Aggregate):
    """
    Booking Group Aggregate Root

    Collects the lines of one bulk request. The group is created with all
    its lines or not at all.
    """
    tenant_id: UUID
    idempotency_key: str
    lines: List[BookingLine] = field(default_factory=list)

    def add_line(self, line: BookingLine):
        self.lines.append(line)

    @property
    def total_visitors(self) -> int:
        return sum(line.visitor_count for line in self.lines)

    @property
    def requires_invoice(self) -> bool:
        return any(line.invoice_required for line in self.lines)

    def total_price(self, currency: str) -> Money:
        total = Money.zero(currency)
        for line in self.lines:
            total = total + line.total_price
        return total

    def mark_created(self, currency: str):
        self.add_event(BookingGroupCreated(
            aggregate_id=self.id,
            booking_group_id=self.id,
            tenant_id=self.tenant_id,
            booking_ids=[line.booking_id for line in self.lines],
            total_visitors=self.total_visitors,
            total_price=self.total_price(currency),
            requires_invoice=self.requires_invoice,
        ))

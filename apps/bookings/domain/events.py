"""
Booking Domain Events

Published after the transaction that produced them has committed.
"""

from dataclasses import dataclass, field
from typing import List
from uuid import UUID

from shared.domain.base import DomainEvent
from shared.domain.value_objects import Money


@dataclass
class BookingGroupCreated(DomainEvent):
    """
    Event: A bulk booking request committed

    Triggers:
    - Kick the invoice reconciliation worker
    """
    booking_group_id: UUID
    tenant_id: UUID
    booking_ids: List[UUID] = field(default_factory=list)
    total_visitors: int = 0
    total_price: Money = field(default_factory=Money.zero)
    requires_invoice: bool = False

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            'booking_group_id': str(self.booking_group_id),
            'tenant_id': str(self.tenant_id),
            'booking_ids': [str(booking_id) for booking_id in self.booking_ids],
            'total_visitors': self.total_visitors,
            'total_price': str(self.total_price.amount),
            'currency': self.total_price.currency,
            'requires_invoice': self.requires_invoice,
        })
        return data


@dataclass
class BookingCancelled(DomainEvent):
    """
    Event: A booking was cancelled and its capacity returned

    Triggers:
    - Cancellation notice to the booking contact
    """
    booking_id: UUID
    slot_id: UUID
    visitor_count: int
    allotment_restored: int = 0
    reason: str = ''


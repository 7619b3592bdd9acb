"""Domain events of the packages context."""

from dataclasses import dataclass
from uuid import UUID

from shared.domain.base import DomainEvent


@dataclass
class AllotmentExhausted(DomainEvent):
    """A subscription's balance for a service reached zero for the first time"""
    subscription_id: UUID
    customer_id: UUID
    service_id: UUID

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            'subscription_id': str(self.subscription_id),
            'customer_id': str(self.customer_id),
            'service_id': str(self.service_id),
        })
        return data

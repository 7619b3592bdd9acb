"""
Base Domain Classes

- ValueObject: immutable, compared by value (Money, TimeWindow)
- Aggregate: identity plus the events raised while it was being changed
- DomainEvent: a fact published after the transaction that produced it
"""

from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ValueObject(ABC):
    """Immutable, no identity"""


@dataclass(kw_only=True)
class Aggregate(ABC):
    """
    Aggregate root

    Identity decides equality. Events raised through ``add_event`` wait
    here until a unit of work collects them.
    """
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_utcnow)
    _events: List['DomainEvent'] = field(default_factory=list, repr=False, init=False, compare=False)

    def __eq__(self, other):
        return isinstance(other, self.__class__) and self.id == other.id

    def __hash__(self):
        return hash(self.id)

    def add_event(self, event: 'DomainEvent'):
        self._events.append(event)

    def clear_events(self):
        self._events.clear()

    @property
    def events(self) -> List['DomainEvent']:
        return list(self._events)


@dataclass(kw_only=True)
class DomainEvent:
    """
    Base class for domain events

    Common fields are keyword-only, so subclasses are free to declare
    required fields of their own.
    """
    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=_utcnow)
    aggregate_id: Optional[UUID] = None

    def to_dict(self) -> dict:
        return {
            'event_id': str(self.event_id),
            'event_type': type(self).__name__,
            'occurred_at': self.occurred_at.isoformat(),
            'aggregate_id': str(self.aggregate_id) if self.aggregate_id else None,
        }

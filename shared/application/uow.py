"""
Unit of Work Pattern

One ``transaction.atomic()`` block plus the domain events raised inside it.
Events leave the unit of work only through ``transaction.on_commit``.
"""

from typing import List
import logging

from django.db import transaction

from shared.domain.base import DomainEvent

logger = logging.getLogger(__name__)


class DjangoUnitOfWork:
    """
    Transaction boundary of a use case

    Usage:
        with DjangoUnitOfWork() as uow:
            slots = SlotStore.lock_slots(slot_ids)
            ...
            uow.collect_events(group)
        # BookingGroupCreated is published once the outer transaction commits

    Nested inside another atomic block the unit of work becomes a savepoint;
    its events still wait for the outermost commit. Events gathered in a
    block that raises are dropped.
    """

    def __init__(self):
        self._events: List[DomainEvent] = []
        self._atomic = None

    def __enter__(self):
        self._atomic = transaction.atomic()
        self._atomic.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        finally:
            self._atomic.__exit__(exc_type, exc_val, exc_tb)

    def commit(self):
        """Hand the gathered events to ``on_commit``"""
        pending, self._events = self._events, []
        if pending:
            logger.debug(f"Scheduling {len(pending)} events for publishing after commit")
            transaction.on_commit(lambda: self._publish_events(pending))

    def rollback(self):
        if self._events:
            logger.warning(f"Rolling back transaction, dropping {len(self._events)} events")
        self._events = []

    def collect_events(self, aggregate):
        """Take over the pending events of an aggregate root"""
        pending = aggregate.events
        if not pending:
            return
        self._events.extend(pending)
        aggregate.clear_events()
        logger.debug(
            f"Collected {len(pending)} events from {aggregate.__class__.__name__} {aggregate.id}"
        )

    def add_event(self, event: DomainEvent):
        self._events.append(event)

    @staticmethod
    def _publish_events(events: List[DomainEvent]):
        from shared.application.message_bus import message_bus

        logger.info(f"Publishing {len(events)} domain events after commit")
        try:
            message_bus.publish_events(events)
        except Exception as e:
            # Already committed; a publishing failure must not surface to the caller.
            logger.error(f"Error publishing events: {e}", exc_info=True)

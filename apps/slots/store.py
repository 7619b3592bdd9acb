"""Slot Store: the only writer of ``Slot.available_capacity``.

Every mutation runs in ``transaction.atomic()`` after taking the slot row
with ``SELECT ... FOR UPDATE``. When several slots are involved the rows are
locked in ascending id order, so two writers touching the same slots always
queue up in the same order instead of deadlocking.
"""

from __future__ import annotations

import logging
from typing import Iterable
from uuid import UUID

from django.db import transaction  # type: ignore
from django.utils import timezone  # type: ignore

from shared.domain.errors import CapacityExceeded, SlotNotFound

from .models import Slot

logger = logging.getLogger(__name__)


def _as_uuid(slot_id) -> UUID:
    if isinstance(slot_id, UUID):
        return slot_id
    try:
        return UUID(str(slot_id))
    except ValueError:
        raise SlotNotFound(f"Slot {slot_id} not found")


class SlotStore:
    """Capacity accounting for slots."""

    @staticmethod
    def get(slot_id) -> Slot:
        try:
            return Slot.objects.select_related("service", "tenant").get(pk=_as_uuid(slot_id))
        except Slot.DoesNotExist:
            raise SlotNotFound(f"Slot {slot_id} not found")

    @classmethod
    def get_available(cls, slot_id) -> int:
        """Current unbooked, unheld capacity of a slot."""
        return cls.get(slot_id).available_capacity

    @staticmethod
    def lock_slots(slot_ids: Iterable) -> dict[UUID, Slot]:
        """Lock the given slot rows in ascending id order.

        Must be called inside ``transaction.atomic()``; the locks are held
        until the outermost transaction ends. Unknown ids are simply absent
        from the result.
        """
        ordered = sorted({_as_uuid(slot_id) for slot_id in slot_ids})
        if not ordered:
            return {}
        rows = (
            Slot.objects.select_for_update(of=("self",))
            .select_related("service", "tenant")
            .filter(pk__in=ordered)
            .order_by("pk")
        )
        return {slot.pk: slot for slot in rows}

    @classmethod
    def lock_slot(cls, slot_id) -> Slot:
        slot = cls.lock_slots([slot_id]).get(_as_uuid(slot_id))
        if slot is None:
            raise SlotNotFound(f"Slot {slot_id} not found")
        return slot

    @classmethod
    def decrement(cls, slot_id, quantity: int) -> Slot:
        """Take ``quantity`` places from a slot or raise ``CapacityExceeded``."""
        if quantity <= 0:
            raise ValueError("quantity must be positive")

        with transaction.atomic():
            slot = cls.lock_slot(slot_id)
            if slot.available_capacity < quantity:
                logger.warning(
                    f"Capacity exceeded on slot {slot.pk}: "
                    f"requested {quantity}, available {slot.available_capacity}"
                )
                raise CapacityExceeded(
                    slot_id=slot.pk,
                    requested=quantity,
                    available=slot.available_capacity,
                )
            slot.available_capacity -= quantity
            slot.updated_at = timezone.now()
            slot.save(update_fields=["available_capacity", "updated_at"])

        logger.debug(f"Slot {slot.pk} decremented by {quantity}, now {slot.available_capacity}")
        return slot

    @classmethod
    def increment(cls, slot_id, quantity: int) -> Slot:
        """Return ``quantity`` places to a slot, never above its total."""
        if quantity <= 0:
            raise ValueError("quantity must be positive")

        with transaction.atomic():
            slot = cls.lock_slot(slot_id)
            target = slot.available_capacity + quantity
            if target > slot.total_capacity:
                logger.warning(
                    f"Increment of slot {slot.pk} by {quantity} would exceed total "
                    f"{slot.total_capacity}; clamping"
                )
                target = slot.total_capacity
            slot.available_capacity = target
            slot.updated_at = timezone.now()
            slot.save(update_fields=["available_capacity", "updated_at"])

        logger.debug(f"Slot {slot.pk} incremented by {quantity}, now {slot.available_capacity}")
        return slot

    @classmethod
    def retire(cls, slot_id) -> Slot:
        """Soft-retire a slot. Existing bookings keep pointing at it."""
        with transaction.atomic():
            slot = cls.lock_slot(slot_id)
            if slot.is_active:
                slot.is_active = False
                slot.save(update_fields=["is_active", "updated_at"])
                logger.info(f"Slot {slot.pk} retired")
        return slot

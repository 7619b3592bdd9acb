"""Reservation Lock Manager.

A hold takes capacity out of the slot immediately (through the Slot Store)
and gives it back when it is released by its owner or converted into a
booking. After its TTL it is reclaimed by the sweeper, or earlier by the next
hold or booking that locks the same slot.

Lock order is always slot row first, then hold row. Holds only leave the
``active`` state through conditional updates, so a release, a sweep and a
consume racing on the same hold give the capacity back at most once.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable

import structlog
from django.conf import settings  # type: ignore
from django.core.exceptions import ValidationError  # type: ignore
from django.db import transaction  # type: ignore
from django.db.models import Sum  # type: ignore
from django.utils import timezone  # type: ignore

from shared.domain.errors import LockExpired, LockNotFound, SlotUnavailable

from .models import ReservationLock
from .store import SlotStore

logger = logging.getLogger(__name__)
log = structlog.get_logger(__name__)

DEFAULT_HOLD_SECONDS = 120


def hold_seconds() -> int:
    return int(getattr(settings, "RESERVATION_HOLD_SECONDS", DEFAULT_HOLD_SECONDS))


class ReservationLockManager:
    """Acquire, validate, release and sweep reservation holds."""

    def __init__(self, store: type[SlotStore] = SlotStore):
        self.store = store

    def acquire(
        self,
        slot_id,
        quantity: int,
        owner_token: str,
        ttl: int | None = None,
        now: datetime | None = None,
    ) -> ReservationLock:
        """Hold ``quantity`` places on a slot for ``ttl`` seconds.

        Raises:
            SlotNotFound: unknown slot
            SlotUnavailable: slot retired or its service deactivated
            CapacityExceeded: not enough free capacity
        """
        if quantity <= 0:
            raise ValueError("quantity must be positive")
        if not owner_token:
            raise ValueError("owner_token is required")

        now = now or timezone.now()
        ttl = hold_seconds() if ttl is None else ttl

        with transaction.atomic():
            slot = self.store.lock_slot(slot_id)
            if not slot.is_active or not slot.service.is_active:
                raise SlotUnavailable(f"Slot {slot.pk} is not open for reservations")
            self.reclaim_expired_for([slot.pk], now=now)
            self.store.decrement(slot.pk, quantity)
            lock = ReservationLock.objects.create(
                slot=slot,
                quantity=quantity,
                owner_token=owner_token,
                expires_at=now + timedelta(seconds=ttl),
            )

        logger.info(
            f"Hold {lock.pk} acquired: {quantity} on slot {slot.pk}, "
            f"expires at {lock.expires_at.isoformat()}"
        )
        return lock

    def get(self, lock_id) -> ReservationLock:
        try:
            return ReservationLock.objects.select_related("slot").get(pk=lock_id)
        except (ReservationLock.DoesNotExist, ValidationError, ValueError):
            raise LockNotFound(f"Reservation hold {lock_id} not found")

    def validate(self, lock_id, owner_token: str, now: datetime | None = None) -> ReservationLock:
        """Return the hold if it is active, unexpired and owned by ``owner_token``.

        A hold owned by someone else is reported as not found.
        """
        lock = self.get(lock_id)
        if lock.owner_token != owner_token:
            raise LockNotFound(f"Reservation hold {lock_id} not found")
        if not lock.is_usable(now):
            raise LockExpired(f"Reservation hold {lock_id} has expired")
        return lock

    def release(self, lock_id, owner_token: str, now: datetime | None = None) -> bool:
        """Give a hold's capacity back. Returns False if it was already closed."""
        lock = self.get(lock_id)
        if lock.owner_token != owner_token:
            raise LockNotFound(f"Reservation hold {lock_id} not found")

        now = now or timezone.now()
        with transaction.atomic():
            self.store.lock_slots([lock.slot_id])
            closed = self._close(lock, ReservationLock.Status.RELEASED, now)
            if closed:
                self.store.increment(lock.slot_id, lock.quantity)

        if closed:
            logger.info(f"Hold {lock.pk} released by owner, {lock.quantity} returned to slot {lock.slot_id}")
        return closed

    def consume(self, lock: ReservationLock, group_id, now: datetime | None = None) -> None:
        """Convert a hold into a booking of ``group_id``.

        The held places go back to the slot so the caller can decrement the
        slot by the booked quantity. Must run inside the caller's
        transaction, after the slot row is locked.
        """
        now = now or timezone.now()
        updated = ReservationLock.objects.filter(
            pk=lock.pk,
            status=ReservationLock.Status.ACTIVE,
            expires_at__gt=now,
        ).update(
            status=ReservationLock.Status.CONSUMED,
            consumed_by_group=group_id,
            released_at=now,
            updated_at=now,
        )
        if not updated:
            raise LockExpired(f"Reservation hold {lock.pk} has expired")
        self.store.increment(lock.slot_id, lock.quantity)
        lock.status = ReservationLock.Status.CONSUMED
        lock.consumed_by_group = group_id
        logger.debug(f"Hold {lock.pk} consumed by group {group_id}")

    def sweep_expired(self, now: datetime | None = None, limit: int = 500) -> int:
        """Reclaim expired holds and return their capacity. Safe to run concurrently."""
        now = now or timezone.now()
        candidates = list(
            ReservationLock.objects.filter(
                status=ReservationLock.Status.ACTIVE,
                expires_at__lte=now,
            )
            .order_by("expires_at")
            .values_list("pk", "slot_id", "quantity")[:limit]
        )

        reclaimed = 0
        for lock_id, slot_id, quantity in candidates:
            with transaction.atomic():
                self.store.lock_slots([slot_id])
                reclaimed += self._expire(lock_id, slot_id, quantity, now)

        if reclaimed:
            logger.info(f"Reclaimed {reclaimed} expired reservation holds")
        return reclaimed

    def reclaim_expired_for(self, slot_ids: Iterable, now: datetime | None = None) -> int:
        """Expire lapsed holds on slots the caller has already locked.

        Lets a new hold or booking see the capacity of holds the sweeper
        has not reached yet. Must run inside the caller's transaction.
        """
        now = now or timezone.now()
        lapsed = ReservationLock.objects.filter(
            slot_id__in=list(slot_ids),
            status=ReservationLock.Status.ACTIVE,
            expires_at__lte=now,
        ).values_list("pk", "slot_id", "quantity")
        return sum(self._expire(lock_id, slot_id, quantity, now) for lock_id, slot_id, quantity in list(lapsed))

    def active_holds(self, slot_ids: Iterable, now: datetime | None = None) -> dict:
        """Held quantity per slot for unexpired active holds."""
        now = now or timezone.now()
        rows = (
            ReservationLock.objects.filter(
                slot_id__in=list(slot_ids),
                status=ReservationLock.Status.ACTIVE,
                expires_at__gt=now,
            )
            .values("slot_id")
            .annotate(held=Sum("quantity"))
        )
        return {row["slot_id"]: row["held"] for row in rows}

    def _expire(self, lock_id, slot_id, quantity: int, now: datetime) -> int:
        updated = ReservationLock.objects.filter(
            pk=lock_id,
            status=ReservationLock.Status.ACTIVE,
            expires_at__lte=now,
        ).update(
            status=ReservationLock.Status.EXPIRED,
            released_at=now,
            updated_at=now,
        )
        if not updated:
            return 0
        self.store.increment(slot_id, quantity)
        log.info("reservation_hold.expired", lock_id=str(lock_id), slot_id=str(slot_id), quantity=quantity)
        return 1

    def _close(self, lock: ReservationLock, status: str, now: datetime) -> bool:
        updated = ReservationLock.objects.filter(
            pk=lock.pk,
            status=ReservationLock.Status.ACTIVE,
        ).update(status=status, released_at=now, updated_at=now)
        if updated:
            lock.status = status
            lock.released_at = now
        return bool(updated)

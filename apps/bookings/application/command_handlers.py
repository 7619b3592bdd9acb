"""
Booking Command Handlers

Use cases of the booking domain. Each handler runs inside one
DjangoUnitOfWork, so its database changes commit together and its domain
events are published only after the commit.

Commands:
- CreateBookingGroupCommand: Book several slots for several customers at once
- CancelBookingCommand: Cancel a booking and give back capacity and allotment
- TransitionBookingCommand: Confirm, check in, complete or mark a no-show
"""

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from uuid import UUID
import logging

from django.core.exceptions import ValidationError
from django.db import IntegrityError
from django.utils import timezone

from shared.application.uow import DjangoUnitOfWork
from shared.domain.errors import (
    BookingNotFound,
    CapacityExceeded,
    DuplicateGroup,
    InvalidTransition,
    ItemCountMismatch,
    LockNotFound,
    SlotNotFound,
    SlotUnavailable,
    TenantMismatch,
)
from shared.domain.value_objects import Money
from apps.billing.queue import BillingJobQueue
from apps.billing.rules import invoice_required
from apps.bookings.domain.entities import (
    BookingGroup,
    BookingItem,
    BookingLine,
    BookingStatus,
    ensure_transition,
)
from apps.bookings.domain.events import BookingCancelled
from apps.bookings.models import Booking as BookingModel
from apps.bookings.models import BookingGroup as BookingGroupModel
from apps.catalog.models import Customer, Tenant
from apps.packages import coverage
from apps.packages.services import AllotmentProvider
from apps.slots.locks import ReservationLockManager
from apps.slots.models import ReservationLock, Slot
from apps.slots.store import SlotStore

logger = logging.getLogger(__name__)


# ===== Commands =====

@dataclass
class CreateBookingGroupCommand:
    """
    Command to create a group of bookings in one all-or-nothing step

    ``visitor_count``, when given, is the total the client believes it is
    booking and must equal the sum over ``items``.
    """
    tenant_id: UUID
    idempotency_key: str
    items: List[BookingItem]
    owner_token: str = ''
    visitor_count: Optional[int] = None
    guest_name: str = ''
    guest_email: str = ''
    guest_phone: str = ''


@dataclass
class CancelBookingCommand:
    """Command to cancel a booking of the given tenant"""
    booking_id: UUID
    tenant_id: UUID
    reason: str = ''


@dataclass
class TransitionBookingCommand:
    """Command to move a booking to confirmed, checked_in, completed or no_show"""
    booking_id: UUID
    target_status: str
    tenant_id: UUID


# ===== Results =====

@dataclass
class BookingGroupResult:
    booking_group_id: UUID
    replayed: bool
    bookings: List[BookingModel] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'booking_group_id': str(self.booking_group_id),
            'replayed': self.replayed,
            'bookings': [
                {
                    'booking_id': str(booking.pk),
                    'slot_id': str(booking.slot_id),
                    'visitor_count': booking.visitor_count,
                    'covered_quantity': booking.package_covered_quantity,
                    'paid_quantity': booking.paid_quantity,
                    'total_price': str(booking.total_price),
                    'currency': booking.currency,
                    'invoice_status': booking.invoice_status,
                }
                for booking in self.bookings
            ],
        }


# ===== Command Handlers =====

class CreateBookingGroupHandler:
    """
    Handler for CreateBookingGroup command

    Protocol (one transaction):
    1. Claim the idempotency key; a replay returns the stored group
    2. Lock every referenced slot row in ascending id order and reclaim
       its lapsed holds
    3. Validate tenant, slots, customers, holds and the summed capacity
    4. Split each item into covered/paid and persist the bookings
    5. Consume the holds and take the capacity from the slots
    6. Write the billing job (outbox) in the same transaction
    7. Commit; BookingGroupCreated is published after the commit

    Any failure rolls everything back. Nothing is written for a rejected
    request.
    """

    def __init__(
        self,
        slot_store=SlotStore,
        lock_manager: Optional[ReservationLockManager] = None,
        allotments: Optional[AllotmentProvider] = None,
        billing_queue: Optional[BillingJobQueue] = None,
    ):
        self.slot_store = slot_store
        self.lock_manager = lock_manager or ReservationLockManager(slot_store)
        self.allotments = allotments or AllotmentProvider()
        self.billing_queue = billing_queue or BillingJobQueue()

    def handle(self, command: CreateBookingGroupCommand) -> BookingGroupResult:
        """
        Returns: BookingGroupResult, with ``replayed=True`` for a known key

        Raises:
            TenantMismatch, SlotNotFound, SlotUnavailable, CapacityExceeded,
            ItemCountMismatch, LockNotFound, LockExpired
        """
        logger.info(
            f"Creating booking group for tenant {command.tenant_id}, "
            f"key {command.idempotency_key}, {len(command.items)} item(s)"
        )

        try:
            self._raise_if_duplicate(command)
            try:
                return self._create(command)
            except IntegrityError:
                # A concurrent request with the same key committed first.
                self._raise_if_duplicate(command)
                raise
        except DuplicateGroup as duplicate:
            logger.info(f"Replaying booking group {duplicate.group.pk} for key {command.idempotency_key}")
            return self._replay(duplicate.group)

    def _create(self, command: CreateBookingGroupCommand) -> BookingGroupResult:
        self._validate_items(command)

        with DjangoUnitOfWork() as uow:
            tenant = self._load_tenant(command.tenant_id)
            group_row = BookingGroupModel.objects.create(
                tenant=tenant,
                idempotency_key=command.idempotency_key,
            )

            slots = self.slot_store.lock_slots(item.slot_id for item in command.items)
            self._validate_slots(tenant, command.items, slots)
            if self.lock_manager.reclaim_expired_for(slots):
                slots = self.slot_store.lock_slots(slots)
            customers = self._load_customers(tenant, command.items)
            holds = self._validate_holds(command, slots)

            requested = Counter()
            for item in command.items:
                requested[item.slot_id] += item.visitor_count
            held = Counter()
            for lock in holds.values():
                held[lock.slot_id] += lock.quantity
            for slot_id in sorted(requested):
                slot = slots[slot_id]
                capacity = slot.available_capacity + held[slot_id]
                if requested[slot_id] > capacity:
                    raise CapacityExceeded(
                        slot_id=slot_id,
                        requested=requested[slot_id],
                        available=capacity,
                    )

            group = BookingGroup(
                id=group_row.pk,
                tenant_id=tenant.pk,
                idempotency_key=command.idempotency_key,
            )
            bookings = []
            for item in command.items:
                booking = self._book_item(uow, command, tenant, group_row, slots[item.slot_id], item, customers)
                bookings.append(booking)
                group.add_line(BookingLine(
                    booking_id=booking.pk,
                    slot_id=booking.slot_id,
                    split=coverage.CoverageSplit(booking.package_covered_quantity, booking.paid_quantity),
                    total_price=Money(booking.total_price, booking.currency),
                    invoice_required=invoice_required(booking.paid_quantity, booking.total_price),
                ))

            for lock in holds.values():
                self.lock_manager.consume(lock, group_row.pk)
            for slot_id in sorted(requested):
                self.slot_store.decrement(slot_id, requested[slot_id])

            self.billing_queue.enqueue(group_row.pk)

            group.mark_created(tenant.currency)
            uow.collect_events(group)

        logger.info(
            f"Booking group {group_row.pk} created: {len(bookings)} booking(s), "
            f"{group.total_visitors} visitor(s), invoice required: {group.requires_invoice}"
        )
        return BookingGroupResult(booking_group_id=group_row.pk, replayed=False, bookings=bookings)

    def _book_item(self, uow, command, tenant, group_row, slot, item, customers) -> BookingModel:
        customer = customers.get(item.customer_ref) if item.customer_ref else None
        service = slot.service

        remaining = self.allotments.get_remaining(customer, service, lock=True)
        split = coverage.split_for_booking(item.visitor_count, remaining)
        unit_price = Money(service.unit_price, tenant.currency)
        total_price = coverage.price_for(split, unit_price)

        booking = BookingModel.objects.create(
            tenant=tenant,
            group=group_row,
            slot=slot,
            service=service,
            customer=customer,
            guest_name='' if customer else command.guest_name,
            guest_email='' if customer else command.guest_email,
            guest_phone='' if customer else command.guest_phone,
            visitor_count=item.visitor_count,
            package_covered_quantity=split.covered,
            paid_quantity=split.paid,
            unit_price=unit_price.amount,
            total_price=total_price.amount,
            currency=tenant.currency,
            invoice_status=(
                BookingModel.InvoiceStatus.PENDING
                if invoice_required(split.paid, total_price.amount)
                else BookingModel.InvoiceStatus.NOT_REQUIRED
            ),
        )

        if split.covered:
            debit = self.allotments.decrement(customer, service, split.covered, booking)
            for event in debit.events:
                uow.add_event(event)

        logger.debug(
            f"Booking {booking.pk}: {item.visitor_count} on slot {slot.pk}, "
            f"covered {split.covered}, paid {split.paid}, total {total_price}"
        )
        return booking

    # ----- validation -----

    def _validate_items(self, command: CreateBookingGroupCommand):
        if not command.items:
            raise ItemCountMismatch("A booking group needs at least one item")
        if any(item.visitor_count < 1 for item in command.items):
            raise ItemCountMismatch("Every item must book at least one visitor")
        total = sum(item.visitor_count for item in command.items)
        if command.visitor_count is not None and command.visitor_count != total:
            raise ItemCountMismatch(
                f"Visitor count ({command.visitor_count}) must match the number of "
                f"booked places ({total})"
            )

    def _load_tenant(self, tenant_id) -> Tenant:
        try:
            tenant = Tenant.objects.get(pk=tenant_id)
        except (Tenant.DoesNotExist, ValidationError, ValueError):
            raise TenantMismatch(f"Tenant {tenant_id} not found")
        if not tenant.is_active:
            raise TenantMismatch(f"Tenant {tenant_id} is not active")
        return tenant

    def _validate_slots(self, tenant: Tenant, items: List[BookingItem], slots: Dict[UUID, Slot]):
        for item in items:
            slot = slots.get(item.slot_id)
            if slot is None:
                raise SlotNotFound(f"Slot {item.slot_id} not found")
            if slot.tenant_id != tenant.pk:
                raise TenantMismatch(f"Slot {slot.pk} does not belong to tenant {tenant.pk}")
            if not slot.is_active:
                raise SlotUnavailable(f"Slot {slot.pk} is retired")
            if not slot.service.is_active:
                raise SlotUnavailable(f"Service of slot {slot.pk} is not active")

    def _load_customers(self, tenant: Tenant, items: List[BookingItem]) -> Dict[UUID, Customer]:
        refs = {item.customer_ref for item in items if item.customer_ref}
        customers = {customer.pk: customer for customer in Customer.objects.filter(pk__in=refs)}
        for ref in refs:
            customer = customers.get(ref)
            if customer is None or customer.tenant_id != tenant.pk:
                raise TenantMismatch(f"Customer {ref} does not belong to tenant {tenant.pk}")
        return customers

    def _validate_holds(
        self,
        command: CreateBookingGroupCommand,
        slots: Dict[UUID, Slot],
    ) -> Dict[UUID, ReservationLock]:
        """Validate the holds the items reference. Holds are keyed by id."""
        per_lock = defaultdict(int)
        slot_of_lock = {}
        for item in command.items:
            if item.lock_id:
                per_lock[item.lock_id] += item.visitor_count
                if slot_of_lock.setdefault(item.lock_id, item.slot_id) != item.slot_id:
                    raise LockNotFound(f"Reservation hold {item.lock_id} is for a different slot")

        holds = {}
        for lock_id, wanted in per_lock.items():
            lock = self.lock_manager.validate(lock_id, command.owner_token)
            if lock.slot_id != slot_of_lock[lock_id]:
                raise LockNotFound(f"Reservation hold {lock_id} is for a different slot")
            if lock.quantity < wanted:
                raise CapacityExceeded(
                    slot_id=lock.slot_id,
                    requested=wanted,
                    available=lock.quantity,
                    message=(
                        f"Reservation hold {lock_id} covers {lock.quantity} places, "
                        f"but {wanted} requested"
                    ),
                )
            holds[lock_id] = lock
        return holds

    # ----- idempotency -----

    def _find_existing(self, command: CreateBookingGroupCommand) -> Optional[BookingGroupModel]:
        try:
            return BookingGroupModel.objects.filter(
                tenant_id=command.tenant_id,
                idempotency_key=command.idempotency_key,
            ).first()
        except (ValidationError, ValueError):
            return None

    def _raise_if_duplicate(self, command: CreateBookingGroupCommand):
        existing = self._find_existing(command)
        if existing is not None:
            raise DuplicateGroup(group=existing)

    def _replay(self, group_row: BookingGroupModel) -> BookingGroupResult:
        bookings = list(group_row.bookings.order_by('created_at', 'pk'))
        return BookingGroupResult(booking_group_id=group_row.pk, replayed=True, bookings=bookings)


def _load_booking_for_update(slot_store, booking_id, tenant_id) -> BookingModel:
    """Lock the booking's slot, then the booking itself"""
    try:
        slot_id = BookingModel.objects.values_list('slot_id', flat=True).get(pk=booking_id)
    except (BookingModel.DoesNotExist, ValidationError, ValueError):
        raise BookingNotFound(f"Booking {booking_id} not found")

    slot_store.lock_slots([slot_id])
    booking = (
        BookingModel.objects.select_for_update(of=('self',))
        .select_related('slot', 'service', 'customer')
        .get(pk=booking_id)
    )
    if str(booking.tenant_id) != str(tenant_id):
        raise TenantMismatch(f"Booking {booking_id} does not belong to tenant {tenant_id}")
    return booking


class CancelBookingHandler:
    """Handler for cancelling a booking"""

    def __init__(self, slot_store=SlotStore, allotments: Optional[AllotmentProvider] = None):
        self.slot_store = slot_store
        self.allotments = allotments or AllotmentProvider()

    def handle(self, command: CancelBookingCommand) -> BookingModel:
        """Cancel the booking, return its places to the slot and its visits to the package"""
        logger.info(f"Cancelling booking {command.booking_id}, reason: {command.reason}")

        with DjangoUnitOfWork() as uow:
            booking = _load_booking_for_update(self.slot_store, command.booking_id, command.tenant_id)
            ensure_transition(booking.status, BookingStatus.CANCELLED.value)

            booking.mark_cancelled(command.reason)
            self.slot_store.increment(booking.slot_id, booking.visitor_count)
            restored = self.allotments.restore_for_booking(booking)

            uow.add_event(BookingCancelled(
                aggregate_id=booking.pk,
                booking_id=booking.pk,
                slot_id=booking.slot_id,
                visitor_count=booking.visitor_count,
                allotment_restored=restored,
                reason=command.reason,
            ))

        logger.info(f"Booking {booking.pk} cancelled, {booking.visitor_count} place(s) returned")
        return booking


class TransitionBookingHandler:
    """Handler for the non-cancelling lifecycle moves"""

    def __init__(self, slot_store=SlotStore):
        self.slot_store = slot_store

    def handle(self, command: TransitionBookingCommand) -> BookingModel:
        if command.target_status == BookingStatus.CANCELLED.value:
            raise InvalidTransition("Use the cancel operation to cancel a booking")

        logger.info(f"Moving booking {command.booking_id} to {command.target_status}")

        with DjangoUnitOfWork():
            booking = _load_booking_for_update(self.slot_store, command.booking_id, command.tenant_id)
            old_status = booking.status
            target = ensure_transition(old_status, command.target_status)

            booking.status = target.value
            booking.updated_at = timezone.now()
            booking.save(update_fields=['status', 'updated_at'])

        logger.info(f"Booking {booking.pk} moved from {old_status} to {booking.status}")
        return booking

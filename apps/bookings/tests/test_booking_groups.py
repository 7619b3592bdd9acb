from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal

import pytest
from django.db import connections
from django.utils import timezone

from apps.billing.models import BillingJob
from apps.bookings.application.command_handlers import (
    CancelBookingCommand,
    CancelBookingHandler,
    CreateBookingGroupCommand,
    CreateBookingGroupHandler,
    TransitionBookingCommand,
    TransitionBookingHandler,
)
from apps.bookings.domain.entities import BookingItem
from apps.bookings.models import Booking, BookingGroup
from apps.catalog.models import Customer
from apps.packages.models import AllotmentBalance
from apps.slots.locks import ReservationLockManager
from apps.slots.models import ReservationLock
from apps.slots.store import SlotStore
from shared.domain.errors import (
    BookingNotFound,
    CapacityExceeded,
    InvalidTransition,
    ItemCountMismatch,
    LockExpired,
    SlotUnavailable,
    TenantMismatch,
)


def _command(tenant, items, key="group-1", **kwargs):
    return CreateBookingGroupCommand(tenant_id=tenant.pk, idempotency_key=key, items=items, **kwargs)


@pytest.fixture
def handler():
    return CreateBookingGroupHandler()


@pytest.mark.django_db
def test_group_books_every_item_and_enqueues_billing(handler, tenant, make_slot):
    first = make_slot(capacity=5)
    second = make_slot(capacity=5, hours_ahead=48)

    result = handler.handle(_command(
        tenant,
        [BookingItem(first.pk, 2), BookingItem(second.pk, 3)],
        visitor_count=5,
        guest_name="Walk-in",
        guest_email="walkin@example.com",
    ))

    assert result.replayed is False
    assert Booking.objects.filter(group_id=result.booking_group_id).count() == 2
    assert SlotStore.get_available(first.pk) == 3
    assert SlotStore.get_available(second.pk) == 2
    job = BillingJob.objects.get(booking_group_id=result.booking_group_id)
    assert job.status == BillingJob.Status.QUEUED
    booking = Booking.objects.get(slot=first)
    assert booking.total_price == Decimal("100.00")
    assert booking.invoice_status == Booking.InvoiceStatus.PENDING
    assert booking.contact["email"] == "walkin@example.com"


@pytest.mark.django_db
def test_group_is_all_or_nothing(handler, tenant, make_slot):
    roomy = make_slot(capacity=5)
    full = make_slot(capacity=1, hours_ahead=48)

    with pytest.raises(CapacityExceeded):
        handler.handle(_command(tenant, [BookingItem(roomy.pk, 2), BookingItem(full.pk, 2)]))

    assert Booking.objects.count() == 0
    assert BookingGroup.objects.count() == 0
    assert BillingJob.objects.count() == 0
    assert SlotStore.get_available(roomy.pk) == 5
    assert SlotStore.get_available(full.pk) == 1


@pytest.mark.django_db
def test_items_on_the_same_slot_are_summed(handler, tenant, make_slot):
    slot = make_slot(capacity=4)

    with pytest.raises(CapacityExceeded):
        handler.handle(_command(tenant, [BookingItem(slot.pk, 3), BookingItem(slot.pk, 2)]))

    assert SlotStore.get_available(slot.pk) == 4


@pytest.mark.django_db
def test_same_key_replays_the_first_result(handler, tenant, make_slot):
    slot = make_slot(capacity=5)
    command = _command(tenant, [BookingItem(slot.pk, 2)], key="retry-me")

    first = handler.handle(command)
    second = handler.handle(command)

    assert second.replayed is True
    assert second.booking_group_id == first.booking_group_id
    assert [b.pk for b in second.bookings] == [b.pk for b in first.bookings]
    assert Booking.objects.count() == 1
    assert SlotStore.get_available(slot.pk) == 3


@pytest.mark.django_db
def test_visitor_count_must_match_items(handler, tenant, make_slot):
    slot = make_slot(capacity=5)

    with pytest.raises(ItemCountMismatch):
        handler.handle(_command(tenant, [BookingItem(slot.pk, 2)], visitor_count=3))
    with pytest.raises(ItemCountMismatch):
        handler.handle(_command(tenant, []))

    assert BookingGroup.objects.count() == 0


@pytest.mark.django_db
def test_slot_of_another_tenant_is_rejected(handler, tenant, other_tenant, make_slot):
    foreign = make_slot(capacity=5, slot_tenant=other_tenant)

    with pytest.raises(TenantMismatch):
        handler.handle(_command(tenant, [BookingItem(foreign.pk, 1)]))

    assert SlotStore.get_available(foreign.pk) == 5


@pytest.mark.django_db
def test_customer_of_another_tenant_is_rejected(handler, tenant, other_tenant, make_slot):
    slot = make_slot(capacity=5)
    stranger = Customer.objects.create(tenant=other_tenant, name="Stranger")

    with pytest.raises(TenantMismatch):
        handler.handle(_command(tenant, [BookingItem(slot.pk, 1, customer_ref=stranger.pk)]))


@pytest.mark.django_db
def test_retired_slot_is_rejected(handler, tenant, make_slot):
    slot = make_slot(capacity=5)
    SlotStore.retire(slot.pk)

    with pytest.raises(SlotUnavailable):
        handler.handle(_command(tenant, [BookingItem(slot.pk, 1)]))


@pytest.mark.django_db
def test_package_covers_part_of_the_group(handler, tenant, customer, make_slot, make_package):
    _, balance = make_package(3)
    first = make_slot(capacity=5)
    second = make_slot(capacity=5, hours_ahead=48)

    result = handler.handle(_command(tenant, [
        BookingItem(first.pk, 2, customer_ref=customer.pk),
        BookingItem(second.pk, 2, customer_ref=customer.pk),
    ]))

    bookings = {b.slot_id: b for b in result.bookings}
    assert (bookings[first.pk].package_covered_quantity, bookings[first.pk].paid_quantity) == (2, 0)
    assert bookings[first.pk].total_price == Decimal("0.00")
    assert bookings[first.pk].invoice_status == Booking.InvoiceStatus.NOT_REQUIRED
    assert (bookings[second.pk].package_covered_quantity, bookings[second.pk].paid_quantity) == (1, 1)
    assert bookings[second.pk].total_price == Decimal("50.00")
    balance.refresh_from_db()
    assert balance.remaining_quantity == 0


@pytest.mark.django_db
def test_hold_is_consumed_by_the_group(handler, tenant, make_slot):
    slot = make_slot(capacity=3)
    lock = ReservationLockManager().acquire(slot.pk, 3, "checkout-1")
    assert SlotStore.get_available(slot.pk) == 0

    result = handler.handle(_command(
        tenant,
        [BookingItem(slot.pk, 3, lock_id=lock.pk)],
        owner_token="checkout-1",
    ))

    lock.refresh_from_db()
    assert lock.status == ReservationLock.Status.CONSUMED
    assert lock.consumed_by_group == result.booking_group_id
    assert SlotStore.get_available(slot.pk) == 0
    assert ReservationLockManager().sweep_expired(now=timezone.now() + timedelta(hours=1)) == 0


@pytest.mark.django_db
def test_expired_hold_rejects_the_group(handler, tenant, make_slot):
    slot = make_slot(capacity=3)
    lock = ReservationLockManager().acquire(
        slot.pk, 2, "checkout-1", ttl=5, now=timezone.now() - timedelta(minutes=1)
    )

    with pytest.raises(LockExpired):
        handler.handle(_command(tenant, [BookingItem(slot.pk, 2, lock_id=lock.pk)], owner_token="checkout-1"))

    assert Booking.objects.count() == 0


@pytest.mark.django_db
def test_lapsed_hold_does_not_block_the_group(handler, tenant, make_slot):
    slot = make_slot(capacity=3)
    stale = ReservationLockManager().acquire(
        slot.pk, 3, "checkout-1", ttl=5, now=timezone.now() - timedelta(minutes=5)
    )

    result = handler.handle(_command(tenant, [BookingItem(slot.pk, 2)]))

    stale.refresh_from_db()
    assert stale.status == ReservationLock.Status.EXPIRED
    assert result.bookings[0].visitor_count == 2
    assert SlotStore.get_available(slot.pk) == 1


@pytest.mark.django_db
def test_cancel_returns_capacity_and_allotment(handler, tenant, customer, make_slot, make_package):
    _, balance = make_package(2)
    slot = make_slot(capacity=5)
    result = handler.handle(_command(tenant, [BookingItem(slot.pk, 3, customer_ref=customer.pk)]))
    booking = result.bookings[0]

    cancelled = CancelBookingHandler().handle(
        CancelBookingCommand(booking_id=booking.pk, tenant_id=tenant.pk, reason="Sandstorm")
    )

    assert cancelled.status == Booking.Status.CANCELLED
    assert cancelled.invoice_status == Booking.InvoiceStatus.NOT_REQUIRED
    assert SlotStore.get_available(slot.pk) == 5
    balance.refresh_from_db()
    assert balance.remaining_quantity == 2
    with pytest.raises(InvalidTransition):
        CancelBookingHandler().handle(CancelBookingCommand(booking_id=booking.pk, tenant_id=tenant.pk))
    assert SlotStore.get_available(slot.pk) == 5


@pytest.mark.django_db
def test_lifecycle_transitions(handler, tenant, make_slot):
    slot = make_slot(capacity=5)
    booking = handler.handle(_command(tenant, [BookingItem(slot.pk, 2)])).bookings[0]
    transition = TransitionBookingHandler()

    for target in ("confirmed", "checked_in", "completed"):
        booking = transition.handle(
            TransitionBookingCommand(booking_id=booking.pk, tenant_id=tenant.pk, target_status=target)
        )

    assert booking.status == Booking.Status.COMPLETED
    with pytest.raises(InvalidTransition):
        transition.handle(TransitionBookingCommand(booking_id=booking.pk, tenant_id=tenant.pk, target_status="confirmed"))
    with pytest.raises(InvalidTransition):
        CancelBookingHandler().handle(CancelBookingCommand(booking_id=booking.pk, tenant_id=tenant.pk))


@pytest.mark.django_db
def test_no_show_keeps_capacity_consumed(handler, tenant, make_slot):
    slot = make_slot(capacity=5)
    booking = handler.handle(_command(tenant, [BookingItem(slot.pk, 2)])).bookings[0]
    transition = TransitionBookingHandler()

    transition.handle(TransitionBookingCommand(booking_id=booking.pk, tenant_id=tenant.pk, target_status="confirmed"))
    transition.handle(TransitionBookingCommand(booking_id=booking.pk, tenant_id=tenant.pk, target_status="no_show"))

    assert SlotStore.get_available(slot.pk) == 3


@pytest.mark.django_db
def test_unknown_booking_is_not_found(tenant):
    with pytest.raises(BookingNotFound):
        CancelBookingHandler().handle(
            CancelBookingCommand(booking_id="8c4b0d9e-3b7f-4f7e-9a77-1c2b3d4e5f60", tenant_id=tenant.pk)
        )


@pytest.mark.django_db
def test_balances_stay_balanced_after_cancellation(handler, tenant, customer, make_slot, make_package):
    make_package(4)
    slot = make_slot(capacity=10)
    booking = handler.handle(_command(tenant, [BookingItem(slot.pk, 6, customer_ref=customer.pk)])).bookings[0]

    CancelBookingHandler().handle(CancelBookingCommand(booking_id=booking.pk, tenant_id=tenant.pk))

    for balance in AllotmentBalance.objects.all():
        assert balance.original_quantity == balance.used_quantity + balance.remaining_quantity


@pytest.mark.django_db
def test_commit_kicks_the_billing_worker(handler, tenant, make_slot, django_capture_on_commit_callbacks):
    slot = make_slot(capacity=5)

    with django_capture_on_commit_callbacks(execute=True):
        result = handler.handle(_command(tenant, [BookingItem(slot.pk, 2)], guest_email="guest@example.com"))

    job = BillingJob.objects.get(booking_group_id=result.booking_group_id)
    assert (job.status, job.outcome) == (BillingJob.Status.COMPLETED, BillingJob.Outcome.INVOICED)
    assert Booking.objects.get(group_id=result.booking_group_id).invoice_reference.startswith("inv_")


@pytest.mark.django_db
def test_booking_of_another_tenant_cannot_be_changed(handler, tenant, other_tenant, make_slot):
    slot = make_slot(capacity=5)
    booking = handler.handle(_command(tenant, [BookingItem(slot.pk, 2)])).bookings[0]

    with pytest.raises(TenantMismatch):
        CancelBookingHandler().handle(CancelBookingCommand(booking_id=booking.pk, tenant_id=other_tenant.pk))
    with pytest.raises(TenantMismatch):
        TransitionBookingHandler().handle(
            TransitionBookingCommand(booking_id=booking.pk, tenant_id=other_tenant.pk, target_status="confirmed")
        )

    booking.refresh_from_db()
    assert booking.status == Booking.Status.PENDING
    assert SlotStore.get_available(slot.pk) == 3


@pytest.mark.django_db(transaction=True)
def test_concurrent_groups_never_oversell(tenant, make_slot):
    slot = make_slot(capacity=5)

    def book(attempt):
        try:
            result = CreateBookingGroupHandler().handle(
                _command(tenant, [BookingItem(slot.pk, 1)], key=f"rush-{attempt}")
            )
            return sum(booking.visitor_count for booking in result.bookings)
        except CapacityExceeded:
            return 0
        finally:
            connections.close_all()

    with ThreadPoolExecutor(max_workers=8) as pool:
        booked = list(pool.map(book, range(12)))

    assert sum(booked) == 5
    assert booked.count(1) == 5
    assert SlotStore.get_available(slot.pk) == 0
    assert Booking.objects.filter(slot=slot).count() == 5

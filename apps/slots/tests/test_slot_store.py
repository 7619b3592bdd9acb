from concurrent.futures import ThreadPoolExecutor

import pytest
from django.core.exceptions import ValidationError
from django.db import connections

from apps.slots.models import Slot
from apps.slots.store import SlotStore
from shared.domain.errors import CapacityExceeded, SlotNotFound


@pytest.mark.django_db
def test_new_slot_starts_fully_available(make_slot):
    slot = make_slot(capacity=8)

    assert slot.available_capacity == 8
    assert SlotStore.get_available(slot.pk) == 8


@pytest.mark.django_db
def test_decrement_never_oversells(make_slot):
    slot = make_slot(capacity=5)

    SlotStore.decrement(slot.pk, 3)
    with pytest.raises(CapacityExceeded) as excinfo:
        SlotStore.decrement(slot.pk, 3)

    assert excinfo.value.requested == 3
    assert excinfo.value.available == 2
    assert excinfo.value.retryable is True
    assert SlotStore.get_available(slot.pk) == 2


@pytest.mark.django_db
def test_decrement_to_exactly_zero(make_slot):
    slot = make_slot(capacity=4)

    SlotStore.decrement(slot.pk, 4)

    assert SlotStore.get_available(slot.pk) == 0
    with pytest.raises(CapacityExceeded):
        SlotStore.decrement(slot.pk, 1)


@pytest.mark.django_db
def test_increment_is_clamped_to_total(make_slot):
    slot = make_slot(capacity=5)
    SlotStore.decrement(slot.pk, 2)

    SlotStore.increment(slot.pk, 10)

    assert SlotStore.get_available(slot.pk) == 5


@pytest.mark.django_db
def test_non_positive_quantities_are_rejected(make_slot):
    slot = make_slot(capacity=5)

    with pytest.raises(ValueError):
        SlotStore.decrement(slot.pk, 0)
    with pytest.raises(ValueError):
        SlotStore.increment(slot.pk, -1)


@pytest.mark.django_db
def test_unknown_slot_raises_not_found():
    with pytest.raises(SlotNotFound):
        SlotStore.get("7a1f7c36-4d8f-4d63-9a52-7d1c0c0f0001")
    with pytest.raises(SlotNotFound):
        SlotStore.decrement("not-a-uuid", 1)


@pytest.mark.django_db
def test_lock_slots_returns_known_rows_only(make_slot):
    first = make_slot(capacity=3)
    second = make_slot(capacity=3, hours_ahead=48)

    locked = SlotStore.lock_slots([second.pk, first.pk, "7a1f7c36-4d8f-4d63-9a52-7d1c0c0f0001"])

    assert set(locked) == {first.pk, second.pk}


@pytest.mark.django_db
def test_total_capacity_is_immutable(make_slot):
    slot = Slot.objects.get(pk=make_slot(capacity=5).pk)
    slot.total_capacity = 6

    with pytest.raises(ValidationError):
        slot.save()


@pytest.mark.django_db
def test_retire_keeps_capacity(make_slot):
    slot = make_slot(capacity=5)

    SlotStore.retire(slot.pk)

    slot.refresh_from_db()
    assert slot.is_active is False
    assert slot.available_capacity == 5


@pytest.mark.django_db(transaction=True)
def test_concurrent_decrements_never_oversell(make_slot):
    slot = make_slot(capacity=5)

    def take_one(_):
        try:
            SlotStore.decrement(slot.pk, 1)
            return True
        except CapacityExceeded:
            return False
        finally:
            connections.close_all()

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(take_one, range(12)))

    assert results.count(True) == 5
    assert SlotStore.get_available(slot.pk) == 0

"""Shared pytest fixtures: a tenant with one service, customers and slots."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from apps.catalog.models import Customer, Service, Tenant
from apps.packages.models import AllotmentBalance, PackageSubscription
from apps.slots.models import Slot


@pytest.fixture
def tenant(db):
    return Tenant.objects.create(name="Diriyah Tours", currency="SAR")


@pytest.fixture
def other_tenant(db):
    return Tenant.objects.create(name="Other Tenant", currency="SAR")


@pytest.fixture
def service(tenant):
    return Service.objects.create(tenant=tenant, name="Guided tour", unit_price=Decimal("50.00"))


@pytest.fixture
def customer(tenant):
    return Customer.objects.create(
        tenant=tenant,
        name="Sara",
        email="sara@example.com",
        phone="+966500000001",
    )


@pytest.fixture
def make_slot(tenant, service):
    def _make(capacity: int = 10, *, hours_ahead: int = 24, slot_service=None, slot_tenant=None) -> Slot:
        starts_at = timezone.now() + timedelta(hours=hours_ahead)
        return Slot.objects.create(
            tenant=slot_tenant or tenant,
            service=slot_service or service,
            starts_at=starts_at,
            ends_at=starts_at + timedelta(hours=1),
            total_capacity=capacity,
        )

    return _make


@pytest.fixture
def make_package(customer, service):
    def _make(visits: int, *, name: str = "10 visit pass", package_customer=None, package_service=None):
        owner = package_customer or customer
        subscription = PackageSubscription.objects.create(
            tenant=owner.tenant,
            customer=owner,
            name=name,
        )
        balance = AllotmentBalance.objects.create(
            subscription=subscription,
            service=package_service or service,
            original_quantity=visits,
        )
        return subscription, balance

    return _make


@pytest.fixture
def staff_user(db):
    return get_user_model().objects.create_user(
        username="operator",
        password="OperatorPass123",
        email="operator@example.com",
        is_staff=True,
    )


@pytest.fixture
def api_client(staff_user):
    client = APIClient()
    client.force_authenticate(staff_user)
    return client

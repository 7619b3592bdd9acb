"""Tenant, service and customer records that every reservation hangs off."""

from __future__ import annotations

import uuid

from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class Tenant(models.Model):
    """An organisation selling slots on the platform."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    currency = models.CharField(max_length=3, default="SAR")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Tenant")
        verbose_name_plural = _("Tenants")
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name


class Service(models.Model):
    """Something a tenant sells by the visitor: a tour, a class, a ticket type."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name="services")
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    unit_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text=_("Price per paying visitor. Free visits are sold as packages."),
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Service")
        verbose_name_plural = _("Services")
        ordering = ["tenant", "name"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(unit_price__gt=0),
                name="service_unit_price_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.tenant_id})"


class Customer(models.Model):
    """A tenant's customer; may own pre-paid packages."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name="customers")
    name = models.CharField(max_length=200)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=32, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Customer")
        verbose_name_plural = _("Customers")
        ordering = ["name"]
        indexes = [
            models.Index(fields=["tenant", "email"]),
        ]

    def __str__(self) -> str:
        return self.name

    @property
    def contact(self) -> dict[str, str]:
        return {"name": self.name, "email": self.email, "phone": self.phone}

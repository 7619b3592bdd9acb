"""Booking domain models."""

from __future__ import annotations

import uuid
from decimal import Decimal

from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class BookingGroup(models.Model):
    """The idempotent record of one bulk booking request."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey("catalog.Tenant", on_delete=models.CASCADE, related_name="booking_groups")
    idempotency_key = models.CharField(max_length=128)
    invoice_reference = models.CharField(max_length=128, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Booking group")
        verbose_name_plural = _("Booking groups")
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant", "idempotency_key"],
                name="booking_group_idempotency_key",
            ),
        ]

    def __str__(self) -> str:
        return f"Group {self.pk} ({self.idempotency_key})"


class Booking(models.Model):
    """A committed reservation of ``visitor_count`` places on one slot."""

    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        CONFIRMED = "confirmed", _("Confirmed")
        CHECKED_IN = "checked_in", _("Checked in")
        COMPLETED = "completed", _("Completed")
        CANCELLED = "cancelled", _("Cancelled")
        NO_SHOW = "no_show", _("No show")

    class InvoiceStatus(models.TextChoices):
        PENDING = "pending", _("Awaiting invoice")
        NOT_REQUIRED = "not_required", _("Nothing to invoice")
        ISSUED = "issued", _("Invoice issued")
        FAILED = "failed", _("Invoicing failed")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey("catalog.Tenant", on_delete=models.CASCADE, related_name="bookings")
    group = models.ForeignKey(
        BookingGroup,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="bookings",
    )
    slot = models.ForeignKey("slots.Slot", on_delete=models.PROTECT, related_name="bookings")
    service = models.ForeignKey("catalog.Service", on_delete=models.PROTECT, related_name="bookings")
    customer = models.ForeignKey(
        "catalog.Customer",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="bookings",
    )
    guest_name = models.CharField(max_length=200, blank=True)
    guest_email = models.EmailField(blank=True)
    guest_phone = models.CharField(max_length=32, blank=True)
    visitor_count = models.PositiveIntegerField()
    package_covered_quantity = models.PositiveIntegerField(default=0)
    paid_quantity = models.PositiveIntegerField(default=0)
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)
    total_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default="SAR")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    invoice_reference = models.CharField(max_length=128, null=True, blank=True)
    invoice_status = models.CharField(
        max_length=16,
        choices=InvoiceStatus.choices,
        default=InvoiceStatus.PENDING,
    )
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Booking")
        verbose_name_plural = _("Bookings")
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(visitor_count__gte=1),
                name="booking_visitor_count_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(
                    visitor_count=models.F("package_covered_quantity") + models.F("paid_quantity")
                ),
                name="booking_quantities_add_up",
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(paid_quantity=0, total_price=0)
                    | models.Q(paid_quantity__gt=0, total_price__gt=0)
                ),
                name="booking_price_matches_paid_quantity",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant", "status"]),
            models.Index(fields=["slot", "status"]),
            models.Index(fields=["invoice_status"]),
        ]

    def __str__(self) -> str:
        return f"Booking {self.pk} x{self.visitor_count} on {self.slot_id}"

    @property
    def is_chargeable(self) -> bool:
        from apps.billing.rules import invoice_required

        return self.status != self.Status.CANCELLED and invoice_required(self.paid_quantity, self.total_price)

    @property
    def contact(self) -> dict[str, str]:
        if self.customer_id:
            return self.customer.contact
        return {"name": self.guest_name, "email": self.guest_email, "phone": self.guest_phone}

    def mark_cancelled(self, reason: str = "") -> None:
        self.status = self.Status.CANCELLED
        self.cancellation_reason = reason[:255]
        self.cancelled_at = timezone.now()
        if self.invoice_status == self.InvoiceStatus.PENDING:
            self.invoice_status = self.InvoiceStatus.NOT_REQUIRED
        self.save(
            update_fields=[
                "status",
                "cancellation_reason",
                "cancelled_at",
                "invoice_status",
                "updated_at",
            ]
        )

"""Pre-paid package subscriptions and their per-service allotments."""

from __future__ import annotations

import uuid

from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class PackageSubscription(models.Model):
    """A customer's purchased package of visits."""

    class Status(models.TextChoices):
        ACTIVE = "active", _("Active")
        CANCELLED = "cancelled", _("Cancelled")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey("catalog.Tenant", on_delete=models.CASCADE, related_name="subscriptions")
    customer = models.ForeignKey("catalog.Customer", on_delete=models.CASCADE, related_name="subscriptions")
    name = models.CharField(max_length=200)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACTIVE)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Package subscription")
        verbose_name_plural = _("Package subscriptions")
        ordering = ["created_at"]

    def __str__(self) -> str:
        return f"{self.name} for {self.customer_id}"


class AllotmentBalance(models.Model):
    """How many visits of one service a subscription still covers."""

    subscription = models.ForeignKey(PackageSubscription, on_delete=models.CASCADE, related_name="balances")
    service = models.ForeignKey("catalog.Service", on_delete=models.CASCADE, related_name="allotments")
    original_quantity = models.PositiveIntegerField()
    used_quantity = models.PositiveIntegerField(default=0)
    remaining_quantity = models.PositiveIntegerField()
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Allotment balance")
        verbose_name_plural = _("Allotment balances")
        constraints = [
            models.UniqueConstraint(fields=["subscription", "service"], name="allotment_unique_service"),
            models.CheckConstraint(
                condition=models.Q(remaining_quantity__gte=0),
                name="allotment_remaining_non_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(
                    original_quantity=models.F("used_quantity") + models.F("remaining_quantity")
                ),
                name="allotment_balanced",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.remaining_quantity}/{self.original_quantity} of {self.service_id}"

    def save(self, *args, **kwargs):  # type: ignore
        if self._state.adding and self.remaining_quantity is None:
            self.remaining_quantity = self.original_quantity - self.used_quantity
        super().save(*args, **kwargs)


class AllotmentUsage(models.Model):
    """Ledger row: visits of a balance consumed by one booking."""

    booking = models.ForeignKey("bookings.Booking", on_delete=models.CASCADE, related_name="allotment_usages")
    balance = models.ForeignKey(AllotmentBalance, on_delete=models.CASCADE, related_name="usages")
    quantity = models.PositiveIntegerField()
    restored_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Allotment usage")
        verbose_name_plural = _("Allotment usages")
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0),
                name="allotment_usage_quantity_positive",
            ),
        ]
        indexes = [
            models.Index(fields=["booking", "restored_at"]),
        ]


class AllotmentExhaustion(models.Model):
    """Marks that the customer was told a balance ran out. Written once."""

    subscription = models.ForeignKey(PackageSubscription, on_delete=models.CASCADE, related_name="exhaustions")
    service = models.ForeignKey("catalog.Service", on_delete=models.CASCADE, related_name="+")
    exhausted_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Allotment exhaustion")
        verbose_name_plural = _("Allotment exhaustions")
        constraints = [
            models.UniqueConstraint(fields=["subscription", "service"], name="allotment_exhaustion_once"),
        ]

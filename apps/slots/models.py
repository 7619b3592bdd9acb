"""Slot capacity and reservation hold models."""

from __future__ import annotations

import uuid
from datetime import datetime

from django.core.exceptions import ValidationError  # type: ignore
from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from shared.domain.value_objects import TimeWindow


class Slot(models.Model):
    """A finite-capacity time window of a tenant's service.

    ``available_capacity`` is the number of places that are neither booked
    nor held. It only changes through :class:`apps.slots.store.SlotStore`.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey("catalog.Tenant", on_delete=models.CASCADE, related_name="slots")
    service = models.ForeignKey("catalog.Service", on_delete=models.PROTECT, related_name="slots")
    starts_at = models.DateTimeField()
    ends_at = models.DateTimeField()
    total_capacity = models.PositiveIntegerField()
    available_capacity = models.PositiveIntegerField()
    is_active = models.BooleanField(
        default=True,
        help_text=_("Retired slots keep their bookings but accept no new holds."),
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Slot")
        verbose_name_plural = _("Slots")
        ordering = ["starts_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(available_capacity__gte=0),
                name="slot_available_non_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(available_capacity__lte=models.F("total_capacity")),
                name="slot_available_within_total",
            ),
            models.CheckConstraint(
                condition=models.Q(ends_at__gt=models.F("starts_at")),
                name="slot_valid_window",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant", "starts_at"]),
            models.Index(fields=["service", "starts_at"]),
        ]

    def __str__(self) -> str:
        return f"Slot {self.starts_at:%Y-%m-%d %H:%M} ({self.available_capacity}/{self.total_capacity})"

    @classmethod
    def from_db(cls, db, field_names, values):  # type: ignore
        instance = super().from_db(db, field_names, values)
        instance._loaded_total_capacity = instance.__dict__.get("total_capacity")
        return instance

    @property
    def window(self) -> TimeWindow:
        return TimeWindow(self.starts_at, self.ends_at)

    def clean(self) -> None:
        if self.starts_at and self.ends_at and self.starts_at >= self.ends_at:
            raise ValidationError(_("Slot must end after it starts."))

    def save(self, *args, **kwargs):  # type: ignore
        if self._state.adding:
            if self.available_capacity is None:
                self.available_capacity = self.total_capacity
        else:
            loaded = getattr(self, "_loaded_total_capacity", None)
            if loaded is not None and loaded != self.total_capacity:
                raise ValidationError(_("Total capacity of an existing slot cannot change."))
        self.clean()
        super().save(*args, **kwargs)


class ReservationLock(models.Model):
    """A short-lived hold on slot capacity owned by one client session."""

    class Status(models.TextChoices):
        ACTIVE = "active", _("Active")
        CONSUMED = "consumed", _("Consumed by a booking")
        RELEASED = "released", _("Released by owner")
        EXPIRED = "expired", _("Expired")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    slot = models.ForeignKey(Slot, on_delete=models.PROTECT, related_name="locks")
    quantity = models.PositiveIntegerField()
    owner_token = models.CharField(max_length=128)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACTIVE)
    expires_at = models.DateTimeField()
    consumed_by_group = models.UUIDField(null=True, blank=True)
    released_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Reservation hold")
        verbose_name_plural = _("Reservation holds")
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0),
                name="reservation_lock_quantity_positive",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "expires_at"]),
            models.Index(fields=["slot", "status"]),
        ]

    def __str__(self) -> str:
        return f"Hold {self.quantity} on {self.slot_id} ({self.status})"

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or timezone.now())

    def is_usable(self, now: datetime | None = None) -> bool:
        return self.status == self.Status.ACTIVE and not self.is_expired(now)

    def seconds_remaining(self, now: datetime | None = None) -> int:
        if self.status != self.Status.ACTIVE:
            return 0
        delta = self.expires_at - (now or timezone.now())
        return max(int(delta.total_seconds()), 0)

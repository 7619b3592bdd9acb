"""Billing job queue model."""

from __future__ import annotations

import uuid

from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class BillingJob(models.Model):
    """A durable request to reconcile the invoice of one booking group.

    ``booking_group_id`` is a plain UUID rather than a foreign key: the job
    must stay addressable after the bookings it points at are deleted, so
    the cleanup pass can close it.
    """

    class Status(models.TextChoices):
        QUEUED = "queued", _("Queued")
        PROCESSING = "processing", _("Processing")
        COMPLETED = "completed", _("Completed")
        FAILED = "failed", _("Failed")

    class Outcome(models.TextChoices):
        INVOICED = "invoiced", _("Invoice created")
        ALREADY_INVOICED = "already_invoiced", _("Already invoiced")
        NOT_REQUIRED = "not_required", _("No invoice required")
        MISSING_TARGET = "missing_target", _("Booking group missing")
        RETRIES_EXHAUSTED = "retries_exhausted", _("Retries exhausted")
        ORPHANED = "orphaned", _("Orphaned")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    booking_group_id = models.UUIDField(unique=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.QUEUED)
    outcome = models.CharField(max_length=24, choices=Outcome.choices, blank=True)
    attempt_count = models.PositiveSmallIntegerField(default=0)
    next_attempt_at = models.DateTimeField(default=timezone.now)
    last_error = models.TextField(blank=True)
    enqueued_at = models.DateTimeField(default=timezone.now)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Billing job")
        verbose_name_plural = _("Billing jobs")
        ordering = ["-enqueued_at"]
        indexes = [
            models.Index(fields=["status", "next_attempt_at"]),
            models.Index(fields=["status", "started_at"]),
        ]

    def __str__(self) -> str:
        return f"BillingJob {self.pk} [{self.status}] group={self.booking_group_id}"

    def to_payload(self) -> dict:
        """Context the job carries through the worker."""
        return {
            "job_id": str(self.pk),
            "booking_group_id": str(self.booking_group_id),
            "enqueued_at": self.enqueued_at.isoformat(),
            "attempt_count": self.attempt_count,
        }

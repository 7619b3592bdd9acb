"""
Invoice Reconciliation Worker

Pulls billing jobs and makes sure every booking group that owes money ends
up with exactly one invoice:

- group has no bookings            -> completed / missing_target, no retry
- nothing chargeable in the group  -> completed / not_required, no call
- group already carries an invoice -> completed / already_invoiced, no call
- otherwise                        -> create the invoice once, store the
                                      reference on the group and its
                                      chargeable bookings

Provider failures back off exponentially. After BILLING_MAX_ATTEMPTS the
job fails for good and the bookings are flagged for an operator. The
provider is never called while the worker holds row locks.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.bookings.models import Booking, BookingGroup
from shared.domain.value_objects import Money

from .invoicing import InvoiceProviderError, InvoicingClient
from .models import BillingJob
from .queue import BillingJobQueue

logger = logging.getLogger(__name__)
log = structlog.get_logger(__name__)


def dispatch_invoice_document(invoice_id: str, contact: dict) -> None:
    """Hand the invoice document to the notification channels, asynchronously."""
    from .tasks import deliver_invoice_document

    deliver_invoice_document.delay(invoice_id, contact)


class InvoiceReconciliationWorker:
    """Processes billing jobs claimed from :class:`BillingJobQueue`."""

    def __init__(
        self,
        queue: Optional[BillingJobQueue] = None,
        client: Optional[InvoicingClient] = None,
        deliver_document: Optional[Callable[[str, dict], None]] = None,
    ):
        self.queue = queue or BillingJobQueue()
        self.client = client or InvoicingClient()
        self.deliver_document = deliver_document or dispatch_invoice_document

    def run_once(self, limit: int | None = None, now: datetime | None = None) -> dict[str, int]:
        """Reclaim stale jobs, then process one batch. Returns outcome counts."""
        now = now or timezone.now()
        stats = {"reclaimed": self.queue.reclaim_stale(now), "claimed": 0}

        jobs = self.queue.claim_batch(limit=limit, now=now)
        stats["claimed"] = len(jobs)
        for job in jobs:
            try:
                result = self.process(job, now=now)
            except Exception as exc:
                logger.error(f"Unexpected error processing billing job {job.pk}: {exc}", exc_info=True)
                result = self.queue.reschedule(job, f"{exc.__class__.__name__}: {exc}", now)
            stats[str(result)] = stats.get(str(result), 0) + 1
        return stats

    def process(self, job: BillingJob, now: datetime | None = None) -> str:
        """Reconcile one claimed job. Returns the outcome or the new status."""
        now = now or timezone.now()
        bound = log.bind(**job.to_payload())

        bookings = list(
            Booking.objects.filter(group_id=job.booking_group_id)
            .select_related("group", "service", "slot", "customer")
            .order_by("created_at", "pk")
        )
        if not bookings:
            bound.info("billing_job.missing_target")
            self.queue.complete(job, BillingJob.Outcome.MISSING_TARGET, now)
            return BillingJob.Outcome.MISSING_TARGET

        group = bookings[0].group
        chargeable = [booking for booking in bookings if booking.is_chargeable]
        if not chargeable:
            with transaction.atomic():
                Booking.objects.filter(
                    group_id=group.pk,
                    invoice_status=Booking.InvoiceStatus.PENDING,
                ).update(invoice_status=Booking.InvoiceStatus.NOT_REQUIRED, updated_at=now)
                self.queue.complete(job, BillingJob.Outcome.NOT_REQUIRED, now)
            bound.info("billing_job.not_required", bookings=len(bookings))
            return BillingJob.Outcome.NOT_REQUIRED

        existing = group.invoice_reference or next(
            (booking.invoice_reference for booking in chargeable if booking.invoice_reference),
            None,
        )
        if existing:
            with transaction.atomic():
                self._store_reference(group, chargeable, existing, now)
                self.queue.complete(job, BillingJob.Outcome.ALREADY_INVOICED, now)
            bound.info("billing_job.already_invoiced", invoice_id=existing)
            return BillingJob.Outcome.ALREADY_INVOICED

        try:
            invoice = self.client.create_invoice(self.build_invoice_request(group, chargeable))
        except InvoiceProviderError as exc:
            status = self._handle_failure(job, chargeable, str(exc), now)
            bound.warning("billing_job.provider_failed", error=str(exc), attempt=job.attempt_count, status=status)
            return status

        invoice_id = invoice["invoice_id"]
        with transaction.atomic():
            self._store_reference(group, chargeable, invoice_id, now)
            self.queue.complete(job, BillingJob.Outcome.INVOICED, now)
        bound.info("billing_job.invoiced", invoice_id=invoice_id, bookings=len(chargeable))

        self._send_document(invoice_id, chargeable[0].contact)
        return BillingJob.Outcome.INVOICED

    def build_invoice_request(self, group: BookingGroup, chargeable: list[Booking]) -> dict:
        """One invoice per group, one line per chargeable booking."""
        currency = chargeable[0].currency
        total = Money.zero(currency)
        line_items = []
        for booking in chargeable:
            total = total + Money(booking.total_price, booking.currency)
            line_items.append({
                "description": f"{booking.service.name} - {booking.slot.window}",
                "unit_price": booking.unit_price,
                "quantity": booking.paid_quantity,
                "amount": booking.total_price,
                "booking_id": str(booking.pk),
            })

        return {
            "reference": str(group.pk),
            "customer_info": chargeable[0].contact,
            "currency": currency,
            "line_items": line_items,
            "total": total.amount,
            "notes": f"Booking group {group.pk}",
        }

    def cleanup_orphans(self, now: datetime | None = None) -> int:
        """Fail jobs older than BILLING_ORPHAN_AGE_SECONDS whose bookings are gone."""
        now = now or timezone.now()
        age = timedelta(seconds=int(getattr(settings, "BILLING_ORPHAN_AGE_SECONDS", 3600)))
        candidates = BillingJob.objects.filter(
            status__in=[BillingJob.Status.QUEUED, BillingJob.Status.PROCESSING],
            enqueued_at__lt=now - age,
        ).exclude(
            booking_group_id__in=Booking.objects.filter(group__isnull=False).values("group_id"),
        )

        closed = 0
        for job in candidates:
            if self.queue.fail(
                job,
                BillingJob.Outcome.ORPHANED,
                "Booking group no longer exists",
                now,
                from_statuses=(BillingJob.Status.QUEUED, BillingJob.Status.PROCESSING),
            ):
                closed += 1
                log.warning("billing_job.orphaned", job_id=str(job.pk), booking_group_id=str(job.booking_group_id))
        return closed

    def _store_reference(self, group: BookingGroup, chargeable: list[Booking], invoice_id: str, now: datetime):
        BookingGroup.objects.filter(pk=group.pk, invoice_reference__isnull=True).update(
            invoice_reference=invoice_id,
        )
        Booking.objects.filter(pk__in=[booking.pk for booking in chargeable]).update(
            invoice_reference=invoice_id,
            invoice_status=Booking.InvoiceStatus.ISSUED,
            updated_at=now,
        )
        group.invoice_reference = group.invoice_reference or invoice_id

    def _handle_failure(self, job: BillingJob, chargeable: list[Booking], error: str, now: datetime) -> str:
        status = self.queue.reschedule(job, error, now)
        if status == BillingJob.Status.FAILED:
            Booking.objects.filter(pk__in=[booking.pk for booking in chargeable]).update(
                invoice_status=Booking.InvoiceStatus.FAILED,
                updated_at=now,
            )
            logger.error(
                f"Billing job {job.pk} for group {job.booking_group_id} failed after "
                f"{job.attempt_count} attempts, operator attention required: {error}"
            )
        return status

    def _send_document(self, invoice_id: str, contact: dict) -> None:
        try:
            self.deliver_document(invoice_id, contact)
        except Exception as exc:
            logger.warning(f"Could not schedule delivery of invoice {invoice_id}: {exc}")


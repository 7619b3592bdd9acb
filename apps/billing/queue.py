"""Billing Job Queue.

Jobs live in the database next to the bookings, so a job is written in the
same transaction as the booking group it reconciles. Workers claim ready
jobs with ``SELECT ... FOR UPDATE SKIP LOCKED`` and every status change is a
conditional update on the current status, which keeps concurrent workers
from processing or finishing the same job twice.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from django.conf import settings  # type: ignore
from django.db import transaction  # type: ignore
from django.utils import timezone  # type: ignore

from shared.infrastructure.db import lock_queryset_if_possible

from .models import BillingJob

logger = logging.getLogger(__name__)


def _setting(name: str, default: int) -> int:
    return int(getattr(settings, name, default))


def max_attempts() -> int:
    return _setting("BILLING_MAX_ATTEMPTS", 3)


def backoff_delay(attempt_count: int) -> timedelta:
    """min(initial * 2^attempt, max) seconds: 2s, 4s, 8s ... capped at 60s"""
    initial = _setting("BILLING_BACKOFF_INITIAL_SECONDS", 1)
    ceiling = _setting("BILLING_BACKOFF_MAX_SECONDS", 60)
    return timedelta(seconds=min(initial * (2 ** attempt_count), ceiling))


class BillingJobQueue:
    """Durable queue of invoice reconciliation jobs."""

    def enqueue(self, booking_group_id, now: datetime | None = None) -> BillingJob:
        """Record a job for the group. Enqueuing the same group twice is a no-op."""
        now = now or timezone.now()
        job, created = BillingJob.objects.get_or_create(
            booking_group_id=booking_group_id,
            defaults={"enqueued_at": now, "next_attempt_at": now},
        )
        if created:
            logger.info(f"Billing job {job.pk} enqueued for group {booking_group_id}")
        return job

    def claim_batch(self, limit: int | None = None, now: datetime | None = None) -> list[BillingJob]:
        """Move up to ``limit`` ready jobs to ``processing`` and return them."""
        now = now or timezone.now()
        limit = limit or _setting("BILLING_BATCH_SIZE", 10)

        claimed: list[BillingJob] = []
        with transaction.atomic():
            ready = lock_queryset_if_possible(
                BillingJob.objects.filter(
                    status=BillingJob.Status.QUEUED,
                    next_attempt_at__lte=now,
                ).order_by("next_attempt_at", "enqueued_at"),
                skip_locked=True,
            )
            for job in ready[:limit]:
                updated = BillingJob.objects.filter(
                    pk=job.pk,
                    status=BillingJob.Status.QUEUED,
                ).update(status=BillingJob.Status.PROCESSING, started_at=now, updated_at=now)
                if updated:
                    job.status = BillingJob.Status.PROCESSING
                    job.started_at = now
                    claimed.append(job)

        if claimed:
            logger.debug(f"Claimed {len(claimed)} billing jobs")
        return claimed

    def reclaim_stale(self, now: datetime | None = None) -> int:
        """Put jobs stuck in ``processing`` (a worker died) back in the queue."""
        now = now or timezone.now()
        timeout = timedelta(seconds=_setting("BILLING_PROCESSING_TIMEOUT_SECONDS", 300))
        reclaimed = BillingJob.objects.filter(
            status=BillingJob.Status.PROCESSING,
            started_at__lt=now - timeout,
        ).update(
            status=BillingJob.Status.QUEUED,
            next_attempt_at=now,
            started_at=None,
            updated_at=now,
        )
        if reclaimed:
            logger.warning(f"Reclaimed {reclaimed} billing jobs stuck in processing")
        return reclaimed

    def complete(self, job: BillingJob, outcome: str, now: datetime | None = None) -> bool:
        now = now or timezone.now()
        updated = BillingJob.objects.filter(
            pk=job.pk,
            status=BillingJob.Status.PROCESSING,
        ).update(
            status=BillingJob.Status.COMPLETED,
            outcome=outcome,
            completed_at=now,
            last_error="",
            updated_at=now,
        )
        if updated:
            job.status = BillingJob.Status.COMPLETED
            job.outcome = outcome
            job.completed_at = now
            logger.info(f"Billing job {job.pk} completed: {outcome}")
        return bool(updated)

    def fail(
        self,
        job: BillingJob,
        outcome: str,
        error: str = "",
        now: datetime | None = None,
        from_statuses: tuple = (BillingJob.Status.PROCESSING,),
    ) -> bool:
        """Terminally fail a job that is in one of ``from_statuses``."""
        now = now or timezone.now()
        updated = BillingJob.objects.filter(
            pk=job.pk,
            status__in=from_statuses,
        ).update(
            status=BillingJob.Status.FAILED,
            outcome=outcome,
            last_error=error[:2000],
            completed_at=now,
            updated_at=now,
        )
        if updated:
            job.status = BillingJob.Status.FAILED
            job.outcome = outcome
            job.last_error = error[:2000]
            job.completed_at = now
        return bool(updated)

    def reschedule(self, job: BillingJob, error: str, now: datetime | None = None) -> str:
        """Record a failed attempt and back off, or fail the job for good.

        Returns the job's new status.
        """
        now = now or timezone.now()
        attempts = job.attempt_count + 1

        if attempts >= max_attempts():
            job.attempt_count = attempts
            BillingJob.objects.filter(pk=job.pk).update(attempt_count=attempts)
            self.fail(job, BillingJob.Outcome.RETRIES_EXHAUSTED, error, now)
            return job.status

        next_attempt_at = now + backoff_delay(attempts)
        updated = BillingJob.objects.filter(
            pk=job.pk,
            status=BillingJob.Status.PROCESSING,
        ).update(
            status=BillingJob.Status.QUEUED,
            attempt_count=attempts,
            next_attempt_at=next_attempt_at,
            last_error=error[:2000],
            started_at=None,
            updated_at=now,
        )
        if updated:
            job.status = BillingJob.Status.QUEUED
            job.attempt_count = attempts
            job.next_attempt_at = next_attempt_at
            job.last_error = error[:2000]
            logger.warning(
                f"Billing job {job.pk} attempt {attempts} failed, "
                f"retrying at {next_attempt_at.isoformat()}: {error}"
            )
        return job.status

    def retry(self, job: BillingJob, now: datetime | None = None) -> bool:
        """Manually re-queue a failed job with a fresh attempt budget."""
        now = now or timezone.now()
        updated = BillingJob.objects.filter(
            pk=job.pk,
            status=BillingJob.Status.FAILED,
        ).update(
            status=BillingJob.Status.QUEUED,
            outcome="",
            attempt_count=0,
            next_attempt_at=now,
            completed_at=None,
            updated_at=now,
        )
        if updated:
            job.refresh_from_db()
            logger.info(f"Billing job {job.pk} re-queued manually")
        return bool(updated)

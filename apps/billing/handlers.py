"""Event handlers of the billing context."""

from __future__ import annotations

import logging

from apps.bookings.domain.events import BookingGroupCreated

logger = logging.getLogger(__name__)


def kick_billing_worker(event: BookingGroupCreated) -> None:
    """Start a worker run right after a booking group commits.

    The billing job row is already durable, so if the broker is down the
    periodic run picks the job up instead.
    """
    from .tasks import process_billing_jobs

    try:
        process_billing_jobs.delay()
    except Exception as exc:
        logger.warning(
            f"Could not kick billing worker for group {event.booking_group_id}, "
            f"relying on the periodic run: {exc}"
        )

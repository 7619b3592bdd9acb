"""Celery tasks for slot holds."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore

from .locks import ReservationLockManager

logger = logging.getLogger(__name__)


@shared_task(name="slots.sweep_expired_holds")
def sweep_expired_holds() -> dict[str, int]:
    """
    Reclaim reservation holds whose TTL has passed.

    Runs every RESERVATION_SWEEP_INTERVAL_SECONDS via Celery Beat. Running
    two sweeps at the same time is harmless.

    Returns:
        dict: {"reclaimed": number of holds returned to their slots}
    """
    reclaimed = ReservationLockManager().sweep_expired()
    if reclaimed:
        logger.info(f"Hold sweep reclaimed {reclaimed} holds")
    return {"reclaimed": reclaimed}

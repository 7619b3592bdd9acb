"""Celery tasks for invoice reconciliation."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore

from .invoicing import InvoiceProviderError, InvoicingClient
from .worker import InvoiceReconciliationWorker

logger = logging.getLogger(__name__)


@shared_task(name="billing.process_billing_jobs")
def process_billing_jobs(limit: int | None = None) -> dict[str, int]:
    """
    Process one batch of ready billing jobs.

    Runs every BILLING_POLL_INTERVAL_SECONDS via Celery Beat and is also
    kicked right after a booking group commits.

    Returns:
        dict: outcome counts, e.g. {"claimed": 3, "invoiced": 2, "not_required": 1}
    """
    stats = InvoiceReconciliationWorker().run_once(limit=limit)
    if stats.get("claimed"):
        logger.info(f"Billing worker run: {stats}")
    return stats


@shared_task(name="billing.cleanup_orphaned_billing_jobs")
def cleanup_orphaned_billing_jobs() -> dict[str, int]:
    """Fail billing jobs whose booking group disappeared."""
    closed = InvoiceReconciliationWorker().cleanup_orphans()
    return {"orphaned": closed}


@shared_task(name="billing.deliver_invoice_document")
def deliver_invoice_document(invoice_id: str, contact: dict) -> dict[str, bool]:
    """
    Fetch an invoice document and send it to the customer.

    Best effort: failures are logged and never touch booking or billing
    state.
    """
    from apps.notifications.services import deliver_document

    try:
        document = InvoicingClient().fetch_invoice_document(invoice_id)
    except InvoiceProviderError as exc:
        logger.warning(f"Invoice {invoice_id} document unavailable, delivery skipped: {exc}")
        return {}

    results = {}
    for channel in ("email", "whatsapp"):
        results[channel] = deliver_document(
            contact,
            channel,
            document,
            filename=f"invoice-{invoice_id}.pdf",
            reference=invoice_id,
        )
    return results

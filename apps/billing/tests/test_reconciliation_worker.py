import uuid
from datetime import timedelta

import pytest
from django.core import mail
from django.utils import timezone

from apps.billing.invoicing import InvoiceProviderError
from apps.billing.models import BillingJob
from apps.billing.queue import BillingJobQueue, backoff_delay
from apps.billing.tasks import process_billing_jobs
from apps.billing.worker import InvoiceReconciliationWorker
from apps.bookings.application.command_handlers import (
    CancelBookingCommand,
    CancelBookingHandler,
    CreateBookingGroupCommand,
    CreateBookingGroupHandler,
)
from apps.bookings.domain.entities import BookingItem
from apps.bookings.models import Booking, BookingGroup
from apps.notifications.models import DeliveryLog


class FakeInvoicingClient:
    def __init__(self, fail_times: int = 0):
        self.fail_times = fail_times
        self.requests = []

    def create_invoice(self, request):
        self.requests.append(request)
        if len(self.requests) <= self.fail_times:
            raise InvoiceProviderError("provider timeout")
        return {"invoice_id": f"INV-{len(self.requests)}", "status": "created"}


@pytest.fixture
def book_group(tenant, customer, make_slot):
    def _book(visitors: int = 2, *, with_customer: bool = False, key: str | None = None):
        slot = make_slot(capacity=10)
        item = BookingItem(slot.pk, visitors, customer_ref=customer.pk if with_customer else None)
        result = CreateBookingGroupHandler().handle(CreateBookingGroupCommand(
            tenant_id=tenant.pk,
            idempotency_key=key or uuid.uuid4().hex,
            items=[item],
            guest_name="Guest",
            guest_email="guest@example.com",
        ))
        return result.booking_group_id

    return _book


def _worker(client, delivered=None):
    delivered = [] if delivered is None else delivered
    return InvoiceReconciliationWorker(
        client=client,
        deliver_document=lambda invoice_id, contact: delivered.append((invoice_id, contact)),
    )


@pytest.mark.django_db
def test_chargeable_group_is_invoiced_once(book_group):
    group_id = book_group(3)
    client = FakeInvoicingClient()
    delivered = []

    stats = _worker(client, delivered).run_once()

    assert stats["claimed"] == 1
    assert stats["invoiced"] == 1
    assert len(client.requests) == 1
    request = client.requests[0]
    assert request["reference"] == str(group_id)
    assert request["line_items"][0]["quantity"] == 3
    job = BillingJob.objects.get(booking_group_id=group_id)
    assert (job.status, job.outcome) == (BillingJob.Status.COMPLETED, BillingJob.Outcome.INVOICED)
    assert BookingGroup.objects.get(pk=group_id).invoice_reference == "INV-1"
    booking = Booking.objects.get(group_id=group_id)
    assert (booking.invoice_reference, booking.invoice_status) == ("INV-1", Booking.InvoiceStatus.ISSUED)
    assert delivered == [("INV-1", booking.contact)]

    assert _worker(client).run_once() == {"reclaimed": 0, "claimed": 0}
    assert len(client.requests) == 1


@pytest.mark.django_db
def test_fully_covered_group_needs_no_invoice(book_group, make_package):
    make_package(5)
    group_id = book_group(2, with_customer=True)
    client = FakeInvoicingClient()

    stats = _worker(client).run_once()

    assert stats["not_required"] == 1
    assert client.requests == []
    job = BillingJob.objects.get(booking_group_id=group_id)
    assert job.outcome == BillingJob.Outcome.NOT_REQUIRED


@pytest.mark.django_db
def test_cancelled_bookings_are_not_invoiced(book_group):
    group_id = book_group(2)
    booking = Booking.objects.get(group_id=group_id)
    CancelBookingHandler().handle(CancelBookingCommand(booking_id=booking.pk, tenant_id=booking.tenant_id))
    client = FakeInvoicingClient()

    stats = _worker(client).run_once()

    assert stats["not_required"] == 1
    assert client.requests == []


@pytest.mark.django_db
def test_existing_invoice_is_not_created_again(book_group):
    group_id = book_group(2)
    BookingGroup.objects.filter(pk=group_id).update(invoice_reference="INV-EXISTING")
    client = FakeInvoicingClient()

    stats = _worker(client).run_once()

    assert stats["already_invoiced"] == 1
    assert client.requests == []
    assert Booking.objects.get(group_id=group_id).invoice_reference == "INV-EXISTING"


@pytest.mark.django_db
def test_group_with_deleted_bookings_completes_without_retry(book_group):
    group_id = book_group(2)
    Booking.objects.filter(group_id=group_id).delete()
    client = FakeInvoicingClient()

    stats = _worker(client, []).run_once()

    job = BillingJob.objects.get(booking_group_id=group_id)
    assert stats["missing_target"] == 1
    assert client.requests == []
    assert (job.status, job.outcome, job.attempt_count) == (
        BillingJob.Status.COMPLETED,
        BillingJob.Outcome.MISSING_TARGET,
        0,
    )


@pytest.mark.django_db
def test_provider_failure_backs_off_then_succeeds(book_group, settings):
    settings.BILLING_BACKOFF_INITIAL_SECONDS = 1
    group_id = book_group(2)
    client = FakeInvoicingClient(fail_times=1)
    now = timezone.now()

    first = _worker(client).run_once(now=now)
    job = BillingJob.objects.get(booking_group_id=group_id)
    assert first.get("queued") == 1
    assert job.attempt_count == 1
    assert job.next_attempt_at == now + timedelta(seconds=2)
    assert "provider timeout" in job.last_error

    assert _worker(client).run_once(now=now + timedelta(seconds=1))["claimed"] == 0

    later = _worker(client, []).run_once(now=now + timedelta(seconds=3))
    assert later["invoiced"] == 1
    assert Booking.objects.get(group_id=group_id).invoice_status == Booking.InvoiceStatus.ISSUED


@pytest.mark.django_db
def test_retry_ceiling_fails_job_and_flags_bookings(book_group, settings):
    settings.BILLING_MAX_ATTEMPTS = 3
    group_id = book_group(2)
    client = FakeInvoicingClient(fail_times=99)
    worker = _worker(client)
    now = timezone.now()

    for offset in (0, 10, 30):
        worker.run_once(now=now + timedelta(seconds=offset))

    job = BillingJob.objects.get(booking_group_id=group_id)
    assert (job.status, job.outcome, job.attempt_count) == (
        BillingJob.Status.FAILED,
        BillingJob.Outcome.RETRIES_EXHAUSTED,
        3,
    )
    assert len(client.requests) == 3
    booking = Booking.objects.get(group_id=group_id)
    assert booking.invoice_status == Booking.InvoiceStatus.FAILED
    assert booking.status == Booking.Status.PENDING

    assert worker.run_once(now=now + timedelta(minutes=10))["claimed"] == 0


def test_backoff_grows_exponentially_up_to_the_cap(settings):
    settings.BILLING_BACKOFF_INITIAL_SECONDS = 1
    settings.BILLING_BACKOFF_MAX_SECONDS = 60

    assert [backoff_delay(n).total_seconds() for n in (0, 1, 2, 3, 6, 10)] == [1, 2, 4, 8, 60, 60]


@pytest.mark.django_db
def test_orphaned_jobs_are_closed_once(book_group, settings):
    settings.BILLING_ORPHAN_AGE_SECONDS = 3600
    live_group = book_group(1)
    deleted_group = book_group(1)
    Booking.objects.filter(group_id=deleted_group).delete()
    old = timezone.now() - timedelta(hours=2)
    BillingJob.objects.update(enqueued_at=old)
    orphan = BillingJob.objects.get(booking_group_id=deleted_group)
    worker = _worker(FakeInvoicingClient())

    assert worker.cleanup_orphans() == 1
    assert worker.cleanup_orphans() == 0

    orphan.refresh_from_db()
    assert (orphan.status, orphan.outcome) == (BillingJob.Status.FAILED, BillingJob.Outcome.ORPHANED)
    assert BillingJob.objects.get(booking_group_id=live_group).status == BillingJob.Status.QUEUED


@pytest.mark.django_db
def test_stale_processing_jobs_are_reclaimed(settings):
    settings.BILLING_PROCESSING_TIMEOUT_SECONDS = 300
    queue = BillingJobQueue()
    now = timezone.now()
    queue.enqueue(uuid.uuid4(), now=now - timedelta(hours=1))
    [job] = queue.claim_batch(now=now - timedelta(minutes=30))

    assert queue.reclaim_stale(now=now) == 1
    job.refresh_from_db()
    assert job.status == BillingJob.Status.QUEUED


@pytest.mark.django_db
def test_claim_batch_respects_limit_and_readiness():
    queue = BillingJobQueue()
    now = timezone.now()
    for _ in range(3):
        queue.enqueue(uuid.uuid4(), now=now)
    queue.enqueue(uuid.uuid4(), now=now + timedelta(minutes=5))

    claimed = queue.claim_batch(limit=2, now=now)

    assert len(claimed) == 2
    assert all(job.status == BillingJob.Status.PROCESSING for job in claimed)
    assert len(queue.claim_batch(limit=10, now=now)) == 1


@pytest.mark.django_db
def test_enqueue_twice_keeps_one_job():
    queue = BillingJobQueue()
    group_id = uuid.uuid4()

    assert queue.enqueue(group_id).pk == queue.enqueue(group_id).pk
    assert BillingJob.objects.count() == 1


@pytest.mark.django_db
def test_task_invoices_and_delivers_document(book_group):
    book_group(2)

    stats = process_billing_jobs()

    assert stats["invoiced"] == 1
    assert len(mail.outbox) == 1
    assert mail.outbox[0].to == ["guest@example.com"]
    filename, _, mimetype = mail.outbox[0].attachments[0]
    assert filename.startswith("invoice-inv_")
    assert mimetype == "application/pdf"
    assert DeliveryLog.objects.get(channel=DeliveryLog.Channel.WHATSAPP).success is False


@pytest.mark.django_db
def test_job_payload_tracks_attempts(book_group):
    group_id = book_group(2)
    _worker(FakeInvoicingClient(fail_times=1)).run_once()
    job = BillingJob.objects.get(booking_group_id=group_id)

    assert job.to_payload() == {
        "job_id": str(job.pk),
        "booking_group_id": str(group_id),
        "enqueued_at": job.enqueued_at.isoformat(),
        "attempt_count": 1,
    }

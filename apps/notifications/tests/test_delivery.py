import pytest
import requests
from django.core import mail

from apps.bookings.application.command_handlers import (
    CancelBookingCommand,
    CancelBookingHandler,
    CreateBookingGroupCommand,
    CreateBookingGroupHandler,
)
from apps.bookings.domain.entities import BookingItem
from apps.notifications.models import DeliveryLog
from apps.notifications.senders import WhatsAppSender
from apps.notifications.services import deliver_document, notify_allotment_exhausted
from apps.packages.events import AllotmentExhausted

CONTACT = {"name": "Sara", "email": "sara@example.com", "phone": "+966500000001"}


class FakeResponse:
    def __init__(self, payload):
        self.payload = payload

    def raise_for_status(self):
        return None

    def json(self):
        return self.payload


@pytest.mark.django_db
def test_email_delivery_attaches_document():
    delivered = deliver_document(CONTACT, "email", b"%PDF-1.4", filename="invoice-INV-1.pdf", reference="INV-1")

    assert delivered is True
    assert len(mail.outbox) == 1
    message = mail.outbox[0]
    assert message.to == ["sara@example.com"]
    assert message.subject == "Invoice INV-1"
    assert message.attachments[0][0] == "invoice-INV-1.pdf"
    log = DeliveryLog.objects.get()
    assert (log.channel, log.recipient, log.success) == ("email", "sara@example.com", True)


@pytest.mark.django_db
def test_missing_email_is_logged_not_raised():
    delivered = deliver_document({"name": "Walk-in"}, "email", b"%PDF", reference="INV-2")

    assert delivered is False
    assert mail.outbox == []
    assert DeliveryLog.objects.get().error == "No email"


@pytest.mark.django_db
def test_whatsapp_requires_configuration(settings):
    settings.WHATSAPP_API_URL = ""
    settings.WHATSAPP_TOKEN = ""

    assert deliver_document(CONTACT, "whatsapp", b"%PDF", reference="INV-3") is False
    assert DeliveryLog.objects.get().error == "WhatsApp is not configured"


def test_whatsapp_uploads_then_sends_document(settings, monkeypatch):
    settings.WHATSAPP_API_URL = "https://graph.example.com/v18.0/123"
    settings.WHATSAPP_TOKEN = "token"
    calls = []

    def fake_post(url, **kwargs):
        calls.append((url, kwargs))
        return FakeResponse({"id": "media-1"})

    monkeypatch.setattr(requests, "post", fake_post)

    result = WhatsAppSender().send(CONTACT, b"%PDF", "invoice.pdf", "Invoice INV-4")

    assert result == {"success": True, "error": ""}
    assert [url for url, _ in calls] == [
        "https://graph.example.com/v18.0/123/media",
        "https://graph.example.com/v18.0/123/messages",
    ]
    assert calls[1][1]["json"]["to"] == "966500000001"
    assert calls[1][1]["json"]["document"]["id"] == "media-1"


def test_unknown_channel_is_rejected():
    with pytest.raises(ValueError):
        deliver_document(CONTACT, "fax", b"%PDF")


@pytest.mark.django_db
def test_exhaustion_notice_is_emailed(customer, service, make_package):
    subscription, _ = make_package(3, name="Family pass")

    sent = notify_allotment_exhausted(AllotmentExhausted(
        subscription_id=subscription.pk,
        customer_id=customer.pk,
        service_id=service.pk,
    ))

    assert sent is True
    assert mail.outbox[0].subject == "Family pass: no visits left for Guided tour"
    assert mail.outbox[0].to == [customer.email]


@pytest.mark.django_db
def test_cancellation_notice_is_emailed_after_commit(
    tenant, customer, make_slot, make_package, django_capture_on_commit_callbacks
):
    make_package(5)
    slot = make_slot(capacity=5)
    booking = CreateBookingGroupHandler().handle(CreateBookingGroupCommand(
        tenant_id=tenant.pk,
        idempotency_key="family-day",
        items=[BookingItem(slot.pk, 2, customer_ref=customer.pk)],
    )).bookings[0]

    with django_capture_on_commit_callbacks(execute=True):
        CancelBookingHandler().handle(
            CancelBookingCommand(booking_id=booking.pk, tenant_id=tenant.pk, reason="Venue closed")
        )

    assert len(mail.outbox) == 1
    message = mail.outbox[0]
    assert message.to == [customer.email]
    assert message.subject == "Booking cancelled: Guided tour"
    assert "Reason: Venue closed" in message.body
    assert "2 visit(s) were returned to your package." in message.body
    assert DeliveryLog.objects.get().reference == str(booking.pk)

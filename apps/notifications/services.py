"""Notification services: invoice documents, package and cancellation notices."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.conf import settings  # type: ignore
from django.core.mail import send_mail  # type: ignore

from .models import DeliveryLog
from .senders import SENDERS

if TYPE_CHECKING:  # pragma: no cover
    from apps.bookings.domain.events import BookingCancelled
    from apps.packages.events import AllotmentExhausted

logger = logging.getLogger(__name__)


def deliver_document(
    contact: dict,
    channel: str,
    document: bytes,
    *,
    filename: str = "invoice.pdf",
    reference: str = "",
) -> bool:
    """
    Send a document to a contact over ``channel`` ("email" or "whatsapp").

    Returns:
        bool: True if the channel accepted the document
    """
    sender_class = SENDERS.get(channel)
    if sender_class is None:
        raise ValueError(f"Unknown delivery channel: {channel}")

    sender = sender_class()
    caption = f"Invoice {reference}" if reference else "Your invoice"
    result = sender.send(contact, document, filename, caption)

    DeliveryLog.objects.create(
        channel=channel,
        recipient=sender.recipient(contact),
        reference=reference,
        success=result["success"],
        error=result.get("error", ""),
    )
    if result["success"]:
        logger.info(f"Document {reference} delivered via {channel}")
    else:
        logger.warning(f"Document {reference} not delivered via {channel}: {result.get('error')}")
    return result["success"]


def send_email_notification(recipient_email: str, subject: str, message: str, *, reference: str = "") -> bool:
    """Plain-text email. Returns True if sent."""
    try:
        send_mail(
            subject=subject,
            message=message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[recipient_email],
            fail_silently=False,
        )
        success, error = True, ""
        logger.info(f"Email sent successfully to {recipient_email}: {subject}")
    except Exception as e:
        success, error = False, str(e)
        logger.error(f"Failed to send email to {recipient_email}: {e}", exc_info=True)

    DeliveryLog.objects.create(
        channel=DeliveryLog.Channel.EMAIL,
        recipient=recipient_email,
        reference=reference,
        success=success,
        error=error,
    )
    return success


def notify_allotment_exhausted(event: "AllotmentExhausted") -> bool:
    """Tell the customer their package has no visits left for a service."""
    from apps.catalog.models import Customer, Service
    from apps.packages.models import PackageSubscription

    customer = Customer.objects.filter(pk=event.customer_id).first()
    if customer is None or not customer.email:
        logger.info(f"No email for customer {event.customer_id}, exhaustion notice skipped")
        return False

    service = Service.objects.filter(pk=event.service_id).first()
    subscription = PackageSubscription.objects.filter(pk=event.subscription_id).first()
    service_name = service.name if service else "this service"
    package_name = subscription.name if subscription else "your package"

    return send_email_notification(
        customer.email,
        subject=f"{package_name}: no visits left for {service_name}",
        message=(
            f"Hello {customer.name},\n\n"
            f"All visits of {package_name} for {service_name} have been used. "
            f"Further bookings of {service_name} will be charged at the regular price."
        ),
        reference=str(event.subscription_id),
    )


def notify_booking_cancelled(event: "BookingCancelled") -> bool:
    """Email the booking contact that the booking was cancelled."""
    from apps.bookings.models import Booking

    booking = Booking.objects.select_related("customer", "service", "slot").filter(pk=event.booking_id).first()
    if booking is None:
        logger.error(f"Cannot send cancellation notice: booking {event.booking_id} not found")
        return False

    contact = booking.contact
    if not contact.get("email"):
        logger.info(f"No email for booking {booking.pk}, cancellation notice skipped")
        return False

    message = (
        f"Hello {contact.get('name') or 'there'},\n\n"
        f"Your booking of {booking.service.name} on {booking.slot.window} "
        f"for {booking.visitor_count} visitor(s) has been cancelled."
    )
    if event.reason:
        message += f"\nReason: {event.reason}"
    if event.allotment_restored:
        message += f"\n{event.allotment_restored} visit(s) were returned to your package."

    return send_email_notification(
        contact["email"],
        subject=f"Booking cancelled: {booking.service.name}",
        message=message,
        reference=str(booking.pk),
    )

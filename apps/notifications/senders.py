"""Channel senders for outbound documents."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import requests
from django.conf import settings
from django.core.mail import EmailMessage

logger = logging.getLogger(__name__)


class BaseSender(ABC):
    """Sends a document over one channel.

    ``send`` returns ``{"success": bool, "error": str}`` and never raises.
    """

    @abstractmethod
    def recipient(self, contact: dict) -> str:
        pass

    @abstractmethod
    def send(self, contact: dict, document: bytes, filename: str, caption: str) -> dict:
        pass


class EmailSender(BaseSender):
    """Email with the document attached"""

    def recipient(self, contact: dict) -> str:
        return contact.get("email") or ""

    def send(self, contact, document, filename, caption):
        email = self.recipient(contact)
        if not email:
            return {"success": False, "error": "No email"}
        try:
            message = EmailMessage(
                subject=caption,
                body=f"Hello {contact.get('name') or ''},\n\n{caption} is attached.",
                from_email=settings.DEFAULT_FROM_EMAIL,
                to=[email],
            )
            message.attach(filename, document, "application/pdf")
            message.send(fail_silently=False)
            return {"success": True, "error": ""}
        except Exception as e:
            return {"success": False, "error": str(e)}


class WhatsAppSender(BaseSender):
    """WhatsApp Cloud API: upload the file, then send it as a document message"""

    def recipient(self, contact: dict) -> str:
        return (contact.get("phone") or "").lstrip("+")

    def send(self, contact, document, filename, caption):
        phone = self.recipient(contact)
        if not phone:
            return {"success": False, "error": "No phone number"}

        api_url = getattr(settings, "WHATSAPP_API_URL", "")
        token = getattr(settings, "WHATSAPP_TOKEN", "")
        if not api_url or not token:
            return {"success": False, "error": "WhatsApp is not configured"}

        headers = {"Authorization": f"Bearer {token}"}
        try:
            upload = requests.post(
                f"{api_url}/media",
                headers=headers,
                data={"messaging_product": "whatsapp", "type": "application/pdf"},
                files={"file": (filename, document, "application/pdf")},
                timeout=30,
            )
            upload.raise_for_status()
            media_id = upload.json()["id"]

            response = requests.post(
                f"{api_url}/messages",
                headers=headers,
                json={
                    "messaging_product": "whatsapp",
                    "recipient_type": "individual",
                    "to": phone,
                    "type": "document",
                    "document": {"id": media_id, "filename": filename, "caption": caption},
                },
                timeout=10,
            )
            response.raise_for_status()
            return {"success": True, "error": ""}
        except (requests.RequestException, KeyError, ValueError) as e:
            return {"success": False, "error": str(e)}


SENDERS = {
    "email": EmailSender,
    "whatsapp": WhatsAppSender,
}

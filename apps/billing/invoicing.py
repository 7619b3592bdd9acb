"""
External invoicing provider client.

Only two calls are needed: create an invoice and fetch its rendered
document. Without an API key (or with DEBUG on) the client emulates the
provider locally so development and tests never leave the process.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal

import requests
from django.conf import settings

from shared.domain.errors import ExternalProviderError

logger = logging.getLogger(__name__)


class InvoiceProviderError(ExternalProviderError):
    """Invoicing provider rejected the call or could not be reached."""

    code = "invoice_provider_error"


def _json_safe(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return value


class InvoicingClient:
    """HTTP client for the invoicing provider."""

    def __init__(self, base_url: str | None = None, api_key: str | None = None, timeout: int | None = None):
        self.base_url = (base_url or getattr(settings, "INVOICING_API_BASE_URL", "")).rstrip("/")
        self.api_key = api_key if api_key is not None else getattr(settings, "INVOICING_API_KEY", "")
        self.timeout = timeout or getattr(settings, "INVOICING_TIMEOUT_SECONDS", 30)

    @property
    def emulated(self) -> bool:
        return settings.DEBUG or not self.api_key or not self.base_url

    def _headers(self, **extra) -> dict:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }
        headers.update(extra)
        return headers

    def create_invoice(self, request: dict) -> dict:
        """
        Create one invoice.

        Args:
            request: {customer_info, line_items: [{description, unit_price,
                quantity}], total, currency, reference, notes}

        Returns:
            dict: {"invoice_id": ...}

        ``reference`` is sent as the provider idempotency key, so a retried
        call after a lost response does not produce a second invoice.
        """
        reference = request.get("reference", "")
        logger.info(f"Creating invoice for reference {reference}, total {request.get('total')}")

        if self.emulated:
            logger.warning("Invoicing provider emulated (DEBUG or no API key configured)")
            return {"invoice_id": f"inv_{uuid.uuid4().hex[:16]}", "status": "emulated"}

        try:
            response = requests.post(
                f"{self.base_url}/invoices",
                json=_json_safe(request),
                headers=self._headers(**{"Idempotency-Key": str(reference)}),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as exc:
            logger.error(f"Invoicing provider request failed for {reference}: {exc}")
            raise InvoiceProviderError(f"Invoice creation failed: {exc}")
        except ValueError as exc:
            raise InvoiceProviderError(f"Invoicing provider returned invalid JSON: {exc}")

        invoice_id = data.get("invoice_id") or data.get("id")
        if not invoice_id:
            raise InvoiceProviderError(f"Invoicing provider response has no invoice id: {data}")

        logger.info(f"Invoice {invoice_id} created for reference {reference}")
        return {"invoice_id": str(invoice_id), "status": data.get("status", "created")}

    def fetch_invoice_document(self, invoice_id: str) -> bytes:
        """Rendered invoice document (PDF bytes)."""
        if self.emulated:
            return (
                b"%PDF-1.4\n% emulated invoice "
                + invoice_id.encode()
                + b"\n%%EOF\n"
            )

        try:
            response = requests.get(
                f"{self.base_url}/invoices/{invoice_id}/document",
                headers=self._headers(Accept="application/pdf"),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error(f"Fetching document of invoice {invoice_id} failed: {exc}")
            raise InvoiceProviderError(f"Invoice document download failed: {exc}")
        return response.content

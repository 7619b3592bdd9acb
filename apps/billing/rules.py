"""The strict billing rule, shared by booking creation and reconciliation."""

from __future__ import annotations

from decimal import Decimal


def invoice_required(paid_quantity: int, total_price: Decimal | int | None) -> bool:
    """An invoice is owed only if someone pays and there is money to collect."""
    return paid_quantity > 0 and (total_price or Decimal("0")) > 0

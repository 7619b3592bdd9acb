"""Allotment balance provider.

Balances are consumed oldest subscription first. Every decrement is
recorded per booking in :class:`AllotmentUsage`, and restoration walks that
ledger, so a cancelled booking gives back exactly what it took, once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from django.db import transaction  # type: ignore
from django.db.models import Sum  # type: ignore
from django.utils import timezone  # type: ignore

from shared.domain.errors import AllotmentExhaustedError
from shared.infrastructure.db import lock_queryset_if_possible

from .events import AllotmentExhausted
from .models import AllotmentBalance, AllotmentExhaustion, AllotmentUsage, PackageSubscription

if TYPE_CHECKING:  # pragma: no cover
    from apps.bookings.models import Booking
    from apps.catalog.models import Customer, Service

logger = logging.getLogger(__name__)


@dataclass
class AllotmentDebit:
    """Result of a decrement: the ledger rows and any balances that hit zero."""
    usages: list[AllotmentUsage] = field(default_factory=list)
    events: list[AllotmentExhausted] = field(default_factory=list)

    @property
    def quantity(self) -> int:
        return sum(usage.quantity for usage in self.usages)


class AllotmentProvider:
    """Reads and moves pre-paid allotment balances."""

    def _balances(self, customer: "Customer", service: "Service", *, lock: bool = False):
        qs = AllotmentBalance.objects.filter(
            subscription__customer=customer,
            subscription__status=PackageSubscription.Status.ACTIVE,
            service=service,
        ).order_by("subscription__created_at", "pk")
        if lock:
            qs = lock_queryset_if_possible(qs, of=("self",))
        return qs

    def get_remaining(self, customer: "Customer | None", service: "Service", *, lock: bool = False) -> int:
        """Sum of remaining visits over the customer's active subscriptions.

        With ``lock=True`` (inside a transaction) the balance rows stay locked
        until commit, so a concurrent booking cannot spend the same visits.
        """
        if customer is None:
            return 0
        if lock:
            return sum(balance.remaining_quantity for balance in self._balances(customer, service, lock=True))
        total = self._balances(customer, service).aggregate(total=Sum("remaining_quantity"))["total"]
        return int(total or 0)

    @transaction.atomic
    def decrement(self, customer: "Customer", service: "Service", quantity: int, booking: "Booking") -> AllotmentDebit:
        """Consume ``quantity`` visits for ``booking``.

        Raises:
            AllotmentExhaustedError: the balances cannot cover ``quantity``
        """
        if quantity <= 0:
            raise ValueError("quantity must be positive")

        balances = list(self._balances(customer, service, lock=True))
        available = sum(balance.remaining_quantity for balance in balances)
        if available < quantity:
            raise AllotmentExhaustedError(
                message=(
                    f"Package allotment for service {service.pk} covers only "
                    f"{available} of {quantity} visitors"
                ),
                requested=quantity,
                available=available,
            )

        debit = AllotmentDebit()
        outstanding = quantity
        for balance in balances:
            if outstanding == 0:
                break
            take = min(balance.remaining_quantity, outstanding)
            if take == 0:
                continue
            balance.remaining_quantity -= take
            balance.used_quantity += take
            balance.save(update_fields=["remaining_quantity", "used_quantity", "updated_at"])
            debit.usages.append(
                AllotmentUsage.objects.create(booking=booking, balance=balance, quantity=take)
            )
            outstanding -= take

            if balance.remaining_quantity == 0:
                _, created = AllotmentExhaustion.objects.get_or_create(
                    subscription_id=balance.subscription_id,
                    service=service,
                )
                if created:
                    debit.events.append(
                        AllotmentExhausted(
                            aggregate_id=balance.subscription_id,
                            subscription_id=balance.subscription_id,
                            customer_id=customer.pk,
                            service_id=service.pk,
                        )
                    )

        logger.info(
            f"Allotment of customer {customer.pk} for service {service.pk} "
            f"decremented by {quantity} for booking {booking.pk}"
        )
        return debit

    @transaction.atomic
    def increment(self, customer: "Customer", service: "Service", quantity: int) -> int:
        """Give visits back, newest subscription first, never above the original.

        Returns the quantity actually credited.
        """
        if quantity <= 0:
            raise ValueError("quantity must be positive")
        balances = list(self._balances(customer, service, lock=True))
        outstanding = quantity
        for balance in reversed(balances):
            if outstanding == 0:
                break
            outstanding -= self._credit(balance, outstanding)
        credited = quantity - outstanding
        if outstanding:
            logger.warning(
                f"Allotment increment for customer {customer.pk} capped: "
                f"{outstanding} of {quantity} not credited"
            )
        return credited

    @transaction.atomic
    def restore_for_booking(self, booking: "Booking") -> int:
        """Return the visits ``booking`` consumed. A second call restores nothing."""
        now = timezone.now()
        usages = lock_queryset_if_possible(
            AllotmentUsage.objects.filter(booking=booking, restored_at__isnull=True).order_by("pk"),
            of=("self",),
        )
        restored = 0
        for usage in usages:
            balance = lock_queryset_if_possible(
                AllotmentBalance.objects.filter(pk=usage.balance_id), of=("self",)
            ).get()
            restored += self._credit(balance, usage.quantity)
            usage.restored_at = now
            usage.save(update_fields=["restored_at"])

        if restored:
            logger.info(f"Restored {restored} allotment visits for booking {booking.pk}")
        return restored

    @staticmethod
    def _credit(balance: AllotmentBalance, quantity: int) -> int:
        amount = min(quantity, balance.original_quantity - balance.remaining_quantity)
        if amount <= 0:
            return 0
        balance.remaining_quantity += amount
        balance.used_quantity -= amount
        balance.save(update_fields=["remaining_quantity", "used_quantity", "updated_at"])
        return amount

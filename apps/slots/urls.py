"""URL routing for slots and holds."""

from __future__ import annotations

from django.urls import include, path  # type: ignore
from rest_framework.routers import SimpleRouter  # type: ignore

from .views import ReservationHoldViewSet, SlotViewSet

router = SimpleRouter()
router.register(r"holds", ReservationHoldViewSet, basename="reservation-hold")
router.register(r"", SlotViewSet, basename="slot")

urlpatterns = [
    path("", include(router.urls)),
]

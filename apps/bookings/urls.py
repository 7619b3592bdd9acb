"""URL routing for the booking domain."""

from __future__ import annotations

from django.urls import include, path  # type: ignore
from rest_framework.routers import SimpleRouter  # type: ignore

from .views import BookingGroupViewSet, BookingViewSet

router = SimpleRouter()
router.register(r"groups", BookingGroupViewSet, basename="booking-group")
router.register(r"", BookingViewSet, basename="booking")

urlpatterns = [
    path("", include(router.urls)),
]

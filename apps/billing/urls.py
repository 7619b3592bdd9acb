"""URL routing for billing."""

from __future__ import annotations

from django.urls import include, path  # type: ignore
from rest_framework.routers import DefaultRouter  # type: ignore

from .views import BillingJobViewSet

router = DefaultRouter()
router.register(r"jobs", BillingJobViewSet, basename="billing-job")

urlpatterns = [
    path("", include(router.urls)),
]

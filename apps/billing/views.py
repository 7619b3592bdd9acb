"""Operator API for billing jobs."""

from __future__ import annotations

from django_filters.rest_framework import DjangoFilterBackend  # type: ignore
from rest_framework import permissions, status, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.response import Response  # type: ignore

from .models import BillingJob
from .queue import BillingJobQueue
from .serializers import BillingJobSerializer


class BillingJobViewSet(viewsets.ReadOnlyModelViewSet):
    """Billing jobs are visible to staff only; failed ones can be re-queued."""

    queryset = BillingJob.objects.all()
    serializer_class = BillingJobSerializer
    permission_classes = [permissions.IsAdminUser]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ["status", "outcome", "booking_group_id"]

    @action(detail=True, methods=["post"])
    def retry(self, request, pk=None):  # type: ignore
        job: BillingJob = self.get_object()  # type: ignore
        if not BillingJobQueue().retry(job):
            return Response(
                {"code": "invalid_transition", "detail": "Only failed jobs can be retried.", "retryable": False},
                status=status.HTTP_409_CONFLICT,
            )
        return Response(BillingJobSerializer(job).data, status=status.HTTP_200_OK)

"""API views for slots and reservation holds."""

from __future__ import annotations

from django_filters.rest_framework import DjangoFilterBackend  # type: ignore
from rest_framework import permissions, status, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.response import Response  # type: ignore

from .locks import ReservationLockManager
from .models import ReservationLock, Slot
from .serializers import (
    HoldRequestSerializer,
    OwnerTokenSerializer,
    ReservationLockSerializer,
    SlotSerializer,
)


class SlotViewSet(viewsets.ReadOnlyModelViewSet):
    """Bookable slots and their live capacity."""

    queryset = Slot.objects.select_related("service").all()
    serializer_class = SlotSerializer
    permission_classes = [permissions.IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ["tenant", "service", "is_active"]

    @action(detail=True, methods=["get"])
    def availability(self, request, pk=None):  # type: ignore
        slot: Slot = self.get_object()  # type: ignore
        held = ReservationLockManager().active_holds([slot.pk]).get(slot.pk, 0)
        return Response(
            {
                "slot_id": str(slot.pk),
                "total_capacity": slot.total_capacity,
                "available_capacity": slot.available_capacity,
                "held": held,
                "is_active": slot.is_active,
            }
        )

    @action(detail=True, methods=["post"])
    def holds(self, request, pk=None):  # type: ignore
        slot: Slot = self.get_object()  # type: ignore
        serializer = HoldRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        lock = ReservationLockManager().acquire(
            slot.pk,
            serializer.validated_data["quantity"],
            serializer.validated_data["owner_token"],
        )
        return Response(ReservationLockSerializer(lock).data, status=status.HTTP_201_CREATED)


class ReservationHoldViewSet(viewsets.GenericViewSet):
    """Look up and release holds; the owner token acts as the credential."""

    queryset = ReservationLock.objects.all()
    serializer_class = ReservationLockSerializer
    permission_classes = [permissions.IsAuthenticated]

    def retrieve(self, request, pk=None):  # type: ignore
        token = OwnerTokenSerializer(data=request.query_params)
        token.is_valid(raise_exception=True)
        lock = ReservationLockManager().validate(pk, token.validated_data["owner_token"])
        return Response(ReservationLockSerializer(lock).data)

    @action(detail=True, methods=["post"])
    def release(self, request, pk=None):  # type: ignore
        token = OwnerTokenSerializer(data=request.data)
        token.is_valid(raise_exception=True)
        released = ReservationLockManager().release(pk, token.validated_data["owner_token"])
        return Response({"released": released}, status=status.HTTP_200_OK)

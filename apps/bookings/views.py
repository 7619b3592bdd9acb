"""API views for the booking domain."""

from __future__ import annotations

from django_filters.rest_framework import DjangoFilterBackend  # type: ignore
from rest_framework import mixins, permissions, status, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.response import Response  # type: ignore

from .application.command_handlers import (
    CancelBookingCommand,
    CancelBookingHandler,
    CreateBookingGroupHandler,
    TransitionBookingCommand,
    TransitionBookingHandler,
)
from .models import Booking, BookingGroup
from .serializers import (
    BookingGroupCreateSerializer,
    BookingGroupSerializer,
    BookingSerializer,
    CancelBookingSerializer,
    TransitionBookingSerializer,
)


class BookingGroupViewSet(mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    """Create booking groups atomically and look them up."""

    queryset = BookingGroup.objects.prefetch_related("bookings").all()
    permission_classes = [permissions.IsAuthenticated]

    def get_serializer_class(self):  # type: ignore
        if self.action == "create":
            return BookingGroupCreateSerializer
        return BookingGroupSerializer

    def create(self, request, *args, **kwargs):  # type: ignore
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = CreateBookingGroupHandler().handle(serializer.to_command())
        return Response(
            result.to_dict(),
            status=status.HTTP_200_OK if result.replayed else status.HTTP_201_CREATED,
        )


class BookingViewSet(viewsets.ReadOnlyModelViewSet):
    """Bookings and their lifecycle actions."""

    queryset = Booking.objects.select_related("slot", "service", "customer").all()
    serializer_class = BookingSerializer
    permission_classes = [permissions.IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ["tenant", "group", "slot", "status", "invoice_status"]

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):  # type: ignore
        serializer = CancelBookingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = CancelBookingHandler().handle(
            CancelBookingCommand(
                booking_id=pk,
                tenant_id=serializer.validated_data["tenant_id"],
                reason=serializer.validated_data["reason"],
            )
        )
        return Response(BookingSerializer(booking).data, status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"])
    def transition(self, request, pk=None):  # type: ignore
        serializer = TransitionBookingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = TransitionBookingHandler().handle(
            TransitionBookingCommand(
                booking_id=pk,
                target_status=serializer.validated_data["status"],
                tenant_id=serializer.validated_data["tenant_id"],
            )
        )
        return Response(BookingSerializer(booking).data, status=status.HTTP_200_OK)

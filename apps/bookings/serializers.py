"""Serializers for the booking domain."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .application.command_handlers import CreateBookingGroupCommand
from .domain.entities import BookingItem, BookingStatus
from .models import Booking, BookingGroup


class BookingItemSerializer(serializers.Serializer):
    slot_id = serializers.UUIDField()
    visitor_count = serializers.IntegerField(min_value=1)
    customer_ref = serializers.UUIDField(required=False, allow_null=True, default=None)
    lock_id = serializers.UUIDField(required=False, allow_null=True, default=None)


class GuestContactSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=200, required=False, allow_blank=True, default="")
    email = serializers.EmailField(required=False, allow_blank=True, default="")
    phone = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")


class BookingGroupCreateSerializer(serializers.Serializer):
    """Bulk booking request; validated here, executed by the command handler."""

    tenant_id = serializers.UUIDField()
    idempotency_key = serializers.CharField(max_length=128)
    items = BookingItemSerializer(many=True, allow_empty=False)
    owner_token = serializers.CharField(max_length=128, required=False, allow_blank=True, default="")
    visitor_count = serializers.IntegerField(min_value=1, required=False, allow_null=True, default=None)
    guest = GuestContactSerializer(required=False)

    def to_command(self) -> CreateBookingGroupCommand:
        data = self.validated_data
        guest = data.get("guest") or {}
        return CreateBookingGroupCommand(
            tenant_id=data["tenant_id"],
            idempotency_key=data["idempotency_key"],
            items=[BookingItem(**item) for item in data["items"]],
            owner_token=data["owner_token"],
            visitor_count=data["visitor_count"],
            guest_name=guest.get("name", ""),
            guest_email=guest.get("email", ""),
            guest_phone=guest.get("phone", ""),
        )


class BookingSerializer(serializers.ModelSerializer):
    booking_group_id = serializers.ReadOnlyField(source="group_id")

    class Meta:
        model = Booking
        fields = [
            "id",
            "tenant",
            "booking_group_id",
            "slot",
            "service",
            "customer",
            "guest_name",
            "guest_email",
            "guest_phone",
            "visitor_count",
            "package_covered_quantity",
            "paid_quantity",
            "unit_price",
            "total_price",
            "currency",
            "status",
            "invoice_reference",
            "invoice_status",
            "cancelled_at",
            "cancellation_reason",
            "created_at",
        ]
        read_only_fields = fields


class BookingGroupSerializer(serializers.ModelSerializer):
    bookings = BookingSerializer(many=True, read_only=True)

    class Meta:
        model = BookingGroup
        fields = ["id", "tenant", "idempotency_key", "invoice_reference", "created_at", "bookings"]
        read_only_fields = fields


class CancelBookingSerializer(serializers.Serializer):
    tenant_id = serializers.UUIDField()
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class TransitionBookingSerializer(serializers.Serializer):
    tenant_id = serializers.UUIDField()
    status = serializers.ChoiceField(
        choices=[
            BookingStatus.CONFIRMED.value,
            BookingStatus.CHECKED_IN.value,
            BookingStatus.COMPLETED.value,
            BookingStatus.NO_SHOW.value,
        ]
    )

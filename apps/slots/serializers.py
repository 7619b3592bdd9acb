"""Serializers for slots and reservation holds."""

from __future__ import annotations

from django.utils import timezone  # type: ignore
from rest_framework import serializers  # type: ignore

from .models import ReservationLock, Slot


class SlotSerializer(serializers.ModelSerializer):
    service_name = serializers.CharField(source="service.name", read_only=True)

    class Meta:
        model = Slot
        fields = [
            "id",
            "tenant",
            "service",
            "service_name",
            "starts_at",
            "ends_at",
            "total_capacity",
            "available_capacity",
            "is_active",
        ]
        read_only_fields = fields


class HoldRequestSerializer(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1)
    owner_token = serializers.CharField(max_length=128)


class OwnerTokenSerializer(serializers.Serializer):
    owner_token = serializers.CharField(max_length=128)


class ReservationLockSerializer(serializers.ModelSerializer):
    seconds_remaining = serializers.SerializerMethodField()

    class Meta:
        model = ReservationLock
        fields = [
            "id",
            "slot",
            "quantity",
            "status",
            "expires_at",
            "seconds_remaining",
        ]
        read_only_fields = fields

    def get_seconds_remaining(self, obj: ReservationLock) -> int:
        return obj.seconds_remaining(timezone.now())

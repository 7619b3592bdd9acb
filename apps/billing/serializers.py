"""Serializers for billing jobs."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .models import BillingJob


class BillingJobSerializer(serializers.ModelSerializer):
    class Meta:
        model = BillingJob
        fields = [
            "id",
            "booking_group_id",
            "status",
            "outcome",
            "attempt_count",
            "next_attempt_at",
            "last_error",
            "enqueued_at",
            "started_at",
            "completed_at",
        ]
        read_only_fields = fields

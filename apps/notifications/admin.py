"""Admin registration for delivery logs."""

from __future__ import annotations

from django.contrib import admin

from .models import DeliveryLog


@admin.register(DeliveryLog)
class DeliveryLogAdmin(admin.ModelAdmin):
    list_display = ("channel", "recipient", "reference", "success", "created_at")
    list_filter = ("channel", "success")
    search_fields = ("recipient", "reference")

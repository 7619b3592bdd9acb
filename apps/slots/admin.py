"""Admin registration for slots and holds."""

from __future__ import annotations

from django.contrib import admin

from .models import ReservationLock, Slot
from .store import SlotStore


@admin.register(Slot)
class SlotAdmin(admin.ModelAdmin):
    list_display = (
        "starts_at",
        "ends_at",
        "service",
        "tenant",
        "available_capacity",
        "total_capacity",
        "is_active",
    )
    list_filter = ("is_active", "tenant", "service")
    readonly_fields = ("available_capacity", "created_at", "updated_at")
    actions = ["retire_slots"]

    def get_readonly_fields(self, request, obj=None):  # type: ignore
        if obj is not None:
            return self.readonly_fields + ("total_capacity",)
        return self.readonly_fields

    @admin.action(description="Retire selected slots")
    def retire_slots(self, request, queryset):  # type: ignore
        for slot_id in queryset.values_list("pk", flat=True):
            SlotStore.retire(slot_id)


@admin.register(ReservationLock)
class ReservationLockAdmin(admin.ModelAdmin):
    list_display = ("id", "slot", "quantity", "status", "expires_at", "created_at")
    list_filter = ("status",)
    readonly_fields = tuple(f.name for f in ReservationLock._meta.fields)

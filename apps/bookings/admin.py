"""Admin registration for bookings."""

from __future__ import annotations

from django.contrib import admin

from .models import Booking, BookingGroup


class BookingInline(admin.TabularInline):
    model = Booking
    extra = 0
    can_delete = False
    fields = ("slot", "visitor_count", "package_covered_quantity", "paid_quantity", "total_price", "status")
    readonly_fields = fields


@admin.register(BookingGroup)
class BookingGroupAdmin(admin.ModelAdmin):
    list_display = ("id", "tenant", "idempotency_key", "invoice_reference", "created_at")
    search_fields = ("idempotency_key", "invoice_reference")
    inlines = [BookingInline]


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "slot",
        "visitor_count",
        "package_covered_quantity",
        "paid_quantity",
        "total_price",
        "status",
        "invoice_status",
        "created_at",
    )
    list_filter = ("status", "invoice_status", "tenant")
    search_fields = ("id", "guest_email", "customer__email", "invoice_reference")
    readonly_fields = (
        "visitor_count",
        "package_covered_quantity",
        "paid_quantity",
        "unit_price",
        "total_price",
        "invoice_reference",
        "invoice_status",
        "created_at",
        "updated_at",
    )

"""Admin registration for packages."""

from __future__ import annotations

from django.contrib import admin

from .models import AllotmentBalance, AllotmentUsage, PackageSubscription


class AllotmentBalanceInline(admin.TabularInline):
    model = AllotmentBalance
    extra = 0
    readonly_fields = ("used_quantity", "remaining_quantity")


@admin.register(PackageSubscription)
class PackageSubscriptionAdmin(admin.ModelAdmin):
    list_display = ("name", "customer", "tenant", "status", "created_at")
    list_filter = ("status", "tenant")
    search_fields = ("name", "customer__name", "customer__email")
    inlines = [AllotmentBalanceInline]


@admin.register(AllotmentUsage)
class AllotmentUsageAdmin(admin.ModelAdmin):
    list_display = ("booking", "balance", "quantity", "restored_at", "created_at")
    list_filter = ("restored_at",)

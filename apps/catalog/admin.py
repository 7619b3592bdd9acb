"""Admin registration for the catalog."""

from __future__ import annotations

from django.contrib import admin

from .models import Customer, Service, Tenant


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ("name", "currency", "is_active", "created_at")
    list_filter = ("is_active",)
    search_fields = ("name",)


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ("name", "tenant", "unit_price", "is_active")
    list_filter = ("is_active", "tenant")
    search_fields = ("name",)


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ("name", "tenant", "email", "phone")
    search_fields = ("name", "email", "phone")

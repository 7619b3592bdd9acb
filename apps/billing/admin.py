"""Admin registration for billing jobs."""

from __future__ import annotations

from django.contrib import admin

from .models import BillingJob
from .queue import BillingJobQueue


@admin.register(BillingJob)
class BillingJobAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "booking_group_id",
        "status",
        "outcome",
        "attempt_count",
        "next_attempt_at",
        "enqueued_at",
    )
    list_filter = ("status", "outcome")
    search_fields = ("booking_group_id",)
    readonly_fields = tuple(f.name for f in BillingJob._meta.fields)
    actions = ["retry_jobs"]

    @admin.action(description="Re-queue selected failed jobs")
    def retry_jobs(self, request, queryset):  # type: ignore
        queue = BillingJobQueue()
        retried = sum(1 for job in queryset.filter(status=BillingJob.Status.FAILED) if queue.retry(job))
        self.message_user(request, f"{retried} job(s) re-queued.")

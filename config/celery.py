import os

from celery import Celery
from celery.schedules import crontab  # type: ignore

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.dev")

app = Celery("slotkeeper")

app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()


# ============================================================================
# CELERY BEAT SCHEDULE (Periodic Tasks)
# ============================================================================

app.conf.beat_schedule = {
    # Reclaim expired reservation holds
    "sweep-expired-holds": {
        "task": "slots.sweep_expired_holds",
        "schedule": float(os.environ.get("RESERVATION_SWEEP_INTERVAL_SECONDS", 30)),
        "options": {"expires": 25},
    },
    # Invoice reconciliation worker
    "process-billing-jobs": {
        "task": "billing.process_billing_jobs",
        "schedule": float(os.environ.get("BILLING_POLL_INTERVAL_SECONDS", 30)),
        "options": {"expires": 25},
    },
    # Close billing jobs whose bookings are gone
    "cleanup-orphaned-billing-jobs": {
        "task": "billing.cleanup_orphaned_billing_jobs",
        "schedule": crontab(minute="*/10"),
    },
}

app.conf.timezone = "UTC"

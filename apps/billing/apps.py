from django.apps import AppConfig


class BillingConfig(AppConfig):
    name = "apps.billing"
    default_auto_field = "django.db.models.BigAutoField"

    def ready(self):
        from apps.bookings.domain.events import BookingGroupCreated
        from shared.application.message_bus import message_bus

        from .handlers import kick_billing_worker

        message_bus.register_event_handler(BookingGroupCreated, kick_billing_worker)

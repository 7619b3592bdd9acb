from django.apps import AppConfig


class NotificationsConfig(AppConfig):
    name = "apps.notifications"
    default_auto_field = "django.db.models.BigAutoField"

    def ready(self):
        from apps.bookings.domain.events import BookingCancelled
        from apps.packages.events import AllotmentExhausted
        from shared.application.message_bus import message_bus

        from .services import notify_allotment_exhausted, notify_booking_cancelled

        message_bus.register_event_handler(AllotmentExhausted, notify_allotment_exhausted)
        message_bus.register_event_handler(BookingCancelled, notify_booking_cancelled)

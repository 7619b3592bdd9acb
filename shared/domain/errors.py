"""
Typed failures of the booking core.

Every error carries a stable ``code`` used by API clients, an HTTP status
used by the API exception handler and a ``retryable`` flag telling the
caller whether the same request may succeed later.
"""

from typing import Optional


class BookingCoreError(Exception):
    """Base class for all domain-level rejections"""

    code = 'booking_core_error'
    http_status = 400
    retryable = False
    default_message = 'Request rejected'

    def __init__(self, message: Optional[str] = None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            'code': self.code,
            'detail': self.message,
            'retryable': self.retryable,
        }


class CapacityExceeded(BookingCoreError):
    code = 'capacity_exceeded'
    http_status = 409
    retryable = True
    default_message = 'Not enough capacity available'

    def __init__(self, slot_id=None, requested: int = 0, available: int = 0, message: Optional[str] = None):
        self.slot_id = slot_id
        self.requested = requested
        self.available = available
        super().__init__(
            message or (
                f"Not enough capacity on slot {slot_id}. "
                f"Only {available} available, but {requested} requested."
            ),
            slot_id=slot_id,
            requested=requested,
            available=available,
        )


class DuplicateGroup(BookingCoreError):
    """Raised internally when an idempotency key was already used"""
    code = 'duplicate_group'
    http_status = 200
    default_message = 'Booking group already exists for this idempotency key'

    def __init__(self, group=None, message: Optional[str] = None):
        self.group = group
        super().__init__(message)


class TenantMismatch(BookingCoreError):
    code = 'tenant_mismatch'
    http_status = 403
    default_message = 'Resource does not belong to this tenant'


class SlotNotFound(BookingCoreError):
    code = 'slot_not_found'
    http_status = 404
    default_message = 'Slot not found'


class SlotUnavailable(BookingCoreError):
    code = 'slot_unavailable'
    http_status = 409
    default_message = 'Slot is not available for booking'


class LockNotFound(BookingCoreError):
    code = 'lock_not_found'
    http_status = 404
    default_message = 'Reservation hold not found'


class LockExpired(BookingCoreError):
    code = 'lock_expired'
    http_status = 410
    retryable = True
    default_message = 'Reservation hold has expired, please select the slot again'


class ItemCountMismatch(BookingCoreError):
    code = 'item_count_mismatch'
    http_status = 400
    default_message = 'Visitor count does not match the booking items'


class BookingNotFound(BookingCoreError):
    code = 'booking_not_found'
    http_status = 404
    default_message = 'Booking not found'


class InvalidTransition(BookingCoreError):
    code = 'invalid_transition'
    http_status = 409
    default_message = 'Booking cannot move to the requested status'


class ExternalProviderError(BookingCoreError):
    code = 'external_provider_error'
    http_status = 502
    retryable = True
    default_message = 'External provider call failed'


class AllotmentExhaustedError(CapacityExceeded):
    code = 'allotment_exhausted'
    default_message = 'Package allotment is exhausted'

"""
Typed failures of the reservation core.

Every service function either returns the updated record or raises one of
these after rolling back its own transaction. The HTTP layer maps `status_code`
onto the response; direct callers catch the class they care about.
"""


class ReservationError(Exception):
    code = "reservation_error"
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(ReservationError):
    code = "validation_error"
    status_code = 422


class InvalidRange(ValidationError):
    code = "invalid_range"


class NotFound(ReservationError):
    code = "not_found"
    status_code = 404


class Unauthorized(ReservationError):
    code = "unauthorized"
    status_code = 403


class InsufficientStock(ReservationError):
    code = "insufficient_stock"
    status_code = 409


class CapacityViolation(ReservationError):
    code = "capacity_violation"
    status_code = 409


class ResourceConflict(ReservationError):
    code = "resource_conflict"
    status_code = 409


class SlotFull(ReservationError):
    code = "slot_full"
    status_code = 409


class InvalidTransition(ReservationError):
    code = "invalid_transition"
    status_code = 409


class HasActiveBookings(ReservationError):
    code = "has_active_bookings"
    status_code = 409

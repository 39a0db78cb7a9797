"""
Business errors raised by the booking services.

Each error knows how the HTTP layer should render it, and which guest-facing
outcome it belongs to:
  availability -> "room no longer available" (suggest alternatives)
  payment      -> "payment failed" (offer retry)
  system       -> "system error" (offer retry later)
  validation   -> bad input, no retry
"""


class BookingError(Exception):
    status_code = 400
    code = "BOOKING_ERROR"
    category = "system"
    retryable = False
    default_message = "Booking operation failed"

    def __init__(self, message=None, **details):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details

    def to_dict(self):
        out = {
            "error": self.message,
            "code": self.code,
            "category": self.category,
            "retryable": self.retryable,
        }
        if self.details:
            out["details"] = self.details
        return out


# ---------- validation ----------
class InvalidDateRange(BookingError):
    code = "INVALID_DATE_RANGE"
    category = "validation"
    default_message = "Check-out must be after check-in and check-in cannot be in the past"


class CapacityExceeded(BookingError):
    code = "CAPACITY_EXCEEDED"
    category = "validation"
    default_message = "Too many guests for this room"


class RoomNotFound(BookingError):
    status_code = 404
    code = "ROOM_NOT_FOUND"
    category = "validation"
    default_message = "Room not found"


class BookingNotFound(BookingError):
    status_code = 404
    code = "BOOKING_NOT_FOUND"
    category = "validation"
    default_message = "Booking not found"


# ---------- availability ----------
class RoomUnavailable(BookingError):
    status_code = 409
    code = "ROOM_UNAVAILABLE"
    category = "availability"
    default_message = "Room is already booked for the selected dates"


class RoomNotReservable(BookingError):
    status_code = 409
    code = "ROOM_NOT_RESERVABLE"
    category = "availability"
    default_message = "Room is not open for reservations"


# ---------- state machine ----------
class InvalidTransition(BookingError):
    status_code = 409
    code = "INVALID_TRANSITION"
    category = "validation"
    default_message = "Booking cannot move to that state"


class AlreadyAttached(BookingError):
    status_code = 409
    code = "ALREADY_ATTACHED"
    category = "payment"
    default_message = "A payment session is already attached to this booking"


# ---------- payment gateway ----------
class GatewayUnreachable(BookingError):
    status_code = 503
    code = "GATEWAY_UNREACHABLE"
    category = "system"
    retryable = True
    default_message = "Payment gateway is unreachable, try again shortly"


class GatewayNotConfigured(BookingError):
    status_code = 500
    code = "GATEWAY_NOT_CONFIGURED"
    category = "system"
    default_message = "Payment gateway not configured"


class InvalidReference(BookingError):
    status_code = 400
    code = "INVALID_REFERENCE"
    category = "payment"
    default_message = "Payment reference not recognised"


class AmountMismatch(BookingError):
    status_code = 422
    code = "AMOUNT_MISMATCH"
    category = "payment"
    default_message = "Paid amount does not match the booking total"

"""Domain Exceptions"""
from typing import Optional


class BookingEngineError(Exception):
    """Base class for every error raised by the booking engine"""


class ValidationError(BookingEngineError, ValueError):
    """Malformed request data; the caller can fix the input and retry"""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or [message]


class HotelNotFound(BookingEngineError):
    pass


class BookingNotFound(BookingEngineError):
    pass


class InsufficientRooms(BookingEngineError):
    """Availability check failed for the requested stay"""

    def __init__(self, message: str, available_rooms: int = 0, requested_rooms: int = 0):
        super().__init__(message)
        self.available_rooms = available_rooms
        self.requested_rooms = requested_rooms


class InsufficientPoints(BookingEngineError):
    def __init__(self, message: str, balance: int = 0, requested: int = 0):
        super().__init__(message)
        self.balance = balance
        self.requested = requested


class RedemptionLimitExceeded(BookingEngineError):
    pass


class Unauthorized(BookingEngineError):
    pass


class InvalidBookingState(BookingEngineError):
    pass


class PaymentFailed(BookingEngineError):
    """Gateway declined the charge; booking stays confirmed and unpaid"""

    def __init__(self, message: str, payment=None):
        super().__init__(message)
        self.payment = payment


class PaymentTimeout(BookingEngineError):
    """Gateway did not answer within the configured timeout"""


class RefundFailed(BookingEngineError):
    """Gateway declined the refund; needs manual reconciliation"""

    def __init__(self, message: str, payment_id=None):
        super().__init__(message)
        self.payment_id = payment_id


class ConcurrencyConflict(BookingEngineError):
    """A concurrent writer changed data this unit of work depended on"""

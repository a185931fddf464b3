# File: campus_parking/application/errors.py
"""
Exceptions raised by the booking engine

Every error carries a machine-readable `kind` and a human-readable message.
The class hierarchy mirrors how a caller should react:

- ValidationError: malformed or out-of-policy request, not retried
- ConflictError: the slot is taken for that window, retry with other parameters
- StateError: the booking moved on since the caller looked at it
- NotFoundError / UnauthorizedError: lookup and ownership failures
- StorageUnavailable: storage timed out or failed
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    # createBooking validation
    INVALID_WINDOW = "InvalidWindow"
    WINDOW_IN_PAST = "WindowInPast"
    TOO_FAR_IN_ADVANCE = "TooFarInAdvance"
    DURATION_TOO_LONG = "DurationTooLong"
    SLOT_UNSUITABLE = "SlotUnsuitable"
    LOCATION_MISMATCH = "LocationMismatch"
    TOO_MANY_ACTIVE_BOOKINGS = "TooManyActiveBookings"
    VEHICLE_NOT_REGISTERED = "VehicleNotRegistered"
    INVALID_EXTENSION = "InvalidExtension"

    # conflicts
    SLOT_CONFLICT = "SlotConflict"
    EXTENSION_CONFLICT = "ExtensionConflict"

    # state
    NOT_ACTIVE = "NotActive"
    CANCELLATION_WINDOW_CLOSED = "CancellationWindowClosed"
    NOT_EXTENDABLE = "NotExtendable"
    ALREADY_CHECKED_IN = "AlreadyCheckedIn"
    TOO_EARLY = "TooEarly"
    WINDOW_EXPIRED = "WindowExpired"
    NOT_CHECKED_IN = "NotCheckedIn"
    ALREADY_CHECKED_OUT = "AlreadyCheckedOut"

    # lookup / access
    NOT_FOUND = "NotFound"
    UNAUTHORIZED = "Unauthorized"

    # infrastructure
    STORAGE_UNAVAILABLE = "StorageUnavailable"


class BookingError(Exception):
    """Base exception for booking engine errors"""

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    def to_dict(self):
        return {"error_kind": self.kind.value, "message": self.message}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.kind.value}: {self.message})"


class ValidationError(BookingError):
    """Request is malformed or violates booking policy"""
    pass


class ConflictError(BookingError):
    """Requested window collides with another active booking"""
    pass


class StateError(BookingError):
    """Booking is not in a state that allows the operation"""
    pass


class NotFoundError(BookingError):

    def __init__(self, what: str, identifier: str):
        super().__init__(ErrorKind.NOT_FOUND, f"{what} {identifier} not found")
        self.identifier = identifier


class UnauthorizedError(BookingError):

    def __init__(self, message: str = "Access denied"):
        super().__init__(ErrorKind.UNAUTHORIZED, message)


class StorageUnavailable(BookingError):
    """Storage failed or did not answer in time"""

    def __init__(self, message: str = "Storage unavailable", cause: Optional[BaseException] = None):
        super().__init__(ErrorKind.STORAGE_UNAVAILABLE, message)
        self.cause = cause


class StaleEntityError(Exception):
    """
    Optimistic-concurrency check failed: the stored version moved on
    between read and write. Raised by repositories, handled by the engine.
    """

    def __init__(self, entity_type: str, entity_id: str, expected: int, actual: Optional[int]):
        super().__init__(
            f"{entity_type} {entity_id} changed concurrently "
            f"(expected version {expected}, found {actual})"
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual

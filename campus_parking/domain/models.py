# File: campus_parking/domain/models.py
"""
Domain Models for the Campus Parking Booking Engine
Following Domain-Driven Design (DDD) principles with rich domain models

This module contains:
1. Value Objects: Immutable objects with no identity, only values
2. Enums: Type enumerations for domain concepts (zones, vehicle types, roles)
3. Entities: ParkingSlot and Booking, objects with identity and lifecycle
4. Role/permission table

Entities guard their own state transitions (a booking only leaves `active`
once); the policy that decides *whether* a transition is allowed lives in the
booking engine.
"""

from dataclasses import dataclass
from typing import Optional, List, Dict, Any, FrozenSet
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
import re
import uuid


# ============================================================================
# DOMAIN PRIMITIVES / VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)
class Money:
    """
    Value Object: Monetary amount with currency
    Provides arithmetic operations with validation
    """
    amount: Decimal
    currency: str = "USD"

    def __post_init__(self):
        """Validate money amount"""
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))

        if self.amount < Decimal('0'):
            raise ValueError("Money amount cannot be negative")

        if len(self.currency) != 3:
            raise ValueError(f"Currency must be 3-letter code: {self.currency}")

    @classmethod
    def zero(cls, currency: str = "USD") -> 'Money':
        return cls(Decimal('0.00'), currency)

    def __add__(self, other: 'Money') -> 'Money':
        """Add two money amounts (same currency only)"""
        if self.currency != other.currency:
            raise ValueError(f"Cannot add {self.currency} to {other.currency}")
        return Money(self.amount + other.amount, self.currency)

    def __mul__(self, multiplier) -> 'Money':
        """Multiply by a number of billable units"""
        return Money(self.amount * Decimal(str(multiplier)), self.currency)

    def quantized(self) -> 'Money':
        """Round to cents"""
        return Money(self.amount.quantize(Decimal('0.01')), self.currency)

    def format(self) -> str:
        return f"{self.currency} {self.amount:.2f}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": str(self.amount.quantize(Decimal('0.01'))),
            "currency": self.currency
        }


@dataclass(frozen=True)
class TimeRange:
    """
    Value Object: Half-open time window [start_time, end_time)
    Touching endpoints do not overlap.
    """
    start_time: datetime
    end_time: datetime

    def __post_init__(self):
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def duration_hours(self) -> float:
        return self.duration.total_seconds() / 3600

    def contains(self, instant: datetime) -> bool:
        """Closed containment, used for 'currently inside the window' checks"""
        return self.start_time <= instant <= self.end_time

    def overlaps(self, other: 'TimeRange') -> bool:
        """Check if this time range overlaps with another"""
        return (self.start_time < other.end_time and
                self.end_time > other.start_time)

    def __str__(self) -> str:
        start_str = self.start_time.strftime("%Y-%m-%d %H:%M")
        end_str = self.end_time.strftime("%Y-%m-%d %H:%M")
        return f"{start_str} to {end_str} ({self.duration_hours:.1f} hours)"


@dataclass(frozen=True)
class VehiclePlate:
    """
    Value Object: Vehicle registration number
    Stored trimmed and upper-cased so comparisons are case-insensitive.
    """
    value: str

    def __post_init__(self):
        if not self.value or not self.value.strip():
            raise ValueError("Vehicle number cannot be empty")

        object.__setattr__(self, 'value', self.value.strip().upper())

        if len(self.value) < 2 or len(self.value) > 15:
            raise ValueError(f"Vehicle number must be 2-15 characters, got: {self.value}")

        if not re.match(r'^[A-Z0-9\s\-]+$', self.value):
            raise ValueError(
                f"Vehicle number can only contain letters, numbers, spaces, and hyphens: {self.value}"
            )

    def __str__(self) -> str:
        return self.value


# ============================================================================
# ENUMS FOR DOMAIN TYPES
# ============================================================================

class CampusLocation(str, Enum):
    """Campus zones a slot can belong to"""
    BUILDING_A = "Building A"
    BUILDING_B = "Building B"
    BUILDING_C = "Building C"
    MAIN_CAMPUS = "Main Campus"
    SPORTS_COMPLEX = "Sports Complex"

    def __str__(self) -> str:
        return self.value


class VehicleType(str, Enum):
    """
    Vehicle types. ANY is only meaningful on a slot ("accepts every type");
    a booked vehicle always has a concrete type.
    """
    CAR = "car"
    MOTORCYCLE = "motorcycle"
    BICYCLE = "bicycle"
    ANY = "any"

    def __str__(self) -> str:
        return self.value


class ReservationClass(str, Enum):
    """Which population a slot is reserved for"""
    GENERAL = "general"
    FACULTY = "faculty"
    STUDENT = "student"
    DISABLED = "disabled"
    VISITOR = "visitor"


class MaintenanceStatus(str, Enum):
    OPERATIONAL = "operational"
    MAINTENANCE = "maintenance"
    OUT_OF_ORDER = "out-of-order"


class BookingStatus(str, Enum):
    """
    Booking statuses. ACTIVE is the only status a booking can leave and the
    only one that occupies a slot.
    """
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    NO_SHOW = "no-show"

    @property
    def is_terminal(self) -> bool:
        return self != BookingStatus.ACTIVE


class Role(str, Enum):
    """Closed set of caller roles"""
    STUDENT = "student"
    FACULTY = "faculty"
    ADMIN = "admin"
    VISITOR = "visitor"
    DISABLED = "disabled"


class Permission(str, Enum):
    # User management
    CREATE_USERS = "create_users"
    READ_ALL_USERS = "read_all_users"
    UPDATE_ALL_USERS = "update_all_users"
    DELETE_USERS = "delete_users"

    # Parking management
    CREATE_PARKING_SLOTS = "create_parking_slots"
    UPDATE_PARKING_SLOTS = "update_parking_slots"
    DELETE_PARKING_SLOTS = "delete_parking_slots"
    VIEW_ALL_BOOKINGS = "view_all_bookings"
    CANCEL_ANY_BOOKING = "cancel_any_booking"

    # Booking management
    CREATE_BOOKING = "create_booking"
    VIEW_OWN_BOOKINGS = "view_own_bookings"
    CANCEL_OWN_BOOKING = "cancel_own_booking"

    # Reports and system
    VIEW_ANALYTICS = "view_analytics"
    GENERATE_REPORTS = "generate_reports"
    MANAGE_SYSTEM_SETTINGS = "manage_system_settings"


_MEMBER_PERMISSIONS: FrozenSet[Permission] = frozenset({
    Permission.CREATE_BOOKING,
    Permission.VIEW_OWN_BOOKINGS,
    Permission.CANCEL_OWN_BOOKING,
})


def permissions_for(role: Role) -> FrozenSet[Permission]:
    """Pure role -> permission mapping. Every Role member is handled explicitly."""
    if role is Role.ADMIN:
        return frozenset(Permission)
    if role in (Role.STUDENT, Role.FACULTY, Role.VISITOR, Role.DISABLED):
        return _MEMBER_PERMISSIONS
    raise ValueError(f"Unknown role: {role!r}")


# ============================================================================
# SMALL VALUE RECORDS
# ============================================================================

@dataclass(frozen=True)
class VehicleInfo:
    """The vehicle a booking is made for"""
    number: str
    vehicle_type: VehicleType

    def __post_init__(self):
        object.__setattr__(self, 'number', VehiclePlate(self.number).value)
        object.__setattr__(self, 'vehicle_type', VehicleType(self.vehicle_type))
        if self.vehicle_type == VehicleType.ANY:
            raise ValueError("A booked vehicle must have a concrete vehicle type")

    def matches(self, other: 'RegisteredVehicle') -> bool:
        return (self.number == other.number.strip().upper() and
                self.vehicle_type == VehicleType(other.vehicle_type))

    def to_dict(self) -> Dict[str, Any]:
        return {"number": self.number, "type": self.vehicle_type.value}


@dataclass(frozen=True)
class RegisteredVehicle:
    """A vehicle as registered in the user directory"""
    number: str
    vehicle_type: VehicleType
    active: bool = True


@dataclass(frozen=True)
class ExtensionRecord:
    """One entry of a booking's extension history"""
    original_end: datetime
    new_end: datetime
    added_hours: int
    added_amount: Money
    at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original_end": self.original_end.isoformat(),
            "new_end": self.new_end.isoformat(),
            "added_hours": self.added_hours,
            "added_amount": self.added_amount.to_dict(),
            "at": self.at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExtensionRecord':
        amount = data["added_amount"]
        return cls(
            original_end=datetime.fromisoformat(data["original_end"]),
            new_end=datetime.fromisoformat(data["new_end"]),
            added_hours=int(data["added_hours"]),
            added_amount=Money(Decimal(amount["amount"]), amount.get("currency", "USD")),
            at=datetime.fromisoformat(data["at"]),
        )


# ============================================================================
# DOMAIN ENTITIES
# ============================================================================

class Entity:
    """
    Base class for all domain entities
    Provides identity and an optimistic-concurrency version token
    """

    def __init__(self, id: Optional[str] = None, version: int = 0):
        self._id = id or str(uuid.uuid4())
        self.version = version

    @property
    def id(self) -> str:
        return self._id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Entity):
            return False
        return self.id == other.id and type(self) == type(other)

    def __hash__(self) -> int:
        return hash((self.id, type(self).__name__))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id})"


class ParkingSlot(Entity):
    """
    Entity: A single physical parking space

    `current_booking_id` is read-only from the outside; it changes only
    through `assign_current_booking`, which slot repositories call from their
    claim/release operations. `is_available` is always derived.
    """

    def __init__(
        self,
        slot_number: str,
        location: CampusLocation,
        vehicle_type: VehicleType = VehicleType.ANY,
        reserved_for: ReservationClass = ReservationClass.GENERAL,
        hourly_rate: Optional[Money] = None,
        maintenance_status: MaintenanceStatus = MaintenanceStatus.OPERATIONAL,
        active: bool = True,
        section: str = "General",
        floor: str = "Ground Floor",
        features: Optional[List[str]] = None,
        current_booking_id: Optional[str] = None,
        id: Optional[str] = None,
        version: int = 0
    ):
        super().__init__(id, version)
        self.slot_number = slot_number.strip().upper()
        self.location = CampusLocation(location)
        self.vehicle_type = VehicleType(vehicle_type)
        self.reserved_for = ReservationClass(reserved_for)
        self.hourly_rate = hourly_rate or Money(Decimal('5.00'))
        self.maintenance_status = MaintenanceStatus(maintenance_status)
        self.active = active
        self.section = section
        self.floor = floor
        self.features = list(features or [])
        self._current_booking_id = current_booking_id

        self._validate()

    def _validate(self) -> None:
        if not self.slot_number:
            raise ValueError("Slot number is required")
        if len(self.slot_number) > 10:
            raise ValueError("Slot number must be between 1 and 10 characters")

    @property
    def current_booking_id(self) -> Optional[str]:
        return self._current_booking_id

    @property
    def is_operational(self) -> bool:
        return self.active and self.maintenance_status == MaintenanceStatus.OPERATIONAL

    @property
    def is_available(self) -> bool:
        return self._current_booking_id is None and self.is_operational

    @property
    def status(self) -> str:
        if not self.active:
            return "inactive"
        if self.maintenance_status != MaintenanceStatus.OPERATIONAL:
            return self.maintenance_status.value
        if self._current_booking_id is not None:
            return "occupied"
        return "available"

    def assign_current_booking(self, booking_id: Optional[str]) -> None:
        """Point the slot at a booking (or clear it). Slot repositories only."""
        self._current_booking_id = booking_id

    def accepts_vehicle(self, vehicle_type: VehicleType) -> bool:
        return self.vehicle_type == VehicleType.ANY or self.vehicle_type == VehicleType(vehicle_type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "slot_number": self.slot_number,
            "location": self.location.value,
            "section": self.section,
            "floor": self.floor,
            "vehicle_type": self.vehicle_type.value,
            "reserved_for": self.reserved_for.value,
            "hourly_rate": self.hourly_rate.to_dict(),
            "maintenance_status": self.maintenance_status.value,
            "active": self.active,
            "features": list(self.features),
            "current_booking_id": self.current_booking_id,
            "is_available": self.is_available,
            "status": self.status,
            "version": self.version,
        }

    def __str__(self) -> str:
        return f"Slot {self.slot_number} ({self.location}) - {self.status}"


class Booking(Entity):
    """
    Entity: A time-bounded reservation of one slot by one user

    Derived fields (duration_hours, total_amount) are computed by the engine
    before the booking is written; nothing is derived as a side effect of
    persistence.
    """

    def __init__(
        self,
        user_id: str,
        slot_id: str,
        vehicle: VehicleInfo,
        start_time: datetime,
        end_time: datetime,
        location: CampusLocation,
        duration_hours: int,
        total_amount: Money,
        status: BookingStatus = BookingStatus.ACTIVE,
        check_in_time: Optional[datetime] = None,
        check_out_time: Optional[datetime] = None,
        extension_history: Optional[List[ExtensionRecord]] = None,
        cancellation_reason: Optional[str] = None,
        cancelled_at: Optional[datetime] = None,
        cancelled_by: Optional[str] = None,
        qr_code: Optional[str] = None,
        reminder_sent: bool = False,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        id: Optional[str] = None,
        version: int = 0
    ):
        super().__init__(id, version)
        if end_time <= start_time:
            raise ValueError("End time must be after start time")
        self.user_id = user_id
        self.slot_id = slot_id
        self.vehicle = vehicle
        self.start_time = start_time
        self.end_time = end_time
        self.location = CampusLocation(location)
        self.duration_hours = duration_hours
        self.total_amount = total_amount
        self.status = BookingStatus(status)
        self.check_in_time = check_in_time
        self.check_out_time = check_out_time
        self.extension_history: List[ExtensionRecord] = list(extension_history or [])
        self.cancellation_reason = cancellation_reason
        self.cancelled_at = cancelled_at
        self.cancelled_by = cancelled_by
        self.qr_code = qr_code
        self.reminder_sent = reminder_sent
        self.created_at = created_at
        self.updated_at = updated_at or created_at

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(self.start_time, self.end_time)

    @property
    def is_active(self) -> bool:
        return self.status == BookingStatus.ACTIVE

    @property
    def is_extended(self) -> bool:
        return bool(self.extension_history)

    @property
    def actual_duration_hours(self) -> Optional[float]:
        if self.check_in_time and self.check_out_time:
            return (self.check_out_time - self.check_in_time).total_seconds() / 3600
        return None

    def _require_active(self, action: str) -> None:
        if not self.is_active:
            raise ValueError(f"Cannot {action} booking {self.id} in status {self.status.value}")

    def mark_cancelled(self, cancelled_by: str, reason: Optional[str], at: datetime) -> None:
        self._require_active("cancel")
        self.status = BookingStatus.CANCELLED
        self.cancellation_reason = reason
        self.cancelled_at = at
        self.cancelled_by = cancelled_by
        self.updated_at = at

    def apply_extension(self, additional_hours: int, hourly_rate: Money, at: datetime) -> ExtensionRecord:
        self._require_active("extend")
        added_amount = (hourly_rate * additional_hours).quantized()
        new_end = self.end_time + timedelta(hours=additional_hours)
        record = ExtensionRecord(
            original_end=self.end_time,
            new_end=new_end,
            added_hours=additional_hours,
            added_amount=added_amount,
            at=at,
        )
        self.extension_history.append(record)
        self.end_time = new_end
        self.duration_hours += additional_hours
        self.total_amount = self.total_amount + added_amount
        self.updated_at = at
        return record

    def mark_checked_in(self, at: datetime) -> None:
        self._require_active("check in")
        if self.check_in_time is not None:
            raise ValueError(f"Booking {self.id} is already checked in")
        self.check_in_time = at
        self.updated_at = at

    def mark_completed(self, at: datetime) -> None:
        self._require_active("complete")
        self.check_out_time = at
        self.status = BookingStatus.COMPLETED
        self.updated_at = at

    def record_late_check_out(self, at: datetime) -> None:
        """Check-out after the booking already left active; the status is kept"""
        if self.is_active:
            raise ValueError(f"Booking {self.id} is active, complete it instead")
        if self.check_in_time is None or self.check_out_time is not None:
            raise ValueError(f"Booking {self.id} cannot be checked out")
        self.check_out_time = at
        self.updated_at = at

    def mark_lapsed(self, status: BookingStatus, at: datetime) -> None:
        """Sweep transition to EXPIRED or NO_SHOW"""
        if status not in (BookingStatus.EXPIRED, BookingStatus.NO_SHOW):
            raise ValueError(f"Not a lapse status: {status}")
        self._require_active("expire")
        self.status = status
        self.updated_at = at

    def to_dict(self) -> Dict[str, Any]:
        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "user_id": self.user_id,
            "slot_id": self.slot_id,
            "vehicle": self.vehicle.to_dict(),
            "start_time": iso(self.start_time),
            "end_time": iso(self.end_time),
            "location": self.location.value,
            "duration_hours": self.duration_hours,
            "status": self.status.value,
            "total_amount": self.total_amount.to_dict(),
            "check_in_time": iso(self.check_in_time),
            "check_out_time": iso(self.check_out_time),
            "extension_history": [record.to_dict() for record in self.extension_history],
            "is_extended": self.is_extended,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_at": iso(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "qr_code": self.qr_code,
            "reminder_sent": self.reminder_sent,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "version": self.version,
        }

    def __str__(self) -> str:
        return f"Booking {self.id} [{self.status.value}] slot={self.slot_id} {self.time_range}"

# File: campus_parking/application/ports.py
"""
Ports: the collaborators the booking engine depends on

1. Clock - the only source of "now" (naive UTC datetimes)
2. UserDirectoryPort - registered vehicles and role of a user
3. NotificationPort - fire-and-forget delivery of domain events
4. DomainEvent - the record handed to notification ports and event bus observers
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable
from uuid import uuid4
import json
import threading

from ..domain.models import RegisteredVehicle, Role


def to_naive_utc(value: datetime) -> datetime:
    """Normalise an instant to naive UTC; naive input is assumed to be UTC already"""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# ============================================================================
# CLOCK
# ============================================================================

@runtime_checkable
class Clock(Protocol):

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall-clock time in naive UTC"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class ManualClock:
    """Settable clock for tests and simulations"""

    def __init__(self, start: datetime):
        self._now = to_naive_utc(start)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, value: datetime) -> None:
        with self._lock:
            self._now = to_naive_utc(value)

    def advance(self, **delta: float) -> datetime:
        """advance(minutes=30), advance(hours=2), ..."""
        with self._lock:
            self._now = self._now + timedelta(**delta)
            return self._now


# ============================================================================
# USER DIRECTORY
# ============================================================================

@runtime_checkable
class UserDirectoryPort(Protocol):
    """Read-only view of the user registry"""

    def get_registered_vehicles(self, user_id: str) -> List[RegisteredVehicle]:
        ...

    def get_role(self, user_id: str) -> Role:
        ...


# ============================================================================
# DOMAIN EVENTS
# ============================================================================

class EventType(str, Enum):
    """Committed transitions observers can react to"""
    BOOKING_CREATED = "booking_created"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_EXTENDED = "booking_extended"
    BOOKING_CHECKED_IN = "booking_checked_in"
    BOOKING_COMPLETED = "booking_completed"
    BOOKING_EXPIRED = "booking_expired"
    BOOKING_NO_SHOW = "booking_no_show"
    BOOKING_REMINDER = "booking_reminder"
    SLOT_MAINTENANCE_CHANGED = "slot_maintenance_changed"


@dataclass
class DomainEvent:
    """Something that happened to a booking or slot, after it was committed"""
    event_type: EventType
    occurred_at: datetime
    booking_id: Optional[str] = None
    slot_id: Optional[str] = None
    user_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['event_type'] = self.event_type.value
        data['occurred_at'] = self.occurred_at.isoformat()
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


# ============================================================================
# NOTIFICATIONS
# ============================================================================

@runtime_checkable
class NotificationPort(Protocol):
    """
    Fire-and-forget notification request.
    Failures are the caller's to log; they never undo a committed transition.
    """

    def notify(self, event: DomainEvent) -> None:
        ...

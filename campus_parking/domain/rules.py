# File: campus_parking/domain/rules.py
"""
Domain Services: stateless booking rules

Pure functions over slots, bookings and instants. Nothing here reads a clock
or touches storage, so each rule can be tested in isolation and reused by both
the lifecycle engine and the availability queries.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
import math

from .models import (
    Booking, BookingStatus, Money, ParkingSlot, ReservationClass, Role,
    TimeRange, VehicleType
)


# ============================================================================
# OVERLAP
# ============================================================================

def windows_overlap(
    first_start: datetime,
    first_end: datetime,
    second_start: datetime,
    second_end: datetime
) -> bool:
    """Half-open overlap: [a, b) and [c, d) overlap iff a < d and c < b"""
    return first_start < second_end and second_start < first_end


# ============================================================================
# SUITABILITY
# ============================================================================

def reservation_matches(reserved_for: ReservationClass, role: Role) -> bool:
    """
    Whether a caller with `role` may use a slot reserved for `reserved_for`.

    general matches everyone; faculty and student slots also admit admins;
    disabled and visitor slots only admit the matching role.
    """
    if reserved_for is ReservationClass.GENERAL:
        return True
    if reserved_for is ReservationClass.FACULTY:
        return role in (Role.FACULTY, Role.ADMIN)
    if reserved_for is ReservationClass.STUDENT:
        return role in (Role.STUDENT, Role.ADMIN)
    if reserved_for is ReservationClass.DISABLED:
        return role is Role.DISABLED
    if reserved_for is ReservationClass.VISITOR:
        return role is Role.VISITOR
    raise ValueError(f"Unknown reservation class: {reserved_for!r}")


def slot_suits(slot: ParkingSlot, vehicle_type: Optional[VehicleType], role: Role) -> bool:
    """Active, operational, vehicle-compatible and reserved for the caller's class"""
    if not slot.is_operational:
        return False
    if vehicle_type is not None and VehicleType(vehicle_type) != VehicleType.ANY:
        if not slot.accepts_vehicle(vehicle_type):
            return False
    return reservation_matches(slot.reserved_for, role)


# ============================================================================
# CHARGES
# ============================================================================

class BookingCharges:
    """
    Domain Service: duration and amount calculation
    Billing is per started hour of the reserved window.
    """

    @staticmethod
    def billable_hours(start_time: datetime, end_time: datetime) -> int:
        """Ceiling of the wall-clock hours between start and end"""
        hours = TimeRange(start_time, end_time).duration_hours
        return int(math.ceil(round(hours, 9)))

    @staticmethod
    def total_for(start_time: datetime, end_time: datetime, hourly_rate: Money) -> Money:
        hours = BookingCharges.billable_hours(start_time, end_time)
        return (hourly_rate * Decimal(hours)).quantized()


# ============================================================================
# TIME WINDOWS
# ============================================================================

def cancellation_open(booking: Booking, now: datetime, cutoff: timedelta) -> bool:
    """Non-admin cancellation is allowed strictly before start - cutoff"""
    return now < booking.start_time - cutoff


def check_in_opens_at(booking: Booking, grace: timedelta) -> datetime:
    return booking.start_time - grace


def status_description(booking: Booking, now: datetime) -> str:
    """Human-facing status label"""
    if booking.status == BookingStatus.CANCELLED:
        return "Booking Cancelled"
    if booking.status == BookingStatus.COMPLETED:
        return "Completed"
    if booking.status == BookingStatus.NO_SHOW:
        return "No Show"
    if booking.status == BookingStatus.EXPIRED:
        return "Expired"

    if now < booking.start_time:
        return "Upcoming"
    if booking.start_time <= now <= booking.end_time:
        return "Active"
    return "Overdue"


def realtime_slot_state(slot: ParkingSlot, booking: Optional[Booking], now: datetime) -> str:
    """
    Classify an operational slot for live status displays:
    available, reserved (booked for later), occupied (inside the window)
    or overdue (window passed, not yet swept).
    """
    if booking is None or not booking.is_active:
        return "available"
    if now < booking.start_time:
        return "reserved"
    if now <= booking.end_time:
        return "occupied"
    return "overdue"

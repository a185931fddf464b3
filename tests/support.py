# File: tests/support.py
"""
Shared fixtures for the booking engine tests

EngineTestBase builds a fresh in-memory store, a ManualClock pinned to a
Monday morning, a user directory with one user per role, and an engine whose
events are recorded on an EventBus and whose notifier is a Mock. Notifications are delivered on a background pool,
so tests call engine.flush_notifications() before asserting on the notifier.
"""

import unittest
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
from unittest.mock import Mock

from campus_parking.application.availability import AvailabilityQueryService
from campus_parking.application.booking_engine import BookingLifecycleEngine
from campus_parking.application.config import BookingPolicy
from campus_parking.application.dtos import CreateBookingRequest
from campus_parking.application.errors import BookingError
from campus_parking.application.ports import ManualClock
from campus_parking.domain.models import (
    Booking, CampusLocation, Money, ParkingSlot, RegisteredVehicle,
    ReservationClass, Role, VehicleType
)
from campus_parking.infrastructure.directory import InMemoryUserDirectory
from campus_parking.infrastructure.messaging import EventBus, RecordingHandler
from campus_parking.infrastructure.repositories import (
    InMemoryDatabase, RepositoryFactory, UnitOfWorkFactory
)

NOW = datetime(2025, 3, 10, 8, 0)

STUDENT = "stu-100001"
OTHER_STUDENT = "stu-100002"
FACULTY = "fac-200001"
ADMIN = "adm-300001"
DISABLED = "dis-400001"
VISITOR = "vis-500001"


def build_directory() -> InMemoryUserDirectory:
    directory = InMemoryUserDirectory()
    directory.register_user(STUDENT, Role.STUDENT, [
        RegisteredVehicle("ABC123", VehicleType.CAR),
        RegisteredVehicle("MOTO-7", VehicleType.MOTORCYCLE),
    ])
    directory.register_user(OTHER_STUDENT, Role.STUDENT, [RegisteredVehicle("XYZ789", VehicleType.CAR)])
    directory.register_user(FACULTY, Role.FACULTY, [RegisteredVehicle("FAC001", VehicleType.CAR)])
    directory.register_user(ADMIN, Role.ADMIN, [RegisteredVehicle("ADM001", VehicleType.CAR)])
    directory.register_user(DISABLED, Role.DISABLED, [RegisteredVehicle("DIS001", VehicleType.CAR)])
    directory.register_user(VISITOR, Role.VISITOR, [RegisteredVehicle("VIS001", VehicleType.CAR)])
    return directory


def make_slot(
    slot_number: str,
    location: CampusLocation = CampusLocation.BUILDING_A,
    vehicle_type: VehicleType = VehicleType.CAR,
    reserved_for: ReservationClass = ReservationClass.GENERAL,
    rate: str = "5.00"
) -> ParkingSlot:
    return ParkingSlot(
        slot_number=slot_number,
        location=location,
        vehicle_type=vehicle_type,
        reserved_for=reserved_for,
        hourly_rate=Money(Decimal(rate)),
    )


class StoreMixin:
    """Direct access to committed state, bypassing the engine"""

    uow_factory: UnitOfWorkFactory

    def add_slot(self, slot_number: str, **kwargs) -> ParkingSlot:
        slot = make_slot(slot_number, **kwargs)
        with self.uow_factory() as uow:
            uow.slots.add(slot)
        return slot

    def stored_slot(self, slot_id: str) -> ParkingSlot:
        with self.uow_factory() as uow:
            return uow.slots.get(slot_id)

    def stored_booking(self, booking_id: str) -> Booking:
        with self.uow_factory() as uow:
            return uow.bookings.get(booking_id)

    def active_bookings_on(self, slot_id: str):
        with self.uow_factory() as uow:
            return uow.bookings.find_active_for_slot(slot_id)

    def assert_slot_agrees_with_bookings(self, slot_id: str) -> None:
        """Pointer is set iff the slot has an active booking, and names the earliest one"""
        active = self.active_bookings_on(slot_id)
        slot = self.stored_slot(slot_id)
        if active:
            self.assertEqual(slot.current_booking_id, active[0].id)
            self.assertFalse(slot.is_available)
        else:
            self.assertIsNone(slot.current_booking_id)
        for i, first in enumerate(active):
            for second in active[i + 1:]:
                self.assertTrue(
                    first.start_time >= second.end_time or second.start_time >= first.end_time,
                    f"{first} overlaps {second}"
                )


class EngineTestBase(StoreMixin, unittest.TestCase):
    """Base class for engine tests with a fresh store per test (in-memory unless overridden)"""

    policy = BookingPolicy()

    def create_uow_factory(self) -> UnitOfWorkFactory:
        self.database = InMemoryDatabase()
        return RepositoryFactory.create_in_memory_uow_factory(self.database)

    def setUp(self):
        self.clock = ManualClock(NOW)
        self.uow_factory = self.create_uow_factory()
        self.directory = build_directory()
        self.event_bus = EventBus()
        self.recorder = RecordingHandler()
        self.event_bus.subscribe(None, self.recorder)
        self.notifier = Mock()
        self.engine = BookingLifecycleEngine(
            uow_factory=self.uow_factory,
            directory=self.directory,
            notifier=self.notifier,
            clock=self.clock,
            policy=self.policy,
            event_bus=self.event_bus,
        )
        self.addCleanup(self.engine.close)
        self.queries = AvailabilityQueryService(self.uow_factory, clock=self.clock, policy=self.policy)
        self.slot = self.add_slot("A-01")

    def request(
        self,
        start: datetime,
        end: datetime,
        user_id: str = STUDENT,
        slot: Optional[ParkingSlot] = None,
        vehicle_number: str = "ABC123",
        vehicle_type: VehicleType = VehicleType.CAR,
        location: Optional[CampusLocation] = None
    ) -> CreateBookingRequest:
        slot = slot or self.slot
        return CreateBookingRequest(
            user_id=user_id,
            slot_id=slot.id,
            vehicle_number=vehicle_number,
            vehicle_type=vehicle_type,
            start_time=start,
            end_time=end,
            location=location or slot.location,
        )

    def book(self, start_hours: float, duration_hours: float = 2, **kwargs) -> Booking:
        """Book `duration_hours` starting `start_hours` after NOW"""
        start = NOW + timedelta(hours=start_hours)
        return self.engine.create_booking(self.request(start, start + timedelta(hours=duration_hours), **kwargs))

    def assertBookingError(self, kind, callable_, *args, **kwargs):
        with self.assertRaises(BookingError) as ctx:
            callable_(*args, **kwargs)
        self.assertEqual(ctx.exception.kind, kind, repr(ctx.exception))
        return ctx.exception

# File: campus_parking/infrastructure/factories.py
"""
Factory Pattern Implementation for the Campus Parking Booking Engine

1. ParkingSlotFactory - builds slots with sensible per-class defaults
2. SlotProvisioner - seeds the default campus layout into an empty store
3. EngineFactory - wires storage, locking, messaging and the application
   services together from Settings
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Union
import logging

from ..domain.models import (
    CampusLocation, Money, ParkingSlot, ReservationClass, VehicleType
)
from ..application.availability import AvailabilityQueryService
from ..application.booking_engine import BookingLifecycleEngine
from ..application.commands import BookingCommandHandler, PeriodicSweeper
from ..application.config import Settings
from ..application.ports import Clock, NotificationPort, SystemClock, UserDirectoryPort
from .directory import InMemoryUserDirectory
from .locking import SlotLockManager
from .messaging import EventBus, LoggingNotifier, RedisNotificationPublisher
from .repositories import RepositoryFactory, UnitOfWorkFactory


# ============================================================================
# SLOT FACTORIES
# ============================================================================

LOCATION_CODES: Dict[CampusLocation, str] = {
    CampusLocation.BUILDING_A: "A",
    CampusLocation.BUILDING_B: "B",
    CampusLocation.BUILDING_C: "C",
    CampusLocation.MAIN_CAMPUS: "M",
    CampusLocation.SPORTS_COMPLEX: "S",
}

DEFAULT_RATES: Dict[VehicleType, Decimal] = {
    VehicleType.CAR: Decimal('5.00'),
    VehicleType.ANY: Decimal('5.00'),
    VehicleType.MOTORCYCLE: Decimal('2.50'),
    VehicleType.BICYCLE: Decimal('1.00'),
}


class ParkingSlotFactory:
    """Factory for creating ParkingSlot domain objects"""

    def create(
        self,
        slot_number: str,
        location: Union[CampusLocation, str],
        vehicle_type: Union[VehicleType, str] = VehicleType.CAR,
        reserved_for: Union[ReservationClass, str] = ReservationClass.GENERAL,
        hourly_rate: Optional[Money] = None,
        section: Optional[str] = None,
        floor: str = "Ground Floor",
        features: Optional[List[str]] = None
    ) -> ParkingSlot:
        """
        Create a ParkingSlot

        Args:
            slot_number: Unique label, e.g. "A-01"
            location: Campus location
            vehicle_type: Accepted vehicle type ("any" accepts all)
            reserved_for: Reservation class
            hourly_rate: Defaults by vehicle type
            section: Defaults to the location name
            floor: Floor label
            features: Defaults by reservation class
        """
        location = CampusLocation(location)
        vehicle_type = VehicleType(vehicle_type)
        reserved_for = ReservationClass(reserved_for)

        if hourly_rate is None:
            hourly_rate = Money(DEFAULT_RATES[vehicle_type])

        if features is None:
            if reserved_for == ReservationClass.DISABLED:
                features = ["wide", "close_to_entry"]
            elif vehicle_type == VehicleType.BICYCLE:
                features = ["rack"]
            else:
                features = []

        return ParkingSlot(
            slot_number=slot_number,
            location=location,
            vehicle_type=vehicle_type,
            reserved_for=reserved_for,
            hourly_rate=hourly_rate,
            section=section or location.value,
            floor=floor,
            features=features
        )


@dataclass
class SlotLayout:
    """How one location's slots are split across classes and vehicle types"""
    slots_per_location: int = 16
    faculty: int = 2
    disabled: int = 1
    student: int = 1
    motorcycle: int = 1
    bicycle: int = 1
    locations: List[CampusLocation] = field(default_factory=lambda: list(CampusLocation))

    def plan(self) -> List[tuple]:
        """(reserved_for, vehicle_type) for each slot index of a location"""
        special = (
            [(ReservationClass.FACULTY, VehicleType.CAR)] * self.faculty
            + [(ReservationClass.DISABLED, VehicleType.CAR)] * self.disabled
            + [(ReservationClass.STUDENT, VehicleType.CAR)] * self.student
        )
        tail = (
            [(ReservationClass.GENERAL, VehicleType.MOTORCYCLE)] * self.motorcycle
            + [(ReservationClass.GENERAL, VehicleType.BICYCLE)] * self.bicycle
        )
        general = self.slots_per_location - len(special) - len(tail)
        if general < 0:
            raise ValueError("Layout reserves more slots than each location has")
        return special + [(ReservationClass.GENERAL, VehicleType.CAR)] * general + tail


class SlotProvisioner:
    """Administrative provisioning of slots"""

    def __init__(self, uow_factory: UnitOfWorkFactory, slot_factory: Optional[ParkingSlotFactory] = None):
        self._uow_factory = uow_factory
        self.slot_factory = slot_factory or ParkingSlotFactory()
        self.logger = logging.getLogger(self.__class__.__name__)

    def add_slots(self, slots: List[ParkingSlot]) -> List[ParkingSlot]:
        with self._uow_factory() as uow:
            for slot in slots:
                uow.slots.add(slot)
        self.logger.info(f"Provisioned {len(slots)} slots")
        return slots

    def seed_default_layout(self, layout: Optional[SlotLayout] = None) -> int:
        """Create the default layout when the store has no slots; returns slots created"""
        layout = layout or SlotLayout()
        with self._uow_factory() as uow:
            existing = uow.slots.count()
        if existing:
            self.logger.info(f"Slot store already holds {existing} slots, skipping seed")
            return 0

        slots = []
        for location in layout.locations:
            code = LOCATION_CODES[location]
            for index, (reserved_for, vehicle_type) in enumerate(layout.plan(), start=1):
                slots.append(self.slot_factory.create(
                    slot_number=f"{code}-{index:02d}",
                    location=location,
                    vehicle_type=vehicle_type,
                    reserved_for=reserved_for
                ))
        self.add_slots(slots)
        return len(slots)


# ============================================================================
# SERVICE WIRING
# ============================================================================

@dataclass
class ParkingServices:
    """Everything an outer layer needs, built around one storage handle"""
    engine: BookingLifecycleEngine
    queries: AvailabilityQueryService
    commands: BookingCommandHandler
    sweeper: PeriodicSweeper
    provisioner: SlotProvisioner
    event_bus: EventBus
    uow_factory: UnitOfWorkFactory
    notifier: Optional[NotificationPort] = None

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the sweeper, drain pending notifications and close the notifier"""
        self.sweeper.stop(timeout)
        self.engine.close(timeout)
        close_notifier = getattr(self.notifier, "close", None)
        if callable(close_notifier):
            close_notifier()


class EngineFactory:
    """Factory for creating application services"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.logger = logging.getLogger(self.__class__.__name__)

    def create_uow_factory(self) -> UnitOfWorkFactory:
        if self.settings.database_url:
            self.logger.info("Using SQLAlchemy storage")
            engine = RepositoryFactory.create_sqlalchemy_engine(self.settings.database_url)
            return RepositoryFactory.create_sqlalchemy_uow_factory(engine)
        self.logger.info("Using in-memory storage")
        return RepositoryFactory.create_in_memory_uow_factory()

    def create_notifier(self) -> NotificationPort:
        if self.settings.redis_url:
            return RedisNotificationPublisher(self.settings.redis_url, channel=self.settings.notification_channel)
        return LoggingNotifier()

    def create_services(
        self,
        directory: Optional[UserDirectoryPort] = None,
        uow_factory: Optional[UnitOfWorkFactory] = None,
        notifier: Optional[NotificationPort] = None,
        clock: Optional[Clock] = None,
        event_bus: Optional[EventBus] = None
    ) -> ParkingServices:
        """Build the services; anything not given is created from settings"""
        policy = self.settings.policy
        uow_factory = uow_factory or self.create_uow_factory()
        clock = clock or SystemClock()
        event_bus = event_bus or EventBus()

        notifier = notifier if notifier is not None else self.create_notifier()

        engine = BookingLifecycleEngine(
            uow_factory=uow_factory,
            directory=directory if directory is not None else InMemoryUserDirectory(),
            notifier=notifier,
            clock=clock,
            policy=policy,
            lock_manager=SlotLockManager(policy.slot_lock_timeout_seconds),
            event_bus=event_bus,
        )
        queries = AvailabilityQueryService(uow_factory, clock=clock, policy=policy)
        return ParkingServices(
            engine=engine,
            queries=queries,
            commands=BookingCommandHandler(engine, queries),
            sweeper=PeriodicSweeper(engine, self.settings.sweep_interval_seconds),
            provisioner=SlotProvisioner(uow_factory),
            event_bus=event_bus,
            uow_factory=uow_factory,
            notifier=notifier,
        )

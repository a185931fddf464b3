# File: campus_parking/application/availability.py
"""
Availability Query Service

Read-only answers about slots: which are free for a window, what each slot is
doing right now, and how full each campus location is. Nothing here writes,
so every query is safe to run concurrently with bookings and sweeps.
"""

from collections import OrderedDict
from datetime import datetime
from typing import Callable, List, Optional, TypeVar
import logging

from ..domain.models import Booking, CampusLocation, ParkingSlot
from ..domain import rules
from ..infrastructure.repositories import UnitOfWork, UnitOfWorkFactory
from .config import BookingPolicy
from .dtos import AvailabilityFilter, LocationSummary, SlotStatusDTO
from .errors import StorageUnavailable
from .ports import Clock, SystemClock, to_naive_utc

R = TypeVar('R')


class StorageReader:
    """
    Runs an idempotent read in its own unit of work, retrying
    StorageUnavailable a bounded number of times.
    """

    def __init__(self, uow_factory: UnitOfWorkFactory, retries: int, logger: logging.Logger):
        self._uow_factory = uow_factory
        self._retries = retries
        self._logger = logger

    def __call__(self, action: str, query: Callable[[UnitOfWork], R]) -> R:
        attempt = 0
        while True:
            attempt += 1
            try:
                with self._uow_factory() as uow:
                    return query(uow)
            except StorageUnavailable as e:
                if attempt > self._retries:
                    raise
                self._logger.warning(f"Storage error while {action} (attempt {attempt}): {e.message}")


class AvailabilityQueryService:
    """Answers 'which slots are free' without mutating anything"""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        clock: Optional[Clock] = None,
        policy: Optional[BookingPolicy] = None
    ):
        self.clock = clock or SystemClock()
        self.policy = policy or BookingPolicy()
        self.logger = logging.getLogger(self.__class__.__name__)
        self._read = StorageReader(uow_factory, self.policy.storage_read_retries, self.logger)

    def find_available(self, filters: AvailabilityFilter) -> List[ParkingSlot]:
        """
        Slots that are active, operational and suitable for the caller's role
        and vehicle type. With a window, slots holding an overlapping active
        booking are excluded; without one, only currently unclaimed slots count.
        """
        def query(uow: UnitOfWork) -> List[ParkingSlot]:
            slots = uow.slots.find(location=filters.location, operational_only=True)
            taken = None
            if filters.has_window:
                taken = uow.bookings.find_conflicting_slot_ids(filters.start_time, filters.end_time)
            return [
                slot for slot in slots
                if rules.slot_suits(slot, filters.vehicle_type, filters.role)
                and (slot.id not in taken if taken is not None else slot.is_available)
            ]

        found = self._read("finding available slots", query)
        self.logger.debug(f"{len(found)} slots available for {filters.role.value}")
        return found

    def get_slot(self, slot_id: str) -> Optional[ParkingSlot]:
        return self._read(f"getting slot {slot_id}", lambda uow: uow.slots.get(slot_id))

    def list_slots(self, location: Optional[CampusLocation] = None) -> List[ParkingSlot]:
        return self._read("listing slots", lambda uow: uow.slots.find(location=location))

    def real_time_status(self, location: Optional[CampusLocation] = None) -> List[SlotStatusDTO]:
        """Live state of every slot, judged against the referenced booking"""
        now = to_naive_utc(self.clock.now())

        def query(uow: UnitOfWork) -> List[SlotStatusDTO]:
            statuses = []
            for slot in uow.slots.find(location=location):
                booking: Optional[Booking] = None
                if slot.current_booking_id:
                    booking = uow.bookings.get(slot.current_booking_id)
                statuses.append(self._slot_status(slot, booking, now))
            return statuses

        return self._read("reading real-time slot status", query)

    def summary_by_location(self) -> List[LocationSummary]:
        """Totals per campus location, in declaration order"""
        slots = self.list_slots()
        summaries = OrderedDict((loc, LocationSummary(location=loc)) for loc in CampusLocation)
        for slot in slots:
            summary = summaries[slot.location]
            summary.total_slots += 1
            if not slot.is_operational:
                summary.out_of_service_slots += 1
            elif slot.is_available:
                summary.available_slots += 1
            else:
                summary.occupied_slots += 1
        return list(summaries.values())

    @staticmethod
    def _slot_status(slot: ParkingSlot, booking: Optional[Booking], now: datetime) -> SlotStatusDTO:
        if not slot.is_operational:
            state = slot.status
        else:
            state = rules.realtime_slot_state(slot, booking, now)
        linked = booking if booking is not None and state != "available" and slot.is_operational else None
        return SlotStatusDTO(
            slot_id=slot.id,
            slot_number=slot.slot_number,
            location=slot.location,
            state=state,
            booking_id=linked.id if linked else None,
            user_id=linked.user_id if linked else None,
            start_time=linked.start_time if linked else None,
            end_time=linked.end_time if linked else None,
        )

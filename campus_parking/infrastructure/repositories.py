# File: campus_parking/infrastructure/repositories.py
"""
Repository Pattern Implementation for the Campus Parking Booking Engine

Repositories give the booking engine a collection-like interface over slots
and bookings; a Unit of Work groups the writes of one engine operation so
they become visible together or not at all.

Repository Types:
1. SlotRepository - ParkingSlot records and the atomic claim/release of a slot
2. BookingRepository - Booking records and the overlap/expiry queries

Storage Implementations:
- InMemoryUnitOfWork - shared InMemoryDatabase, used by tests and the CLI demo
- SQLAlchemyUnitOfWork - relational databases (sqlite, postgresql, ...)

Every slot and booking carries a `version` token. Each mutation checks the
caller's expected version and increments it; a mismatch raises
StaleEntityError and nothing from the unit of work is applied.
"""

from abc import ABC, abstractmethod
from typing import (
    Callable, Dict, Generic, Iterator, List, Optional, Set, Tuple, TypeVar
)
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from contextlib import contextmanager
import copy
import logging
import threading

from sqlalchemy import (
    create_engine, Column, Integer, String, Boolean, DateTime, Numeric,
    JSON, Text, ForeignKey, Index
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session, Query
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from ..domain.models import (
    Booking, BookingStatus, CampusLocation, ExtensionRecord, MaintenanceStatus,
    Money, ParkingSlot, ReservationClass, VehicleInfo, VehicleType
)
from ..application.errors import StaleEntityError, StorageUnavailable

T = TypeVar('T')


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _pointer_after_claim(current: Optional[str], booking_id: str, preempt: bool) -> Optional[str]:
    """A free slot always points at the claimant; an occupied one only when preempted"""
    if current is None or preempt:
        return booking_id
    return current


def _pointer_after_release(current: Optional[str], booking_id: str, successor_id: Optional[str]) -> Optional[str]:
    """Only releasing the referenced booking moves the pointer"""
    if current == booking_id:
        return successor_id
    return current


# ============================================================================
# REPOSITORY INTERFACES
# ============================================================================

class SlotRepository(ABC):
    """
    Owns ParkingSlot records.

    `current_booking_id` is written only by claim and release, and
    `is_available` is derived from it, so the two can never disagree.
    """

    @abstractmethod
    def add(self, slot: ParkingSlot) -> ParkingSlot:
        """Add a new slot (slot numbers are unique)"""
        pass

    @abstractmethod
    def get(self, slot_id: str) -> Optional[ParkingSlot]:
        pass

    @abstractmethod
    def find(
        self,
        location: Optional[CampusLocation] = None,
        operational_only: bool = False
    ) -> List[ParkingSlot]:
        """Slots ordered by location and slot number"""
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    @abstractmethod
    def claim(
        self,
        slot_id: str,
        booking_id: str,
        expected_version: int,
        preempt: bool = False
    ) -> ParkingSlot:
        """
        Link a booking to the slot. A free slot points at `booking_id`; an
        occupied one only when `preempt` is set (the new booking starts
        earlier than the referenced one). Always increments the version.
        """
        pass

    @abstractmethod
    def release(
        self,
        slot_id: str,
        booking_id: str,
        expected_version: int,
        successor_id: Optional[str] = None
    ) -> ParkingSlot:
        """
        Unlink a booking from the slot. When `booking_id` is the referenced
        booking the pointer moves to `successor_id`; otherwise it stays.
        Always increments the version.
        """
        pass

    @abstractmethod
    def set_maintenance_status(
        self,
        slot_id: str,
        status: MaintenanceStatus,
        expected_version: int
    ) -> ParkingSlot:
        pass


class BookingRepository(ABC):
    """Owns Booking records and the queries the lifecycle engine needs"""

    @abstractmethod
    def add(self, booking: Booking) -> Booking:
        pass

    @abstractmethod
    def get(self, booking_id: str) -> Optional[Booking]:
        pass

    @abstractmethod
    def update(self, booking: Booking) -> Booking:
        """Write back a booking; `booking.version` is the expected version"""
        pass

    @abstractmethod
    def find_overlapping(
        self,
        slot_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_id: Optional[str] = None
    ) -> List[Booking]:
        """Active bookings on the slot overlapping [start_time, end_time)"""
        pass

    @abstractmethod
    def count_active_for_user(self, user_id: str, now: datetime) -> int:
        """Active bookings of the user that have not ended before `now`"""
        pass

    @abstractmethod
    def find_active_for_slot(self, slot_id: str) -> List[Booking]:
        """Active bookings on the slot, earliest start first"""
        pass

    @abstractmethod
    def find_expirable(self, now: datetime) -> List[Booking]:
        """Active, ended at or before `now`, never checked out"""
        pass

    @abstractmethod
    def find_conflicting_slot_ids(self, start_time: datetime, end_time: datetime) -> Set[str]:
        pass

    @abstractmethod
    def find_due_for_reminder(self, now: datetime, lead: timedelta) -> List[Booking]:
        """Active, not yet reminded, starting within (now, now + lead]"""
        pass

    @abstractmethod
    def find(
        self,
        user_id: Optional[str] = None,
        status: Optional[BookingStatus] = None,
        slot_id: Optional[str] = None,
        location: Optional[CampusLocation] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[Booking]:
        """Filtered bookings, newest first"""
        pass

    @abstractmethod
    def count(
        self,
        user_id: Optional[str] = None,
        status: Optional[BookingStatus] = None,
        slot_id: Optional[str] = None,
        location: Optional[CampusLocation] = None
    ) -> int:
        pass

    def find_for_user(
        self,
        user_id: str,
        status: Optional[BookingStatus] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[Booking]:
        return self.find(user_id=user_id, status=status, skip=skip, limit=limit)


# ============================================================================
# UNIT OF WORK PATTERN
# ============================================================================

class UnitOfWork(ABC):
    """Unit of Work pattern for transaction management"""

    @abstractmethod
    def __enter__(self):
        pass

    @abstractmethod
    def __exit__(self, exc_type, exc_val, exc_tb):
        pass

    @abstractmethod
    def commit(self):
        """Commit the transaction"""
        pass

    @abstractmethod
    def rollback(self):
        """Rollback the transaction"""
        pass

    @property
    @abstractmethod
    def slots(self) -> SlotRepository:
        pass

    @property
    @abstractmethod
    def bookings(self) -> BookingRepository:
        pass


UnitOfWorkFactory = Callable[[], UnitOfWork]


# ============================================================================
# IN-MEMORY STORAGE (For Testing)
# ============================================================================

class InMemoryDatabase:
    """
    Committed state shared by every InMemoryUnitOfWork created from it.
    Stored entities are private copies and are replaced, never mutated.
    """

    def __init__(self):
        self.slots: Dict[str, ParkingSlot] = {}
        self.bookings: Dict[str, Booking] = {}
        self.lock = threading.RLock()

    def unit_of_work(self) -> 'InMemoryUnitOfWork':
        return InMemoryUnitOfWork(self)

    def clear(self):
        """Clear all data (for testing)"""
        with self.lock:
            self.slots.clear()
            self.bookings.clear()


class _StagedTable(Generic[T]):
    """Committed rows overlaid with the pending writes of one unit of work"""

    def __init__(self, entity_type: str, committed: Dict[str, T], lock: threading.RLock):
        self.entity_type = entity_type
        self._committed = committed
        self._lock = lock
        # entity id -> (version the write was based on, None for inserts; new state)
        self.pending: Dict[str, Tuple[Optional[int], T]] = {}

    def get(self, entity_id: str) -> Optional[T]:
        if entity_id in self.pending:
            return copy.deepcopy(self.pending[entity_id][1])
        with self._lock:
            entity = self._committed.get(entity_id)
        return copy.deepcopy(entity) if entity is not None else None

    def all(self) -> List[T]:
        with self._lock:
            committed = [e for key, e in self._committed.items() if key not in self.pending]
        rows = committed + [entity for _, entity in self.pending.values()]
        return [copy.deepcopy(entity) for entity in rows]

    def exists(self, entity_id: str) -> bool:
        if entity_id in self.pending:
            return True
        with self._lock:
            return entity_id in self._committed

    def stage_insert(self, entity: T) -> None:
        entity_id = getattr(entity, 'id')
        if self.exists(entity_id):
            raise ValueError(f"{self.entity_type} {entity_id} already exists")
        self.pending[entity_id] = (None, copy.deepcopy(entity))

    def load_for_update(self, entity_id: str, expected_version: int) -> T:
        current = self.get(entity_id)
        if current is None:
            raise KeyError(f"{self.entity_type} {entity_id} not found")
        if current.version != expected_version:
            raise StaleEntityError(self.entity_type, entity_id, expected_version, current.version)
        return current

    def stage_update(self, entity: T, expected_version: int) -> None:
        """Stage `entity` (already at expected_version + 1)"""
        entity_id = getattr(entity, 'id')
        base = self.pending[entity_id][0] if entity_id in self.pending else expected_version
        self.pending[entity_id] = (base, copy.deepcopy(entity))

    def verify(self) -> None:
        """Caller holds the database lock"""
        for entity_id, (base, _) in self.pending.items():
            committed = self._committed.get(entity_id)
            if base is None:
                if committed is not None:
                    raise StaleEntityError(self.entity_type, entity_id, 0, committed.version)
            elif committed is None or committed.version != base:
                actual = committed.version if committed is not None else None
                raise StaleEntityError(self.entity_type, entity_id, base, actual)

    def apply(self) -> None:
        """Caller holds the database lock"""
        for entity_id, (_, entity) in self.pending.items():
            self._committed[entity_id] = entity
        self.pending.clear()


class InMemorySlotRepository(SlotRepository):
    """In-memory repository for parking slots"""

    def __init__(self, table: _StagedTable[ParkingSlot]):
        self._table = table
        self._logger = logging.getLogger(self.__class__.__name__)

    def add(self, slot: ParkingSlot) -> ParkingSlot:
        if any(s.slot_number == slot.slot_number for s in self._table.all()):
            raise ValueError(f"Slot number {slot.slot_number} already exists")
        self._table.stage_insert(slot)
        self._logger.debug(f"Added slot {slot.slot_number} ({slot.id})")
        return slot

    def get(self, slot_id: str) -> Optional[ParkingSlot]:
        return self._table.get(slot_id)

    def find(
        self,
        location: Optional[CampusLocation] = None,
        operational_only: bool = False
    ) -> List[ParkingSlot]:
        slots = [
            s for s in self._table.all()
            if (location is None or s.location == location)
            and (not operational_only or s.is_operational)
        ]
        return sorted(slots, key=lambda s: (s.location.value, s.slot_number))

    def count(self) -> int:
        return len(self._table.all())

    def claim(self, slot_id: str, booking_id: str, expected_version: int, preempt: bool = False) -> ParkingSlot:
        slot = self._table.load_for_update(slot_id, expected_version)
        slot.assign_current_booking(_pointer_after_claim(slot.current_booking_id, booking_id, preempt))
        return self._stage(slot, expected_version)

    def release(
        self,
        slot_id: str,
        booking_id: str,
        expected_version: int,
        successor_id: Optional[str] = None
    ) -> ParkingSlot:
        slot = self._table.load_for_update(slot_id, expected_version)
        slot.assign_current_booking(_pointer_after_release(slot.current_booking_id, booking_id, successor_id))
        return self._stage(slot, expected_version)

    def set_maintenance_status(
        self,
        slot_id: str,
        status: MaintenanceStatus,
        expected_version: int
    ) -> ParkingSlot:
        slot = self._table.load_for_update(slot_id, expected_version)
        slot.maintenance_status = MaintenanceStatus(status)
        return self._stage(slot, expected_version)

    def _stage(self, slot: ParkingSlot, expected_version: int) -> ParkingSlot:
        slot.version = expected_version + 1
        self._table.stage_update(slot, expected_version)
        return slot


def _booking_matches(
    booking: Booking,
    user_id: Optional[str],
    status: Optional[BookingStatus],
    slot_id: Optional[str],
    location: Optional[CampusLocation]
) -> bool:
    return ((user_id is None or booking.user_id == user_id)
            and (status is None or booking.status == status)
            and (slot_id is None or booking.slot_id == slot_id)
            and (location is None or booking.location == location))


def _newest_first(booking: Booking) -> Tuple[datetime, datetime]:
    return (booking.created_at or datetime.min, booking.start_time)


class InMemoryBookingRepository(BookingRepository):
    """In-memory repository for bookings"""

    def __init__(self, table: _StagedTable[Booking]):
        self._table = table
        self._logger = logging.getLogger(self.__class__.__name__)

    def _active(self) -> Iterator[Booking]:
        return (b for b in self._table.all() if b.status == BookingStatus.ACTIVE)

    def add(self, booking: Booking) -> Booking:
        self._table.stage_insert(booking)
        self._logger.debug(f"Added booking {booking.id}")
        return booking

    def get(self, booking_id: str) -> Optional[Booking]:
        return self._table.get(booking_id)

    def update(self, booking: Booking) -> Booking:
        expected = booking.version
        self._table.load_for_update(booking.id, expected)
        booking.version = expected + 1
        self._table.stage_update(booking, expected)
        self._logger.debug(f"Updated booking {booking.id} to version {booking.version}")
        return booking

    def find_overlapping(
        self,
        slot_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_id: Optional[str] = None
    ) -> List[Booking]:
        found = [
            b for b in self._active()
            if b.slot_id == slot_id and b.id != exclude_id
            and b.start_time < end_time and b.end_time > start_time
        ]
        return sorted(found, key=lambda b: b.start_time)

    def count_active_for_user(self, user_id: str, now: datetime) -> int:
        return sum(1 for b in self._active() if b.user_id == user_id and b.end_time >= now)

    def find_active_for_slot(self, slot_id: str) -> List[Booking]:
        return sorted((b for b in self._active() if b.slot_id == slot_id), key=lambda b: b.start_time)

    def find_expirable(self, now: datetime) -> List[Booking]:
        found = [b for b in self._active() if b.end_time <= now and b.check_out_time is None]
        return sorted(found, key=lambda b: b.end_time)

    def find_conflicting_slot_ids(self, start_time: datetime, end_time: datetime) -> Set[str]:
        return {
            b.slot_id for b in self._active()
            if b.start_time < end_time and b.end_time > start_time
        }

    def find_due_for_reminder(self, now: datetime, lead: timedelta) -> List[Booking]:
        horizon = now + lead
        found = [
            b for b in self._active()
            if not b.reminder_sent and now < b.start_time <= horizon
        ]
        return sorted(found, key=lambda b: b.start_time)

    def find(
        self,
        user_id: Optional[str] = None,
        status: Optional[BookingStatus] = None,
        slot_id: Optional[str] = None,
        location: Optional[CampusLocation] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[Booking]:
        found = [b for b in self._table.all() if _booking_matches(b, user_id, status, slot_id, location)]
        found.sort(key=_newest_first, reverse=True)
        return found[skip:skip + limit]

    def count(
        self,
        user_id: Optional[str] = None,
        status: Optional[BookingStatus] = None,
        slot_id: Optional[str] = None,
        location: Optional[CampusLocation] = None
    ) -> int:
        return sum(1 for b in self._table.all() if _booking_matches(b, user_id, status, slot_id, location))


class InMemoryUnitOfWork(UnitOfWork):
    """
    Unit of Work over an InMemoryDatabase.

    Reads see committed state plus this unit's own pending writes. Commit
    re-checks every base version under the database lock and applies all
    writes or none.
    """

    def __init__(self, database: InMemoryDatabase):
        self._database = database
        self._logger = logging.getLogger(self.__class__.__name__)
        self._slot_table = _StagedTable("ParkingSlot", database.slots, database.lock)
        self._booking_table = _StagedTable("Booking", database.bookings, database.lock)
        self._slots = InMemorySlotRepository(self._slot_table)
        self._bookings = InMemoryBookingRepository(self._booking_table)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self._logger.debug(f"Exception in unit of work: {exc_val!r}")
            self.rollback()
        else:
            self.commit()

    def commit(self):
        with self._database.lock:
            try:
                self._slot_table.verify()
                self._booking_table.verify()
            except StaleEntityError:
                self.rollback()
                raise
            self._slot_table.apply()
            self._booking_table.apply()
        self._logger.debug("Transaction committed")

    def rollback(self):
        self._slot_table.pending.clear()
        self._booking_table.pending.clear()
        self._logger.debug("Transaction rolled back")

    @property
    def slots(self) -> InMemorySlotRepository:
        return self._slots

    @property
    def bookings(self) -> InMemoryBookingRepository:
        return self._bookings


# ============================================================================
# SQLALCHEMY ORM MODELS
# ============================================================================

Base = declarative_base()


class ParkingSlotModel(Base):
    """SQLAlchemy model for ParkingSlot"""
    __tablename__ = 'parking_slots'

    id = Column(String(36), primary_key=True)
    slot_number = Column(String(10), nullable=False, unique=True, index=True)
    location = Column(String(30), nullable=False, index=True)
    section = Column(String(50), default="General")
    floor = Column(String(50), default="Ground Floor")
    vehicle_type = Column(String(20), nullable=False, default=VehicleType.ANY.value)
    reserved_for = Column(String(20), nullable=False, default=ReservationClass.GENERAL.value)
    features = Column(JSON, default=list)

    # Pricing
    hourly_rate_amount = Column(Numeric(10, 2), nullable=False)
    hourly_rate_currency = Column(String(3), default='USD')

    # Status
    maintenance_status = Column(String(20), nullable=False, default=MaintenanceStatus.OPERATIONAL.value)
    is_active = Column(Boolean, default=True)
    current_booking_id = Column(String(36), nullable=True)
    version = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class BookingModel(Base):
    """SQLAlchemy model for Booking"""
    __tablename__ = 'bookings'

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    slot_id = Column(String(36), ForeignKey('parking_slots.id'), nullable=False)
    location = Column(String(30), nullable=False, index=True)

    # Vehicle
    vehicle_number = Column(String(15), nullable=False)
    vehicle_type = Column(String(20), nullable=False)

    # Window and charges
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    duration_hours = Column(Integer, nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default='USD')

    # Lifecycle
    status = Column(String(20), nullable=False, index=True)
    check_in_time = Column(DateTime)
    check_out_time = Column(DateTime)
    extension_history = Column(JSON, default=list)
    cancellation_reason = Column(Text)
    cancelled_at = Column(DateTime)
    cancelled_by = Column(String(64))
    qr_code = Column(String(64))
    reminder_sent = Column(Boolean, default=False)
    version = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime)
    updated_at = Column(DateTime)

    __table_args__ = (
        Index('ix_bookings_slot_status_window', 'slot_id', 'status', 'start_time', 'end_time'),
    )


# ============================================================================
# DOMAIN <-> ORM MAPPING
# ============================================================================

class Mapper:
    """Maps between domain models and ORM models"""

    @staticmethod
    def slot_to_orm(slot: ParkingSlot) -> ParkingSlotModel:
        return ParkingSlotModel(
            id=slot.id,
            slot_number=slot.slot_number,
            location=slot.location.value,
            section=slot.section,
            floor=slot.floor,
            vehicle_type=slot.vehicle_type.value,
            reserved_for=slot.reserved_for.value,
            features=list(slot.features),
            hourly_rate_amount=slot.hourly_rate.amount,
            hourly_rate_currency=slot.hourly_rate.currency,
            maintenance_status=slot.maintenance_status.value,
            is_active=slot.active,
            current_booking_id=slot.current_booking_id,
            version=slot.version
        )

    @staticmethod
    def slot_to_domain(model: ParkingSlotModel) -> ParkingSlot:
        return ParkingSlot(
            id=model.id,
            slot_number=model.slot_number,
            location=CampusLocation(model.location),
            section=model.section,
            floor=model.floor,
            vehicle_type=VehicleType(model.vehicle_type),
            reserved_for=ReservationClass(model.reserved_for),
            features=list(model.features or []),
            hourly_rate=Money(
                amount=Decimal(str(model.hourly_rate_amount)),
                currency=model.hourly_rate_currency
            ),
            maintenance_status=MaintenanceStatus(model.maintenance_status),
            active=model.is_active,
            current_booking_id=model.current_booking_id,
            version=model.version
        )

    @staticmethod
    def booking_values(booking: Booking) -> Dict[str, object]:
        """Column values of a booking, shared by inserts and versioned updates"""
        return {
            'id': booking.id,
            'user_id': booking.user_id,
            'slot_id': booking.slot_id,
            'location': booking.location.value,
            'vehicle_number': booking.vehicle.number,
            'vehicle_type': booking.vehicle.vehicle_type.value,
            'start_time': booking.start_time,
            'end_time': booking.end_time,
            'duration_hours': booking.duration_hours,
            'total_amount': booking.total_amount.amount,
            'currency': booking.total_amount.currency,
            'status': booking.status.value,
            'check_in_time': booking.check_in_time,
            'check_out_time': booking.check_out_time,
            'extension_history': [record.to_dict() for record in booking.extension_history],
            'cancellation_reason': booking.cancellation_reason,
            'cancelled_at': booking.cancelled_at,
            'cancelled_by': booking.cancelled_by,
            'qr_code': booking.qr_code,
            'reminder_sent': booking.reminder_sent,
            'version': booking.version,
            'created_at': booking.created_at,
            'updated_at': booking.updated_at,
        }

    @staticmethod
    def booking_to_orm(booking: Booking) -> BookingModel:
        return BookingModel(**Mapper.booking_values(booking))

    @staticmethod
    def booking_to_domain(model: BookingModel) -> Booking:
        return Booking(
            id=model.id,
            user_id=model.user_id,
            slot_id=model.slot_id,
            vehicle=VehicleInfo(model.vehicle_number, VehicleType(model.vehicle_type)),
            start_time=model.start_time,
            end_time=model.end_time,
            location=CampusLocation(model.location),
            duration_hours=model.duration_hours,
            total_amount=Money(Decimal(str(model.total_amount)), model.currency or 'USD'),
            status=BookingStatus(model.status),
            check_in_time=model.check_in_time,
            check_out_time=model.check_out_time,
            extension_history=[ExtensionRecord.from_dict(e) for e in (model.extension_history or [])],
            cancellation_reason=model.cancellation_reason,
            cancelled_at=model.cancelled_at,
            cancelled_by=model.cancelled_by,
            qr_code=model.qr_code,
            reminder_sent=bool(model.reminder_sent),
            created_at=model.created_at,
            updated_at=model.updated_at,
            version=model.version
        )


# ============================================================================
# SQLALCHEMY REPOSITORIES
# ============================================================================

class SQLAlchemyRepository:
    """Base SQLAlchemy repository"""

    def __init__(self, session: Session):
        self.session = session
        self._logger = logging.getLogger(self.__class__.__name__)

    @contextmanager
    def _storage_errors(self, action: str):
        """Translate driver and pool failures into StorageUnavailable"""
        try:
            yield
        except IntegrityError as e:
            self._logger.error(f"Integrity error {action}: {e}")
            raise ValueError(f"Integrity error {action}") from e
        except (DBAPIError, PoolTimeoutError) as e:
            self._logger.error(f"Database error {action}: {e}")
            raise StorageUnavailable(f"Database error {action}", cause=e) from e


class SQLAlchemySlotRepository(SQLAlchemyRepository, SlotRepository):
    """SQLAlchemy repository for parking slots"""

    def add(self, slot: ParkingSlot) -> ParkingSlot:
        with self._storage_errors(f"adding slot {slot.slot_number}"):
            self.session.add(Mapper.slot_to_orm(slot))
            self.session.flush()
        self._logger.debug(f"Added slot {slot.slot_number} ({slot.id})")
        return slot

    def get(self, slot_id: str) -> Optional[ParkingSlot]:
        with self._storage_errors(f"getting slot {slot_id}"):
            model = self.session.get(ParkingSlotModel, slot_id)
            return Mapper.slot_to_domain(model) if model else None

    def find(
        self,
        location: Optional[CampusLocation] = None,
        operational_only: bool = False
    ) -> List[ParkingSlot]:
        with self._storage_errors("listing slots"):
            query = self.session.query(ParkingSlotModel)
            if location is not None:
                query = query.filter(ParkingSlotModel.location == CampusLocation(location).value)
            if operational_only:
                query = query.filter(
                    ParkingSlotModel.is_active.is_(True),
                    ParkingSlotModel.maintenance_status == MaintenanceStatus.OPERATIONAL.value
                )
            models = query.order_by(ParkingSlotModel.location, ParkingSlotModel.slot_number).all()
            return [Mapper.slot_to_domain(model) for model in models]

    def count(self) -> int:
        with self._storage_errors("counting slots"):
            return self.session.query(ParkingSlotModel).count()

    def claim(self, slot_id: str, booking_id: str, expected_version: int, preempt: bool = False) -> ParkingSlot:
        with self._storage_errors(f"claiming slot {slot_id}"):
            model = self._load_for_update(slot_id, expected_version)
            pointer = _pointer_after_claim(model.current_booking_id, booking_id, preempt)
            return self._write(slot_id, expected_version, current_booking_id=pointer)

    def release(
        self,
        slot_id: str,
        booking_id: str,
        expected_version: int,
        successor_id: Optional[str] = None
    ) -> ParkingSlot:
        with self._storage_errors(f"releasing slot {slot_id}"):
            model = self._load_for_update(slot_id, expected_version)
            pointer = _pointer_after_release(model.current_booking_id, booking_id, successor_id)
            return self._write(slot_id, expected_version, current_booking_id=pointer)

    def set_maintenance_status(
        self,
        slot_id: str,
        status: MaintenanceStatus,
        expected_version: int
    ) -> ParkingSlot:
        with self._storage_errors(f"changing maintenance status of slot {slot_id}"):
            self._load_for_update(slot_id, expected_version)
            return self._write(slot_id, expected_version, maintenance_status=MaintenanceStatus(status).value)

    def _load_for_update(self, slot_id: str, expected_version: int) -> ParkingSlotModel:
        model = self.session.get(ParkingSlotModel, slot_id)
        if model is None:
            raise KeyError(f"ParkingSlot {slot_id} not found")
        if model.version != expected_version:
            raise StaleEntityError("ParkingSlot", slot_id, expected_version, model.version)
        return model

    def _write(self, slot_id: str, expected_version: int, **values) -> ParkingSlot:
        """Conditional update: only applies while the row is still at expected_version"""
        values.update(version=expected_version + 1, updated_at=_utcnow())
        updated = self.session.query(ParkingSlotModel).filter(
            ParkingSlotModel.id == slot_id,
            ParkingSlotModel.version == expected_version
        ).update(values, synchronize_session='fetch')
        if updated == 0:
            raise StaleEntityError("ParkingSlot", slot_id, expected_version, None)
        self.session.flush()
        return Mapper.slot_to_domain(self.session.get(ParkingSlotModel, slot_id))


class SQLAlchemyBookingRepository(SQLAlchemyRepository, BookingRepository):
    """SQLAlchemy repository for bookings"""

    def _active(self) -> Query:
        return self.session.query(BookingModel).filter(BookingModel.status == BookingStatus.ACTIVE.value)

    def _filtered(
        self,
        user_id: Optional[str],
        status: Optional[BookingStatus],
        slot_id: Optional[str],
        location: Optional[CampusLocation]
    ) -> Query:
        query = self.session.query(BookingModel)
        if user_id is not None:
            query = query.filter(BookingModel.user_id == user_id)
        if status is not None:
            query = query.filter(BookingModel.status == BookingStatus(status).value)
        if slot_id is not None:
            query = query.filter(BookingModel.slot_id == slot_id)
        if location is not None:
            query = query.filter(BookingModel.location == CampusLocation(location).value)
        return query

    def add(self, booking: Booking) -> Booking:
        with self._storage_errors(f"adding booking {booking.id}"):
            self.session.add(Mapper.booking_to_orm(booking))
            self.session.flush()
        self._logger.debug(f"Added booking {booking.id}")
        return booking

    def get(self, booking_id: str) -> Optional[Booking]:
        with self._storage_errors(f"getting booking {booking_id}"):
            model = self.session.get(BookingModel, booking_id)
            return Mapper.booking_to_domain(model) if model else None

    def update(self, booking: Booking) -> Booking:
        expected = booking.version
        values = Mapper.booking_values(booking)
        del values['id']
        values['version'] = expected + 1
        with self._storage_errors(f"updating booking {booking.id}"):
            updated = self.session.query(BookingModel).filter(
                BookingModel.id == booking.id,
                BookingModel.version == expected
            ).update(values, synchronize_session='fetch')
            if updated == 0:
                current = self.session.get(BookingModel, booking.id)
                if current is None:
                    raise KeyError(f"Booking {booking.id} not found")
                raise StaleEntityError("Booking", booking.id, expected, current.version)
            self.session.flush()
        booking.version = expected + 1
        self._logger.debug(f"Updated booking {booking.id} to version {booking.version}")
        return booking

    def find_overlapping(
        self,
        slot_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_id: Optional[str] = None
    ) -> List[Booking]:
        with self._storage_errors(f"finding overlapping bookings on slot {slot_id}"):
            query = self._active().filter(
                BookingModel.slot_id == slot_id,
                BookingModel.start_time < end_time,
                BookingModel.end_time > start_time
            )
            if exclude_id is not None:
                query = query.filter(BookingModel.id != exclude_id)
            return [Mapper.booking_to_domain(m) for m in query.order_by(BookingModel.start_time).all()]

    def count_active_for_user(self, user_id: str, now: datetime) -> int:
        with self._storage_errors(f"counting active bookings of {user_id}"):
            return self._active().filter(
                BookingModel.user_id == user_id,
                BookingModel.end_time >= now
            ).count()

    def find_active_for_slot(self, slot_id: str) -> List[Booking]:
        with self._storage_errors(f"finding active bookings on slot {slot_id}"):
            models = self._active().filter(BookingModel.slot_id == slot_id).order_by(BookingModel.start_time).all()
            return [Mapper.booking_to_domain(m) for m in models]

    def find_expirable(self, now: datetime) -> List[Booking]:
        with self._storage_errors("finding expirable bookings"):
            models = self._active().filter(
                BookingModel.end_time <= now,
                BookingModel.check_out_time.is_(None)
            ).order_by(BookingModel.end_time).all()
            return [Mapper.booking_to_domain(m) for m in models]

    def find_conflicting_slot_ids(self, start_time: datetime, end_time: datetime) -> Set[str]:
        with self._storage_errors("finding conflicting slots"):
            rows = self.session.query(BookingModel.slot_id).filter(
                BookingModel.status == BookingStatus.ACTIVE.value,
                BookingModel.start_time < end_time,
                BookingModel.end_time > start_time
            ).distinct().all()
            return {row[0] for row in rows}

    def find_due_for_reminder(self, now: datetime, lead: timedelta) -> List[Booking]:
        with self._storage_errors("finding bookings due for reminder"):
            models = self._active().filter(
                BookingModel.reminder_sent.is_(False),
                BookingModel.start_time > now,
                BookingModel.start_time <= now + lead
            ).order_by(BookingModel.start_time).all()
            return [Mapper.booking_to_domain(m) for m in models]

    def find(
        self,
        user_id: Optional[str] = None,
        status: Optional[BookingStatus] = None,
        slot_id: Optional[str] = None,
        location: Optional[CampusLocation] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[Booking]:
        with self._storage_errors("searching bookings"):
            models = self._filtered(user_id, status, slot_id, location).order_by(
                BookingModel.created_at.desc(), BookingModel.start_time.desc()
            ).offset(skip).limit(limit).all()
            return [Mapper.booking_to_domain(m) for m in models]

    def count(
        self,
        user_id: Optional[str] = None,
        status: Optional[BookingStatus] = None,
        slot_id: Optional[str] = None,
        location: Optional[CampusLocation] = None
    ) -> int:
        with self._storage_errors("counting bookings"):
            return self._filtered(user_id, status, slot_id, location).count()


# ============================================================================
# SQLALCHEMY UNIT OF WORK
# ============================================================================

class SQLAlchemyUnitOfWork(UnitOfWork):
    """Unit of Work implementation with SQLAlchemy. One instance per operation."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self._logger = logging.getLogger(self.__class__.__name__)

    def __enter__(self):
        self.session = self.session_factory()
        self._slots = SQLAlchemySlotRepository(self.session)
        self._bookings = SQLAlchemyBookingRepository(self.session)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                self._logger.debug(f"Exception in unit of work: {exc_val!r}")
                self.rollback()
            else:
                self.commit()
        finally:
            self.session.close()

    def commit(self):
        """Commit the transaction"""
        try:
            self.session.commit()
            self._logger.debug("Transaction committed")
        except SQLAlchemyError as e:
            self._logger.error(f"Error committing transaction: {e}")
            self.session.rollback()
            raise StorageUnavailable("Error committing transaction", cause=e) from e

    def rollback(self):
        """Rollback the transaction"""
        self.session.rollback()
        self._logger.debug("Transaction rolled back")

    @property
    def slots(self) -> SQLAlchemySlotRepository:
        return self._slots

    @property
    def bookings(self) -> SQLAlchemyBookingRepository:
        return self._bookings


# ============================================================================
# REPOSITORY FACTORY
# ============================================================================

class RepositoryFactory:
    """Factory for creating storage back-ends"""

    @staticmethod
    def create_in_memory_uow_factory(database: Optional[InMemoryDatabase] = None) -> UnitOfWorkFactory:
        """Unit of work factory over a fresh (or given) in-memory database"""
        database = database or InMemoryDatabase()
        return database.unit_of_work

    @staticmethod
    def create_sqlalchemy_engine(database_url: str, echo: bool = False) -> Engine:
        """Create the engine and the tables if they don't exist"""
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        engine = create_engine(database_url, echo=echo, pool_pre_ping=True, connect_args=connect_args)
        Base.metadata.create_all(bind=engine)
        return engine

    @staticmethod
    def create_sqlalchemy_uow_factory(engine: Engine) -> UnitOfWorkFactory:
        SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        return lambda: SQLAlchemyUnitOfWork(SessionLocal)

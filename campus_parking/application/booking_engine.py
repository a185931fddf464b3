# File: campus_parking/application/booking_engine.py
"""
Booking Lifecycle Engine

The application service that owns every write to slots and bookings:

1. create_booking - validate a request and atomically create + claim
2. cancel_booking / extend_booking / check_in / check_out - guarded transitions
3. sweep_expired / send_reminders - periodic passes
4. set_maintenance_status - take a slot out of service, cancelling its bookings
5. booking reads with owner/admin checks

Concurrency discipline for every write:
- hold the per-slot lock (bounded wait)
- create_booking holds the per-user lock around that, user before slot
- open one unit of work, re-read, re-check every precondition
- stage the booking write and the slot claim/release, commit both together
- if a version token moved underneath us, roll back and re-evaluate from
  fresh reads, a bounded number of times

Observers run only after commit and their failures never undo a transition.
The event bus is called inline; the notification port is called on a small
background pool so a slow notifier never delays the caller.
"""

from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, TypeVar
import functools
import logging
import threading

from ..domain.models import (
    Booking, BookingStatus, CampusLocation, MaintenanceStatus, ParkingSlot,
    Role, VehicleInfo, VehicleType
)
from ..domain import rules
from ..domain.rules import BookingCharges
from ..infrastructure.locking import SlotLockManager
from ..infrastructure.repositories import UnitOfWork, UnitOfWorkFactory
from .availability import StorageReader
from .config import BookingPolicy
from .dtos import CheckInResult, CheckOutResult, CreateBookingRequest, PageRequest, PaginatedResponse
from .errors import (
    BookingError, ConflictError, ErrorKind, NotFoundError, StaleEntityError,
    StateError, StorageUnavailable, UnauthorizedError, ValidationError
)
from .ports import (
    Clock, DomainEvent, EventType, NotificationPort, SystemClock,
    UserDirectoryPort, to_naive_utc
)

R = TypeVar('R')


def logged_operation(action: str):
    """Log rejected requests with their error kind and storage failures at ERROR"""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            try:
                return func(self, *args, **kwargs)
            except StorageUnavailable as e:
                self.logger.error(f"Storage unavailable while {action}: {e.message}")
                raise
            except BookingError as e:
                self.logger.info(f"Rejected {action}: {e.kind.value} - {e.message}")
                raise
        return wrapper
    return decorator


def booking_reference(user_id: str, at: datetime) -> str:
    """Check-in reference, BOOKING_<epoch-ms>_<last 6 chars of user id>"""
    epoch_ms = int(at.replace(tzinfo=timezone.utc).timestamp() * 1000)
    return f"BOOKING_{epoch_ms}_{user_id[-6:]}"


class BookingLifecycleEngine:
    """
    Application service: the booking state machine

    All collaborators are injected; the engine holds no global state.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        directory: UserDirectoryPort,
        notifier: Optional[NotificationPort] = None,
        clock: Optional[Clock] = None,
        policy: Optional[BookingPolicy] = None,
        lock_manager: Optional[SlotLockManager] = None,
        event_bus: Optional[Any] = None,
        notification_executor: Optional[Executor] = None
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self._uow_factory = uow_factory
        self.directory = directory
        self.notifier = notifier
        self.clock = clock or SystemClock()
        self.policy = policy or BookingPolicy()
        self.locks = lock_manager or SlotLockManager(self.policy.slot_lock_timeout_seconds)
        self.event_bus = event_bus
        self._read = StorageReader(uow_factory, self.policy.storage_read_retries, self.logger)
        self._owns_executor = notification_executor is None
        self._notify_pool = notification_executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="booking-notify"
        )
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()

        self.logger.info("BookingLifecycleEngine initialized")

    # ========================================================================
    # CREATE
    # ========================================================================

    @logged_operation("creating booking")
    def create_booking(self, request: CreateBookingRequest) -> Booking:
        """
        Validate the request in a fixed order and, if every check passes,
        create the booking and claim the slot in one unit of work.
        """
        now = self._now()
        start, end = request.start_time, request.end_time

        if end <= start:
            raise ValidationError(ErrorKind.INVALID_WINDOW, "End time must be after start time")
        if start <= now:
            raise ValidationError(ErrorKind.WINDOW_IN_PAST, "Start time must be in the future")
        if start > now + self.policy.max_advance:
            raise ValidationError(
                ErrorKind.TOO_FAR_IN_ADVANCE,
                f"Cannot book more than {self.policy.max_advance_days} days in advance"
            )
        if end - start > self.policy.max_duration:
            raise ValidationError(
                ErrorKind.DURATION_TOO_LONG,
                f"Booking cannot exceed {self.policy.max_duration_hours:g} hours"
            )

        role = self._role_of(request.user_id)

        def transition(uow: UnitOfWork) -> Booking:
            slot = uow.slots.get(request.slot_id)
            if slot is None or not rules.slot_suits(slot, request.vehicle_type, role):
                raise ValidationError(
                    ErrorKind.SLOT_UNSUITABLE,
                    f"Slot {request.slot_id} is not available for {role.value} {request.vehicle_type.value} bookings"
                )
            if slot.location != request.location:
                raise ValidationError(
                    ErrorKind.LOCATION_MISMATCH,
                    f"Slot {slot.slot_number} is in {slot.location.value}, not {request.location.value}"
                )
            if uow.bookings.find_overlapping(slot.id, start, end):
                raise ConflictError(
                    ErrorKind.SLOT_CONFLICT,
                    f"Slot {slot.slot_number} is already booked for part of this window"
                )
            if uow.bookings.count_active_for_user(request.user_id, now) >= self.policy.max_active_bookings:
                raise ValidationError(
                    ErrorKind.TOO_MANY_ACTIVE_BOOKINGS,
                    f"Maximum {self.policy.max_active_bookings} active bookings allowed"
                )
            vehicle = self._registered_vehicle(request.user_id, request.vehicle_number, request.vehicle_type)

            booking = Booking(
                user_id=request.user_id,
                slot_id=slot.id,
                vehicle=vehicle,
                start_time=start,
                end_time=end,
                location=slot.location,
                duration_hours=BookingCharges.billable_hours(start, end),
                total_amount=BookingCharges.total_for(start, end, slot.hourly_rate),
                qr_code=booking_reference(request.user_id, now),
                created_at=now,
            )
            uow.bookings.add(booking)
            uow.slots.claim(slot.id, booking.id, slot.version, preempt=self._starts_first(uow, slot, booking))
            return booking

        with self.locks.hold_user(request.user_id):
            booking = self._write(request.slot_id, f"creating booking on slot {request.slot_id}", transition)
        self.logger.info(
            f"Booking {booking.id} created for user {booking.user_id} on slot {booking.slot_id} "
            f"({booking.time_range}, {booking.total_amount.format()})"
        )
        self._publish(EventType.BOOKING_CREATED, booking)
        return booking

    # ========================================================================
    # TRANSITIONS
    # ========================================================================

    @logged_operation("cancelling booking")
    def cancel_booking(
        self,
        booking_id: str,
        caller_id: str,
        is_admin: bool = False,
        reason: Optional[str] = None
    ) -> Booking:
        """
        Owners may cancel until `cancellation_cutoff` before start; admins
        may cancel any active booking at any time.
        """
        now = self._now()
        snapshot = self._load_booking(booking_id)
        self._authorize(snapshot, caller_id, is_admin)

        def transition(uow: UnitOfWork) -> Booking:
            booking = self._booking_for_update(uow, booking_id)
            if not booking.is_active:
                raise StateError(ErrorKind.NOT_ACTIVE, f"Booking {booking_id} is {booking.status.value}")
            if not is_admin and not rules.cancellation_open(booking, now, self.policy.cancellation_cutoff):
                raise StateError(
                    ErrorKind.CANCELLATION_WINDOW_CLOSED,
                    f"Bookings can only be cancelled up to "
                    f"{self.policy.cancellation_cutoff_minutes} minutes before start"
                )
            booking.mark_cancelled(caller_id, reason or "Cancelled by user", now)
            uow.bookings.update(booking)
            self._release_slot(uow, booking)
            return booking

        booking = self._write(snapshot.slot_id, f"cancelling booking {booking_id}", transition)
        self.logger.info(f"Booking {booking.id} cancelled by {caller_id}{' (admin)' if is_admin else ''}")
        self._publish(EventType.BOOKING_CANCELLED, booking, reason=booking.cancellation_reason)
        return booking

    @logged_operation("extending booking")
    def extend_booking(self, booking_id: str, additional_hours: int, caller_id: Optional[str] = None) -> Booking:
        """Extend an active booking, during its window, by 1-4 whole hours"""
        now = self._now()
        snapshot = self._load_booking(booking_id)
        self._authorize(snapshot, caller_id)

        def transition(uow: UnitOfWork) -> Booking:
            booking = self._booking_for_update(uow, booking_id)
            if not (booking.is_active and booking.start_time <= now <= booking.end_time):
                raise StateError(
                    ErrorKind.NOT_EXTENDABLE,
                    f"Booking {booking_id} can only be extended while active and inside its window"
                )
            hours = self._extension_hours(additional_hours)
            new_end = booking.end_time + timedelta(hours=hours)
            if uow.bookings.find_overlapping(booking.slot_id, booking.end_time, new_end, exclude_id=booking.id):
                raise ConflictError(
                    ErrorKind.EXTENSION_CONFLICT,
                    "Cannot extend: the slot is booked right after this booking"
                )
            slot = self._slot_for_update(uow, booking.slot_id)
            booking.apply_extension(hours, slot.hourly_rate, now)
            uow.bookings.update(booking)
            # keeps the link and bumps the slot version, so a concurrent claim of the extended window fails
            uow.slots.claim(slot.id, booking.id, slot.version)
            return booking

        booking = self._write(snapshot.slot_id, f"extending booking {booking_id}", transition)
        record = booking.extension_history[-1]
        self.logger.info(f"Booking {booking.id} extended by {record.added_hours}h to {record.new_end.isoformat()}")
        self._publish(
            EventType.BOOKING_EXTENDED, booking,
            added_hours=record.added_hours, added_amount=record.added_amount.to_dict()
        )
        return booking

    @logged_operation("checking in")
    def check_in(self, booking_id: str, caller_id: Optional[str] = None) -> CheckInResult:
        now = self._now()
        snapshot = self._load_booking(booking_id)
        self._authorize(snapshot, caller_id)

        def transition(uow: UnitOfWork) -> Booking:
            booking = self._booking_for_update(uow, booking_id)
            if not booking.is_active:
                raise StateError(ErrorKind.NOT_ACTIVE, f"Booking {booking_id} is {booking.status.value}")
            if booking.check_in_time is not None:
                raise StateError(ErrorKind.ALREADY_CHECKED_IN, f"Booking {booking_id} is already checked in")
            if now < rules.check_in_opens_at(booking, self.policy.check_in_grace):
                raise StateError(
                    ErrorKind.TOO_EARLY,
                    f"Check-in opens {self.policy.check_in_grace_minutes} minutes before the booking starts"
                )
            if now > booking.end_time:
                raise StateError(ErrorKind.WINDOW_EXPIRED, f"Booking {booking_id} has already ended")
            booking.mark_checked_in(now)
            uow.bookings.update(booking)
            return booking

        booking = self._write(snapshot.slot_id, f"checking in booking {booking_id}", transition)
        self.logger.info(f"Booking {booking.id} checked in at {booking.check_in_time.isoformat()}")
        self._publish(EventType.BOOKING_CHECKED_IN, booking)
        return CheckInResult(booking_id=booking.id, check_in_time=booking.check_in_time)

    @logged_operation("checking out")
    def check_out(self, booking_id: str, caller_id: Optional[str] = None) -> CheckOutResult:
        now = self._now()
        snapshot = self._load_booking(booking_id)
        self._authorize(snapshot, caller_id)

        def transition(uow: UnitOfWork) -> Booking:
            booking = self._booking_for_update(uow, booking_id)
            if booking.check_in_time is None:
                raise StateError(ErrorKind.NOT_CHECKED_IN, f"Booking {booking_id} was never checked in")
            if booking.check_out_time is not None:
                raise StateError(ErrorKind.ALREADY_CHECKED_OUT, f"Booking {booking_id} is already checked out")
            if not booking.is_active:
                # already released when it left active
                booking.record_late_check_out(now)
                uow.bookings.update(booking)
                return booking
            booking.mark_completed(now)
            uow.bookings.update(booking)
            self._release_slot(uow, booking)
            return booking

        booking = self._write(snapshot.slot_id, f"checking out booking {booking_id}", transition)
        actual_hours = booking.actual_duration_hours or 0.0
        late = booking.status != BookingStatus.COMPLETED
        self.logger.info(
            f"Booking {booking.id} checked out after {actual_hours:.2f}h"
            + (f" (late, status stays {booking.status.value})" if late else "")
        )
        self._publish(EventType.BOOKING_COMPLETED, booking, actual_duration_hours=actual_hours, late_check_out=late)
        return CheckOutResult(
            booking_id=booking.id,
            check_out_time=booking.check_out_time,
            actual_duration_hours=actual_hours
        )

    # ========================================================================
    # PERIODIC PASSES
    # ========================================================================

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """
        Move every active booking whose window has ended (and that was never
        checked out) to expired, or to no-show when it was never checked in
        and the policy says so, releasing its slot. Returns how many bookings
        this pass transitioned; a second pass at the same instant returns 0.
        """
        now = to_naive_utc(now) if now is not None else self._now()
        candidates = self._read("finding expirable bookings", lambda uow: uow.bookings.find_expirable(now))
        transitioned = 0

        for candidate in candidates:
            def transition(uow: UnitOfWork, booking_id: str = candidate.id) -> Optional[Booking]:
                booking = uow.bookings.get(booking_id)
                if (booking is None or not booking.is_active
                        or booking.end_time > now or booking.check_out_time is not None):
                    return None
                booking.mark_lapsed(self._lapse_status(booking), now)
                uow.bookings.update(booking)
                self._release_slot(uow, booking)
                return booking

            try:
                booking = self._write(candidate.slot_id, f"expiring booking {candidate.id}", transition)
            except StorageUnavailable as e:
                self.logger.error(f"Could not expire booking {candidate.id}, will retry next sweep: {e.message}")
                continue
            if booking is None:
                continue

            transitioned += 1
            self.logger.info(f"Booking {booking.id} marked {booking.status.value}")
            event_type = EventType.BOOKING_NO_SHOW if booking.status == BookingStatus.NO_SHOW else EventType.BOOKING_EXPIRED
            self._publish(event_type, booking)

        if transitioned:
            self.logger.info(f"Expiry sweep transitioned {transitioned} bookings")
        return transitioned

    def send_reminders(self, now: Optional[datetime] = None) -> int:
        """Notify owners of bookings starting within the reminder lead time, once each"""
        now = to_naive_utc(now) if now is not None else self._now()
        lead = self.policy.reminder_lead
        candidates = self._read(
            "finding bookings due for reminder",
            lambda uow: uow.bookings.find_due_for_reminder(now, lead)
        )
        sent = 0

        for candidate in candidates:
            def transition(uow: UnitOfWork, booking_id: str = candidate.id) -> Optional[Booking]:
                booking = uow.bookings.get(booking_id)
                if (booking is None or not booking.is_active or booking.reminder_sent
                        or not now < booking.start_time <= now + lead):
                    return None
                booking.reminder_sent = True
                booking.updated_at = now
                uow.bookings.update(booking)
                return booking

            try:
                booking = self._write(candidate.slot_id, f"marking reminder for {candidate.id}", transition)
            except StorageUnavailable as e:
                self.logger.error(f"Could not record reminder for booking {candidate.id}: {e.message}")
                continue
            if booking is None:
                continue

            sent += 1
            minutes = int((booking.start_time - now).total_seconds() // 60)
            self._publish(EventType.BOOKING_REMINDER, booking, minutes_until_start=minutes)

        if sent:
            self.logger.info(f"Sent {sent} booking reminders")
        return sent

    # ========================================================================
    # SLOT MAINTENANCE
    # ========================================================================

    @logged_operation("changing maintenance status")
    def set_maintenance_status(
        self,
        slot_id: str,
        status: MaintenanceStatus,
        changed_by: str
    ) -> Tuple[ParkingSlot, List[Booking]]:
        """
        Change a slot's maintenance status. Leaving `operational` cancels
        every active booking on the slot and releases it in the same unit of
        work. Returns the updated slot and the bookings that were cancelled.
        """
        now = self._now()
        status = MaintenanceStatus(status)

        def transition(uow: UnitOfWork) -> Tuple[ParkingSlot, List[Booking]]:
            slot = uow.slots.get(slot_id)
            if slot is None:
                raise NotFoundError("Slot", slot_id)
            cancelled: List[Booking] = []
            if status != MaintenanceStatus.OPERATIONAL:
                for booking in uow.bookings.find_active_for_slot(slot_id):
                    booking.mark_cancelled(changed_by, f"Slot unavailable: {status.value}", now)
                    uow.bookings.update(booking)
                    slot = uow.slots.release(slot_id, booking.id, slot.version)
                    cancelled.append(booking)
            slot = uow.slots.set_maintenance_status(slot_id, status, slot.version)
            return slot, cancelled

        slot, cancelled = self._write(slot_id, f"changing maintenance status of slot {slot_id}", transition)
        self.logger.info(
            f"Slot {slot.slot_number} set to {status.value} by {changed_by}; "
            f"{len(cancelled)} bookings cancelled"
        )
        self._publish(
            EventType.SLOT_MAINTENANCE_CHANGED, slot_id=slot.id, user_id=changed_by,
            maintenance_status=status.value, cancelled_booking_ids=[b.id for b in cancelled]
        )
        for booking in cancelled:
            self._publish(EventType.BOOKING_CANCELLED, booking, reason=booking.cancellation_reason)
        return slot, cancelled

    # ========================================================================
    # READS
    # ========================================================================

    def get_booking(self, booking_id: str, caller_id: str, is_admin: bool = False) -> Booking:
        booking = self._load_booking(booking_id)
        self._authorize(booking, caller_id, is_admin)
        return booking

    def describe(self, booking: Booking) -> Dict[str, Any]:
        """Serialised booking with its human-facing status label"""
        data = booking.to_dict()
        data["status_description"] = rules.status_description(booking, self._now())
        return data

    def list_user_bookings(
        self,
        user_id: str,
        status: Optional[BookingStatus] = None,
        page: Optional[PageRequest] = None
    ) -> PaginatedResponse:
        page = page or PageRequest()

        def query(uow: UnitOfWork) -> Tuple[List[Booking], int]:
            found = uow.bookings.find_for_user(user_id, status=status, skip=page.skip, limit=page.limit)
            return found, uow.bookings.count(user_id=user_id, status=status)

        found, total = self._read(f"listing bookings of {user_id}", query)
        return PaginatedResponse.build([self.describe(b) for b in found], total, page)

    def list_active_bookings(self, user_id: str) -> List[Booking]:
        """The user's active bookings, soonest first"""
        found = self._read(
            f"listing active bookings of {user_id}",
            lambda uow: uow.bookings.find(user_id=user_id, status=BookingStatus.ACTIVE, limit=1000)
        )
        return sorted(found, key=lambda b: b.start_time)

    def list_bookings(
        self,
        status: Optional[BookingStatus] = None,
        location: Optional[CampusLocation] = None,
        page: Optional[PageRequest] = None
    ) -> PaginatedResponse:
        """Every booking, for administrators"""
        page = page or PageRequest()

        def query(uow: UnitOfWork) -> Tuple[List[Booking], int]:
            found = uow.bookings.find(status=status, location=location, skip=page.skip, limit=page.limit)
            return found, uow.bookings.count(status=status, location=location)

        found, total = self._read("listing bookings", query)
        return PaginatedResponse.build([self.describe(b) for b in found], total, page)

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def flush_notifications(self, timeout: Optional[float] = None) -> bool:
        """Wait for notifications already handed off; False if some are still running"""
        with self._pending_lock:
            pending = list(self._pending)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """Give in-flight notifications `timeout` seconds, then stop the notification pool"""
        if not self.flush_notifications(timeout):
            self.logger.warning("Closing with notifications still in flight")
        if self._owns_executor:
            self._notify_pool.shutdown(wait=False)
        self.logger.info("BookingLifecycleEngine closed")

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _now(self) -> datetime:
        return to_naive_utc(self.clock.now())

    def _write(self, slot_id: str, action: str, transition: Callable[[UnitOfWork], R]) -> R:
        """
        Run `transition` under the slot lock in a fresh unit of work, starting
        over from fresh reads when a version token moved. Storage errors are
        not retried.
        """
        with self.locks.hold(slot_id):
            for attempt in range(1, self.policy.max_claim_attempts + 1):
                try:
                    with self._uow_factory() as uow:
                        result = transition(uow)
                    return result
                except StaleEntityError as e:
                    self.logger.warning(f"Concurrent update while {action} (attempt {attempt}): {e}")
        raise StorageUnavailable(
            f"Gave up {action} after {self.policy.max_claim_attempts} concurrent updates"
        )

    def _load_booking(self, booking_id: str) -> Booking:
        booking = self._read(f"getting booking {booking_id}", lambda uow: uow.bookings.get(booking_id))
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        return booking

    @staticmethod
    def _booking_for_update(uow: UnitOfWork, booking_id: str) -> Booking:
        booking = uow.bookings.get(booking_id)
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        return booking

    @staticmethod
    def _slot_for_update(uow: UnitOfWork, slot_id: str) -> ParkingSlot:
        slot = uow.slots.get(slot_id)
        if slot is None:
            raise NotFoundError("Slot", slot_id)
        return slot

    @staticmethod
    def _starts_first(uow: UnitOfWork, slot: ParkingSlot, booking: Booking) -> bool:
        """Whether the new booking should become the slot's referenced booking"""
        if slot.current_booking_id is None:
            return True
        current = uow.bookings.get(slot.current_booking_id)
        return current is None or not current.is_active or booking.start_time < current.start_time

    def _release_slot(self, uow: UnitOfWork, booking: Booking) -> None:
        """Unlink a booking that just left `active`; the next active booking takes over"""
        slot = self._slot_for_update(uow, booking.slot_id)
        successor = next(
            (b.id for b in uow.bookings.find_active_for_slot(slot.id) if b.id != booking.id),
            None
        )
        uow.slots.release(slot.id, booking.id, slot.version, successor_id=successor)

    def _lapse_status(self, booking: Booking) -> BookingStatus:
        if self.policy.mark_unattended_as_no_show and booking.check_in_time is None:
            return BookingStatus.NO_SHOW
        return BookingStatus.EXPIRED

    def _extension_hours(self, additional_hours: Any) -> int:
        low, high = self.policy.min_extension_hours, self.policy.max_extension_hours
        valid = (
            isinstance(additional_hours, (int, float))
            and not isinstance(additional_hours, bool)
            and float(additional_hours).is_integer()
            and low <= additional_hours <= high
        )
        if not valid:
            raise ValidationError(
                ErrorKind.INVALID_EXTENSION,
                f"Extension must be a whole number of hours between {low} and {high}"
            )
        return int(additional_hours)

    def _role_of(self, user_id: str) -> Role:
        try:
            return Role(self.directory.get_role(user_id))
        except (LookupError, ValueError) as e:
            raise UnauthorizedError(f"Unknown user {user_id}") from e

    def _registered_vehicle(self, user_id: str, number: str, vehicle_type: VehicleType) -> VehicleInfo:
        try:
            vehicle = VehicleInfo(number, vehicle_type)
        except ValueError as e:
            raise ValidationError(ErrorKind.VEHICLE_NOT_REGISTERED, str(e)) from e
        registered = self.directory.get_registered_vehicles(user_id)
        if not any(v.active and vehicle.matches(v) for v in registered):
            raise ValidationError(
                ErrorKind.VEHICLE_NOT_REGISTERED,
                f"Vehicle {vehicle.number} ({vehicle.vehicle_type.value}) is not registered to this user"
            )
        return vehicle

    @staticmethod
    def _authorize(booking: Booking, caller_id: Optional[str], is_admin: bool = False) -> None:
        if caller_id is None or is_admin:
            return
        if booking.user_id != caller_id:
            raise UnauthorizedError(f"Booking {booking.id} belongs to another user")

    def _publish(self, event_type: EventType, booking: Optional[Booking] = None, **data: Any) -> None:
        """Hand a committed transition to observers; never raises"""
        slot_id = data.pop("slot_id", booking.slot_id if booking else None)
        user_id = data.pop("user_id", booking.user_id if booking else None)
        if booking is not None:
            data["booking"] = booking.to_dict()
        event = DomainEvent(
            event_type=event_type,
            occurred_at=self._now(),
            booking_id=booking.id if booking else None,
            slot_id=slot_id,
            user_id=user_id,
            data=data,
        )
        if self.event_bus is not None:
            self.event_bus.publish(event)
        if self.notifier is not None:
            try:
                future = self._notify_pool.submit(self._deliver, event)
            except RuntimeError as e:
                self.logger.warning(f"Notification {event_type.value} for booking {event.booking_id} dropped: {e}")
                return
            with self._pending_lock:
                self._pending.add(future)
            future.add_done_callback(self._forget)

    def _deliver(self, event: DomainEvent) -> None:
        try:
            self.notifier.notify(event)
        except Exception as e:
            self.logger.warning(f"Notification {event.event_type.value} for booking {event.booking_id} failed: {e}")

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

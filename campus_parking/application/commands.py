# File: campus_parking/application/commands.py
"""
Command handling for the booking engine

1. BookingCommandHandler - maps command dictionaries ({"type": ..., "data": ...})
   onto engine and query-service calls and returns plain result dictionaries,
   the in-process surface an outer API layer would call
2. PeriodicSweeper - background thread running the expiry sweep and reminders
"""

from typing import Any, Callable, Dict, Optional
import logging
import threading

from pydantic import ValidationError as RequestValidationError

from ..domain.models import BookingStatus, CampusLocation, MaintenanceStatus
from .availability import AvailabilityQueryService
from .booking_engine import BookingLifecycleEngine
from .dtos import AvailabilityFilter, CreateBookingRequest, PageRequest
from .errors import BookingError


# ============================================================================
# COMMAND HANDLER
# ============================================================================

class BookingCommandHandler:
    """
    Handler for booking commands

    Every command returns {"success": True, "data": ...} or
    {"success": False, "error_kind": ..., "message": ...}.
    """

    def __init__(self, engine: BookingLifecycleEngine, queries: AvailabilityQueryService):
        self.engine = engine
        self.queries = queries
        self.logger = logging.getLogger(self.__class__.__name__)
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            "create_booking": self._create_booking,
            "cancel_booking": self._cancel_booking,
            "extend_booking": self._extend_booking,
            "check_in": self._check_in,
            "check_out": self._check_out,
            "get_booking": self._get_booking,
            "list_user_bookings": self._list_user_bookings,
            "list_bookings": self._list_bookings,
            "find_available": self._find_available,
            "set_maintenance_status": self._set_maintenance_status,
            "sweep_expired": lambda data: {"transitioned": self.engine.sweep_expired()},
            "send_reminders": lambda data: {"sent": self.engine.send_reminders()},
            "real_time_status": lambda data: [s.to_dict() for s in self.queries.real_time_status()],
            "availability_summary": lambda data: [s.to_dict() for s in self.queries.summary_by_location()],
        }

    def handle(self, command: Dict[str, Any]) -> Dict[str, Any]:
        """Handle a booking command"""
        command_type = command.get("type")
        handler = self._handlers.get(command_type)
        if handler is None:
            return {
                "success": False,
                "error_kind": "UnknownCommand",
                "message": f"Unknown command type: {command_type}"
            }

        try:
            return {"success": True, "data": handler(command.get("data") or {})}
        except BookingError as e:
            return {"success": False, **e.to_dict()}
        except RequestValidationError as e:
            self.logger.info(f"Invalid {command_type} request: {e.error_count()} errors")
            return {"success": False, "error_kind": "InvalidRequest", "message": str(e)}
        except (KeyError, TypeError, ValueError) as e:
            self.logger.info(f"Malformed {command_type} command: {e}")
            return {"success": False, "error_kind": "InvalidRequest", "message": str(e)}

    # Handlers

    def _create_booking(self, data: Dict[str, Any]) -> Dict[str, Any]:
        booking = self.engine.create_booking(CreateBookingRequest(**data))
        return self.engine.describe(booking)

    def _cancel_booking(self, data: Dict[str, Any]) -> Dict[str, Any]:
        booking = self.engine.cancel_booking(
            data["booking_id"],
            data["caller_id"],
            is_admin=bool(data.get("is_admin", False)),
            reason=data.get("reason")
        )
        return self.engine.describe(booking)

    def _extend_booking(self, data: Dict[str, Any]) -> Dict[str, Any]:
        booking = self.engine.extend_booking(
            data["booking_id"], data["additional_hours"], caller_id=data.get("caller_id")
        )
        return self.engine.describe(booking)

    def _check_in(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.engine.check_in(data["booking_id"], caller_id=data.get("caller_id")).to_dict()

    def _check_out(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.engine.check_out(data["booking_id"], caller_id=data.get("caller_id")).to_dict()

    def _get_booking(self, data: Dict[str, Any]) -> Dict[str, Any]:
        booking = self.engine.get_booking(
            data["booking_id"], data["caller_id"], is_admin=bool(data.get("is_admin", False))
        )
        return self.engine.describe(booking)

    def _list_user_bookings(self, data: Dict[str, Any]) -> Dict[str, Any]:
        status = BookingStatus(data["status"]) if data.get("status") else None
        page = PageRequest(page=data.get("page", 1), limit=data.get("limit", 10))
        return self.engine.list_user_bookings(data["user_id"], status=status, page=page).to_dict()

    def _list_bookings(self, data: Dict[str, Any]) -> Dict[str, Any]:
        status = BookingStatus(data["status"]) if data.get("status") else None
        location = CampusLocation(data["location"]) if data.get("location") else None
        page = PageRequest(page=data.get("page", 1), limit=data.get("limit", 10))
        return self.engine.list_bookings(status=status, location=location, page=page).to_dict()

    def _find_available(self, data: Dict[str, Any]) -> Any:
        slots = self.queries.find_available(AvailabilityFilter(**data))
        return [slot.to_dict() for slot in slots]

    def _set_maintenance_status(self, data: Dict[str, Any]) -> Dict[str, Any]:
        slot, cancelled = self.engine.set_maintenance_status(
            data["slot_id"], MaintenanceStatus(data["status"]), data["changed_by"]
        )
        return {"slot": slot.to_dict(), "cancelled_booking_ids": [b.id for b in cancelled]}


# ============================================================================
# PERIODIC SWEEPER
# ============================================================================

class PeriodicSweeper:
    """Runs the expiry sweep and reminder pass on a daemon thread"""

    def __init__(self, engine: BookingLifecycleEngine, interval_seconds: float = 60.0):
        self.engine = engine
        self.interval_seconds = interval_seconds
        self.logger = logging.getLogger(self.__class__.__name__)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> Dict[str, int]:
        expired = self.engine.sweep_expired()
        reminded = self.engine.send_reminders()
        return {"expired": expired, "reminded": reminded}

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="booking-sweeper", daemon=True)
        self._thread.start()
        self.logger.info(f"Sweeper started (every {self.interval_seconds}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self.logger.info("Sweeper stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except BookingError as e:
                self.logger.error(f"Sweep failed: {e.kind.value} - {e.message}")
            except Exception:
                self.logger.exception("Sweep failed unexpectedly")
            self._stop.wait(self.interval_seconds)

# File: campus_parking/application/dtos.py
"""
Data Transfer Objects (DTOs) for the booking engine

1. Input DTOs - booking requests and availability filters
2. Output DTOs - check-in/check-out results, pages, availability summaries

DTOs only normalise shape (enums, UTC instants). Business rules such as the
maximum duration or the advance-booking limit are applied by the engine so
every rejection carries its specific error kind.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
import json
import math

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..domain.models import CampusLocation, Role, VehicleType
from .ports import to_naive_utc


# ============================================================================
# BASE DTO CLASSES
# ============================================================================

class BaseDTO(BaseModel):
    """Base DTO with common functionality"""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )

    def to_dict(self, exclude_none: bool = False, **kwargs) -> Dict[str, Any]:
        """Convert DTO to a JSON-compatible dictionary"""
        return self.model_dump(mode="json", exclude_none=exclude_none, **kwargs)

    def to_json(self, **kwargs) -> str:
        return self.model_dump_json(**kwargs)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BaseDTO':
        return cls(**data)

    @classmethod
    def from_json(cls, json_str: str) -> 'BaseDTO':
        return cls(**json.loads(json_str))


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    return to_naive_utc(value) if value is not None else None


# ============================================================================
# INPUT DTOs
# ============================================================================

class CreateBookingRequest(BaseDTO):
    """Request to reserve one slot for one window"""
    user_id: str = Field(min_length=1, description="Caller's user ID")
    slot_id: str = Field(min_length=1, description="Target slot ID")
    vehicle_number: str = Field(min_length=1, description="Registration number")
    vehicle_type: VehicleType = Field(description="Vehicle type")
    start_time: datetime = Field(description="Window start")
    end_time: datetime = Field(description="Window end")
    location: CampusLocation = Field(description="Campus location of the slot")

    @field_validator('start_time', 'end_time')
    @classmethod
    def normalise_instant(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

    @field_validator('vehicle_number')
    @classmethod
    def normalise_plate(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator('vehicle_type')
    @classmethod
    def concrete_vehicle_type(cls, v: VehicleType) -> VehicleType:
        if v == VehicleType.ANY:
            raise ValueError("Vehicle type must be car, motorcycle or bicycle")
        return v


class AvailabilityFilter(BaseDTO):
    """Filters for AvailabilityQueryService.find_available"""
    role: Role = Field(description="Caller's role, decides reserved slot classes")
    location: Optional[CampusLocation] = None
    vehicle_type: Optional[VehicleType] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def normalise_instant(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _utc(v)

    @model_validator(mode='after')
    def validate_window(self) -> 'AvailabilityFilter':
        if (self.start_time is None) != (self.end_time is None):
            raise ValueError("start_time and end_time must be given together")
        if self.start_time is not None and self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self

    @property
    def has_window(self) -> bool:
        return self.start_time is not None


class PageRequest(BaseDTO):
    """1-based pagination"""
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


# ============================================================================
# OUTPUT DTOs
# ============================================================================

class CheckInResult(BaseDTO):
    booking_id: str
    check_in_time: datetime


class CheckOutResult(BaseDTO):
    booking_id: str
    check_out_time: datetime
    actual_duration_hours: float = Field(ge=0)


class PaginatedResponse(BaseDTO):
    """A page of serialised items"""
    items: List[Dict[str, Any]]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, items: List[Dict[str, Any]], total: int, page: PageRequest) -> 'PaginatedResponse':
        total_pages = math.ceil(total / page.limit) if total else 0
        return cls(
            items=items,
            total=total,
            page=page.page,
            limit=page.limit,
            total_pages=total_pages,
            has_next=page.page < total_pages,
            has_prev=page.page > 1,
        )


class LocationSummary(BaseDTO):
    """Per-location availability counts"""
    location: CampusLocation
    total_slots: int = 0
    available_slots: int = 0
    occupied_slots: int = 0
    out_of_service_slots: int = 0

    @property
    def occupancy_rate(self) -> float:
        if not self.total_slots:
            return 0.0
        return self.occupied_slots / self.total_slots

    def to_dict(self, exclude_none: bool = False, **kwargs) -> Dict[str, Any]:
        data = super().to_dict(exclude_none=exclude_none, **kwargs)
        data["occupancy_rate"] = round(self.occupancy_rate * 100, 1)
        return data


class SlotStatusDTO(BaseDTO):
    """Live state of one slot"""
    slot_id: str
    slot_number: str
    location: CampusLocation
    state: str = Field(pattern="^(available|reserved|occupied|overdue|maintenance|out-of-order|inactive)$")
    booking_id: Optional[str] = None
    user_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

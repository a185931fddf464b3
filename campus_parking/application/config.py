# File: campus_parking/application/config.py
"""
Configuration for the booking engine

BookingPolicy holds the business constants; Settings holds deployment wiring
(database, redis, logging, sweep cadence). Both are pydantic models so bad
values fail at start-up rather than in the middle of a booking.
"""

from datetime import timedelta
from typing import Any, Dict, Optional
import logging
import os
import sys

from pydantic import BaseModel, ConfigDict, Field


ENV_PREFIX = "PARKING_"
POLICY_ENV_PREFIX = f"{ENV_PREFIX}POLICY__"


class BookingPolicy(BaseModel):
    """Business rules applied by BookingLifecycleEngine"""

    model_config = ConfigDict(frozen=True)

    max_advance_days: int = Field(default=30, ge=0, description="How far ahead a booking may start")
    max_duration_hours: float = Field(default=8.0, gt=0, description="Longest bookable window")
    max_active_bookings: int = Field(default=3, ge=1, description="Active bookings per user")
    cancellation_cutoff_minutes: int = Field(default=60, ge=0, description="Non-admin cancel cut-off before start")
    check_in_grace_minutes: int = Field(default=15, ge=0, description="How early check-in opens")
    min_extension_hours: int = Field(default=1, ge=1)
    max_extension_hours: int = Field(default=4, ge=1)
    reminder_lead_minutes: int = Field(default=30, ge=1, description="Reminder lead time before start")
    mark_unattended_as_no_show: bool = Field(
        default=True,
        description="Sweep lapsed bookings never checked in as no-show instead of expired"
    )
    slot_lock_timeout_seconds: float = Field(default=5.0, gt=0)
    storage_read_retries: int = Field(default=2, ge=0)
    max_claim_attempts: int = Field(default=3, ge=1)

    @property
    def max_advance(self) -> timedelta:
        return timedelta(days=self.max_advance_days)

    @property
    def max_duration(self) -> timedelta:
        return timedelta(hours=self.max_duration_hours)

    @property
    def cancellation_cutoff(self) -> timedelta:
        return timedelta(minutes=self.cancellation_cutoff_minutes)

    @property
    def check_in_grace(self) -> timedelta:
        return timedelta(minutes=self.check_in_grace_minutes)

    @property
    def reminder_lead(self) -> timedelta:
        return timedelta(minutes=self.reminder_lead_minutes)


class Settings(BaseModel):
    """Deployment settings"""

    database_url: Optional[str] = Field(default=None, description="SQLAlchemy URL; in-memory store when unset")
    redis_url: Optional[str] = Field(default=None, description="Redis URL for notification publishing")
    notification_channel: str = Field(default="parking.notifications")
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    sweep_interval_seconds: float = Field(default=60.0, gt=0)
    policy: BookingPolicy = Field(default_factory=BookingPolicy)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> 'Settings':
        """
        Build settings from PARKING_* environment variables.

        Policy fields are overridden with PARKING_POLICY__<FIELD>, e.g.
        PARKING_POLICY__MAX_ACTIVE_BOOKINGS=5.
        """
        env = os.environ if environ is None else environ
        data: Dict[str, Any] = {}

        simple_fields = {
            "database_url": f"{ENV_PREFIX}DATABASE_URL",
            "redis_url": f"{ENV_PREFIX}REDIS_URL",
            "notification_channel": f"{ENV_PREFIX}NOTIFICATION_CHANNEL",
            "log_level": f"{ENV_PREFIX}LOG_LEVEL",
            "sweep_interval_seconds": f"{ENV_PREFIX}SWEEP_INTERVAL_SECONDS",
        }
        for field_name, env_name in simple_fields.items():
            value = env.get(env_name)
            if value not in (None, ""):
                data[field_name] = value

        policy_overrides = {
            key[len(POLICY_ENV_PREFIX):].lower(): value
            for key, value in env.items()
            if key.startswith(POLICY_ENV_PREFIX)
        }
        unknown = set(policy_overrides) - set(BookingPolicy.model_fields)
        if unknown:
            raise ValueError(f"Unknown booking policy settings: {', '.join(sorted(unknown))}")
        if policy_overrides:
            data["policy"] = BookingPolicy(**policy_overrides)

        if "log_level" in data:
            data["log_level"] = data["log_level"].upper()

        return cls(**data)


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Setup application logging configuration"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    return logging.getLogger("campus_parking")

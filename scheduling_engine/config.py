"""
Scheduling Engine Configuration
Centralized configuration for the lock store, conflict policy and cascade search
"""
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field
import redis.asyncio as redis

from .models.appointments import AppointmentTypeSettings

load_dotenv()

# Redis Configuration
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")

# Slot locks (holds between slot selection and booking commit)
SLOT_LOCK_TTL_SECONDS = int(os.getenv("SLOT_LOCK_TTL_SECONDS", "60"))
SLOT_LOCK_KEY_PREFIX = os.getenv("SLOT_LOCK_KEY_PREFIX", "slot_lock")
LOCK_SWEEP_INTERVAL_SECONDS = int(os.getenv("LOCK_SWEEP_INTERVAL_SECONDS", "30"))

# Conflict detection windows (in minutes)
PRACTITIONER_BUFFER_MINUTES = int(os.getenv("PRACTITIONER_BUFFER_MINUTES", "0"))
PATIENT_CONFLICT_WINDOW_MINUTES = int(os.getenv("PATIENT_CONFLICT_WINDOW_MINUTES", "120"))
# Patient conflicts are advisory unless this is enabled
PATIENT_CONFLICT_BLOCKING = os.getenv("PATIENT_CONFLICT_BLOCKING", "false").lower() == "true"

# Appointment type fallbacks when neither practitioner nor type settings exist
DEFAULT_APPOINTMENT_DURATION_MINUTES = int(os.getenv("DEFAULT_APPOINTMENT_DURATION_MINUTES", "30"))
DEFAULT_BUFFER_MINUTES = int(os.getenv("DEFAULT_BUFFER_MINUTES", "0"))

# Emergency cascade
CASCADE_SEARCH_HORIZON_DAYS = int(os.getenv("CASCADE_SEARCH_HORIZON_DAYS", "14"))
CASCADE_MAX_ALTERNATIVES = int(os.getenv("CASCADE_MAX_ALTERNATIVES", "5"))


class SchedulingPolicy(BaseModel):
    """Validated runtime policy shared by the scheduling services."""

    slot_lock_ttl_seconds: int = Field(60, ge=10, le=300)
    practitioner_buffer_minutes: int = Field(0, ge=0, le=30)
    patient_conflict_window_minutes: int = Field(120, ge=0, le=24 * 60)
    patient_conflict_blocking: bool = False
    default_duration_minutes: int = Field(30, ge=5)
    default_buffer_minutes: int = Field(0, ge=0, le=120)
    cascade_search_horizon_days: int = Field(14, ge=1, le=90)
    cascade_max_alternatives: int = Field(5, ge=1, le=50)
    # Anchors examined per requested occurrence when a series has no end date
    series_anchor_factor: int = Field(4, ge=1)
    series_anchor_slack: int = Field(12, ge=0)

    @property
    def fallback_settings(self) -> AppointmentTypeSettings:
        """Duration and buffer for appointment types the settings catalog does not list."""
        return AppointmentTypeSettings(
            duration_minutes=self.default_duration_minutes,
            buffer_minutes=self.default_buffer_minutes,
        )


def load_scheduling_policy() -> SchedulingPolicy:
    """Build the scheduling policy from environment variables."""
    return SchedulingPolicy(
        slot_lock_ttl_seconds=SLOT_LOCK_TTL_SECONDS,
        practitioner_buffer_minutes=PRACTITIONER_BUFFER_MINUTES,
        patient_conflict_window_minutes=PATIENT_CONFLICT_WINDOW_MINUTES,
        patient_conflict_blocking=PATIENT_CONFLICT_BLOCKING,
        default_duration_minutes=DEFAULT_APPOINTMENT_DURATION_MINUTES,
        default_buffer_minutes=DEFAULT_BUFFER_MINUTES,
        cascade_search_horizon_days=CASCADE_SEARCH_HORIZON_DAYS,
        cascade_max_alternatives=CASCADE_MAX_ALTERNATIVES,
    )


def get_redis_client(url: Optional[str] = None) -> redis.Redis:
    """
    Get configured async Redis client for the slot lock store

    Returns:
        redis.asyncio.Redis: Configured client instance
    """
    return redis.from_url(
        url or REDIS_URL,
        encoding="utf-8",
        decode_responses=True,  # Automatically decode responses to strings
        socket_connect_timeout=5,  # 5 second connection timeout
        socket_timeout=5,  # 5 second operation timeout
        retry_on_timeout=True,  # Retry operations that timeout
        health_check_interval=30  # Health check every 30 seconds
    )

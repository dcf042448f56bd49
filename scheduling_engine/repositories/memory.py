"""
In-memory repository.

Used by tests and single-process deployments. Records are copied on the way in
and out so callers never share mutable state with the store, matching the
semantics of a real database round-trip.
"""

import asyncio
import logging
from datetime import date
from typing import Dict, Iterable, List, Optional

from ..constants import LeaveStatus
from ..exceptions import ConflictError, NotFoundError
from ..models import (
    Appointment,
    AppointmentFilter,
    BreakTime,
    Leave,
    Practitioner,
    RecurringSeries,
    SettingsCatalog,
    SpecialDate,
    WorkingHoursTemplate,
)
from .base import SchedulingRepository

logger = logging.getLogger(__name__)


class InMemorySchedulingRepository(SchedulingRepository):

    def __init__(self):
        self._practitioners: Dict[str, Practitioner] = {}
        self._working_hours: Dict[str, WorkingHoursTemplate] = {}
        self._special_dates: Dict[tuple, SpecialDate] = {}
        self._breaks: Dict[str, BreakTime] = {}
        self._leaves: Dict[str, Leave] = {}
        self._appointments: Dict[str, Appointment] = {}
        self._series: Dict[str, RecurringSeries] = {}
        self._settings = SettingsCatalog()
        self._write_lock = asyncio.Lock()

    # ----- seeding helpers (configuration CRUD lives outside the engine) -----

    def add_practitioner(self, practitioner: Practitioner) -> None:
        self._practitioners[practitioner.id] = practitioner.model_copy(deep=True)

    def set_working_hours(self, template: WorkingHoursTemplate) -> None:
        self._working_hours[template.practitioner_id] = template.model_copy(deep=True)

    def add_special_date(self, special_date: SpecialDate) -> None:
        # One override per practitioner and date; a new one replaces the old
        key = (special_date.practitioner_id, special_date.day)
        self._special_dates[key] = special_date.model_copy(deep=True)

    def add_break(self, break_time: BreakTime) -> None:
        self._breaks[break_time.id] = break_time.model_copy(deep=True)

    def set_settings_catalog(self, catalog: SettingsCatalog) -> None:
        self._settings = catalog.model_copy(deep=True)

    # ----- practitioners & availability configuration -----

    async def get_practitioner(self, practitioner_id: str) -> Optional[Practitioner]:
        practitioner = self._practitioners.get(practitioner_id)
        return practitioner.model_copy(deep=True) if practitioner else None

    async def find_practitioners_for_type(self, appointment_type_id: str) -> List[Practitioner]:
        return [
            p.model_copy(deep=True)
            for p in sorted(self._practitioners.values(), key=lambda p: p.id)
            if p.is_active and appointment_type_id in p.appointment_type_ids
        ]

    async def get_working_hours(self, practitioner_id: str) -> Optional[WorkingHoursTemplate]:
        template = self._working_hours.get(practitioner_id)
        return template.model_copy(deep=True) if template else None

    async def get_special_date(self, practitioner_id: str, day: date) -> Optional[SpecialDate]:
        special = self._special_dates.get((practitioner_id, day))
        return special.model_copy(deep=True) if special else None

    async def list_breaks(self, practitioner_id: str) -> List[BreakTime]:
        return [
            b.model_copy(deep=True)
            for b in self._breaks.values()
            if b.practitioner_id == practitioner_id
        ]

    async def list_leaves(
        self,
        practitioner_id: str,
        start_date: date,
        end_date: date,
        statuses: Optional[Iterable[LeaveStatus]] = None,
    ) -> List[Leave]:
        wanted = set(statuses) if statuses is not None else None
        leaves = [
            leave for leave in self._leaves.values()
            if leave.practitioner_id == practitioner_id
            and leave.start_date <= end_date
            and leave.end_date >= start_date
            and (wanted is None or leave.status in wanted)
        ]
        leaves.sort(key=lambda leave: (leave.start_date, leave.created_at, leave.id))
        return [leave.model_copy(deep=True) for leave in leaves]

    async def get_leave(self, leave_id: str) -> Optional[Leave]:
        leave = self._leaves.get(leave_id)
        return leave.model_copy(deep=True) if leave else None

    async def create_leave(self, leave: Leave) -> Leave:
        async with self._write_lock:
            self._leaves[leave.id] = leave.model_copy(deep=True)
        return leave.model_copy(deep=True)

    async def get_settings_catalog(self) -> SettingsCatalog:
        return self._settings.model_copy(deep=True)

    # ----- appointments -----

    async def create_appointment(self, appointment: Appointment) -> Appointment:
        async with self._write_lock:
            if appointment.id in self._appointments:
                raise ConflictError(f"Appointment {appointment.id} already exists", [appointment.id])
            self._appointments[appointment.id] = appointment.model_copy(deep=True)
        return appointment.model_copy(deep=True)

    async def get_appointment(self, appointment_id: str) -> Optional[Appointment]:
        appointment = self._appointments.get(appointment_id)
        return appointment.model_copy(deep=True) if appointment else None

    async def update_appointment(self, appointment: Appointment, expected_version: int) -> Appointment:
        async with self._write_lock:
            stored = self._appointments.get(appointment.id)
            if stored is None:
                raise NotFoundError("Appointment", appointment.id)
            if stored.version != expected_version:
                logger.warning(
                    "appointment.version_conflict",
                    extra={
                        "appointment_id": appointment.id,
                        "expected_version": expected_version,
                        "stored_version": stored.version,
                    },
                )
                raise ConflictError(
                    f"Appointment {appointment.id} was modified concurrently",
                    [appointment.id],
                )
            self._appointments[appointment.id] = appointment.model_copy(deep=True)
        return appointment.model_copy(deep=True)

    async def find_appointments(self, spec: AppointmentFilter) -> List[Appointment]:
        matches = [a for a in self._appointments.values() if spec.matches(a)]
        matches.sort(key=lambda a: (a.start, a.id))
        return [a.model_copy(deep=True) for a in matches]

    # ----- recurring series -----

    async def create_series(self, series: RecurringSeries) -> RecurringSeries:
        async with self._write_lock:
            self._series[series.id] = series.model_copy(deep=True)
        return series.model_copy(deep=True)

    async def get_series(self, series_id: str) -> Optional[RecurringSeries]:
        series = self._series.get(series_id)
        return series.model_copy(deep=True) if series else None

    async def update_series(self, series: RecurringSeries, expected_version: int) -> RecurringSeries:
        async with self._write_lock:
            stored = self._series.get(series.id)
            if stored is None:
                raise NotFoundError("Series", series.id)
            if stored.version != expected_version:
                raise ConflictError(f"Series {series.id} was modified concurrently", [series.id])
            self._series[series.id] = series.model_copy(deep=True)
        return series.model_copy(deep=True)

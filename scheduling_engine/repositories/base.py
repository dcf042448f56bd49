"""
Persistence contract for the scheduling engine.

The engine never talks to a database directly; it reads and writes through a
SchedulingRepository. Overlap queries are expressed as AppointmentFilter
objects so backends can translate them to their own query language (an index
on practitioner+start and patient+start is assumed).
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Iterable, List, Optional

from ..constants import LeaveStatus
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


class SchedulingRepository(ABC):
    """Durable storage for availability configuration, appointments and series."""

    # ----- practitioners & availability configuration -----

    @abstractmethod
    async def get_practitioner(self, practitioner_id: str) -> Optional[Practitioner]:
        ...

    @abstractmethod
    async def find_practitioners_for_type(self, appointment_type_id: str) -> List[Practitioner]:
        ...

    @abstractmethod
    async def get_working_hours(self, practitioner_id: str) -> Optional[WorkingHoursTemplate]:
        ...

    @abstractmethod
    async def get_special_date(self, practitioner_id: str, day: date) -> Optional[SpecialDate]:
        ...

    @abstractmethod
    async def list_breaks(self, practitioner_id: str) -> List[BreakTime]:
        ...

    @abstractmethod
    async def list_leaves(
        self,
        practitioner_id: str,
        start_date: date,
        end_date: date,
        statuses: Optional[Iterable[LeaveStatus]] = None,
    ) -> List[Leave]:
        """Leaves whose [start_date, end_date] intersects the given date range."""

    @abstractmethod
    async def get_leave(self, leave_id: str) -> Optional[Leave]:
        ...

    @abstractmethod
    async def create_leave(self, leave: Leave) -> Leave:
        ...

    @abstractmethod
    async def get_settings_catalog(self) -> SettingsCatalog:
        ...

    # ----- appointments -----

    @abstractmethod
    async def create_appointment(self, appointment: Appointment) -> Appointment:
        ...

    @abstractmethod
    async def get_appointment(self, appointment_id: str) -> Optional[Appointment]:
        ...

    @abstractmethod
    async def update_appointment(self, appointment: Appointment, expected_version: int) -> Appointment:
        """
        Compare-and-set write.

        Raises:
            NotFoundError: appointment does not exist
            ConflictError: stored version differs from expected_version
        """

    @abstractmethod
    async def find_appointments(self, spec: AppointmentFilter) -> List[Appointment]:
        """Appointments matching the filter, ordered by (start, id)."""

    # ----- recurring series -----

    @abstractmethod
    async def create_series(self, series: RecurringSeries) -> RecurringSeries:
        ...

    @abstractmethod
    async def get_series(self, series_id: str) -> Optional[RecurringSeries]:
        ...

    @abstractmethod
    async def update_series(self, series: RecurringSeries, expected_version: int) -> RecurringSeries:
        """Compare-and-set write with the same semantics as update_appointment."""

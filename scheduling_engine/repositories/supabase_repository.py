"""
Supabase-backed scheduling repository.

Tables (healthcare schema):
    practitioners                      id, name, timezone, is_active, appointment_type_ids[]
    practitioner_working_hours         practitioner_id, day_of_week, start_time, end_time, updated_at
    practitioner_special_dates         id, practitioner_id, day, is_available, start_time, end_time, reason
    practitioner_breaks                BreakTime columns
    practitioner_leaves                Leave columns
    appointment_type_settings          appointment_type_id, duration_minutes, buffer_minutes
    practitioner_appointment_settings  practitioner_id, appointment_type_id, duration_minutes, buffer_minutes
    appointments                       Appointment columns with start_time / end_time
    recurring_series                   RecurringSeries columns (rule and occurrences as jsonb)

Appointment and series updates are compare-and-set on the version column.
"""

import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from supabase import Client

from ..constants import LeaveStatus
from ..exceptions import ConflictError, NotFoundError
from ..models import (
    Appointment,
    AppointmentFilter,
    AppointmentTypeSettings,
    BreakTime,
    Leave,
    Practitioner,
    RecurringSeries,
    SettingsCatalog,
    SpecialDate,
    WorkingHoursEntry,
    WorkingHoursTemplate,
)
from .base import SchedulingRepository

logger = logging.getLogger(__name__)

SCHEMA = 'healthcare'


def appointment_to_row(appointment: Appointment) -> Dict[str, Any]:
    row = appointment.model_dump(mode="json", exclude={"start"})
    row["start_time"] = appointment.start.isoformat()
    row["end_time"] = appointment.end.isoformat()
    return row


def appointment_from_row(row: Dict[str, Any]) -> Appointment:
    data = dict(row)
    data["start"] = data.pop("start_time")
    data.pop("end_time", None)
    return Appointment.model_validate(data)


class SupabaseSchedulingRepository(SchedulingRepository):
    """
    Repository over the Supabase query builder.

    Uses the synchronous client like the rest of the service layer; calls are
    short single-table statements.
    """

    def __init__(self, supabase_client: Client):
        self.supabase = supabase_client

    def _table(self, name: str):
        return self.supabase.schema(SCHEMA).table(name)

    # ----- practitioners & availability configuration -----

    async def get_practitioner(self, practitioner_id: str) -> Optional[Practitioner]:
        result = self._table('practitioners').select('*').eq('id', practitioner_id).limit(1).execute()
        if not result.data:
            return None
        return Practitioner.model_validate(result.data[0])

    async def find_practitioners_for_type(self, appointment_type_id: str) -> List[Practitioner]:
        result = self._table('practitioners').select('*').eq(
            'is_active', True
        ).contains(
            'appointment_type_ids', [appointment_type_id]
        ).order('id').execute()
        return [Practitioner.model_validate(row) for row in result.data or []]

    async def get_working_hours(self, practitioner_id: str) -> Optional[WorkingHoursTemplate]:
        result = self._table('practitioner_working_hours').select('*').eq(
            'practitioner_id', practitioner_id
        ).order('day_of_week').execute()
        if not result.data:
            return None
        entries = [
            WorkingHoursEntry.model_validate({
                'day_of_week': row['day_of_week'],
                'start_time': row['start_time'],
                'end_time': row['end_time'],
                'updated_at': row.get('updated_at'),
            })
            for row in result.data
        ]
        return WorkingHoursTemplate(practitioner_id=practitioner_id, entries=entries)

    async def get_special_date(self, practitioner_id: str, day: date) -> Optional[SpecialDate]:
        result = self._table('practitioner_special_dates').select('*').eq(
            'practitioner_id', practitioner_id
        ).eq(
            'day', day.isoformat()
        ).limit(1).execute()
        if not result.data:
            return None
        return SpecialDate.model_validate(result.data[0])

    async def list_breaks(self, practitioner_id: str) -> List[BreakTime]:
        result = self._table('practitioner_breaks').select('*').eq(
            'practitioner_id', practitioner_id
        ).execute()
        return [BreakTime.model_validate(row) for row in result.data or []]

    async def list_leaves(
        self,
        practitioner_id: str,
        start_date: date,
        end_date: date,
        statuses: Optional[Iterable[LeaveStatus]] = None,
    ) -> List[Leave]:
        query = self._table('practitioner_leaves').select('*').eq(
            'practitioner_id', practitioner_id
        ).lte(
            'start_date', end_date.isoformat()
        ).gte(
            'end_date', start_date.isoformat()
        )
        if statuses is not None:
            query = query.in_('status', [LeaveStatus(s).value for s in statuses])
        result = query.order('start_date').order('created_at').execute()
        return [Leave.model_validate(row) for row in result.data or []]

    async def get_leave(self, leave_id: str) -> Optional[Leave]:
        result = self._table('practitioner_leaves').select('*').eq('id', leave_id).limit(1).execute()
        if not result.data:
            return None
        return Leave.model_validate(result.data[0])

    async def create_leave(self, leave: Leave) -> Leave:
        try:
            result = self._table('practitioner_leaves').insert(leave.model_dump(mode="json")).execute()
        except Exception as e:
            logger.error(f"Leave insert failed for practitioner {leave.practitioner_id}: {e}", exc_info=True)
            raise
        if not result.data:
            raise RuntimeError(f"Failed to create leave {leave.id}")
        return Leave.model_validate(result.data[0])

    async def get_settings_catalog(self) -> SettingsCatalog:
        type_rows = self._table('appointment_type_settings').select('*').execute().data or []
        override_rows = self._table('practitioner_appointment_settings').select('*').execute().data or []

        catalog = SettingsCatalog()
        for row in type_rows:
            catalog.type_defaults[row['appointment_type_id']] = AppointmentTypeSettings(
                duration_minutes=row['duration_minutes'],
                buffer_minutes=row.get('buffer_minutes') or 0,
            )
        for row in override_rows:
            per_practitioner = catalog.practitioner_overrides.setdefault(row['practitioner_id'], {})
            per_practitioner[row['appointment_type_id']] = AppointmentTypeSettings(
                duration_minutes=row['duration_minutes'],
                buffer_minutes=row.get('buffer_minutes') or 0,
            )
        return catalog

    # ----- appointments -----

    async def create_appointment(self, appointment: Appointment) -> Appointment:
        try:
            result = self._table('appointments').insert(appointment_to_row(appointment)).execute()
        except Exception as e:
            # Postgres unique_violation / exclusion_violation from the overlap constraint
            if '23505' in str(e) or '23P01' in str(e) or 'duplicate key' in str(e).lower():
                logger.warning(f"Appointment insert conflict for {appointment.id}: {e}")
                raise ConflictError("Appointment interval already taken", [appointment.id]) from e
            logger.error(f"Appointment insert error: {e}", exc_info=True)
            raise
        if not result.data:
            raise RuntimeError(f"Failed to create appointment {appointment.id}")
        return appointment_from_row(result.data[0])

    async def get_appointment(self, appointment_id: str) -> Optional[Appointment]:
        result = self._table('appointments').select('*').eq('id', appointment_id).limit(1).execute()
        if not result.data:
            return None
        return appointment_from_row(result.data[0])

    async def update_appointment(self, appointment: Appointment, expected_version: int) -> Appointment:
        result = self._table('appointments').update(
            appointment_to_row(appointment)
        ).eq(
            'id', appointment.id
        ).eq(
            'version', expected_version
        ).execute()

        if result.data:
            return appointment_from_row(result.data[0])

        if await self.get_appointment(appointment.id) is None:
            raise NotFoundError("Appointment", appointment.id)
        logger.warning(
            "appointment.version_conflict",
            extra={"appointment_id": appointment.id, "expected_version": expected_version},
        )
        raise ConflictError(f"Appointment {appointment.id} was modified concurrently", [appointment.id])

    async def find_appointments(self, spec: AppointmentFilter) -> List[Appointment]:
        query = self._table('appointments').select('*')

        if spec.practitioner_id is not None:
            query = query.eq('practitioner_id', spec.practitioner_id)
        if spec.patient_id is not None:
            query = query.eq('patient_id', spec.patient_id)
        if spec.series_id is not None:
            query = query.eq('series_id', spec.series_id)
        if spec.statuses is not None:
            query = query.in_('status', [s.value for s in spec.statuses])
        if spec.exclude_statuses:
            query = query.not_.in_('status', [s.value for s in spec.exclude_statuses])
        if spec.exclude_ids:
            query = query.not_.in_('id', spec.exclude_ids)
        if spec.overlaps is not None:
            # Half-open overlap: start < window.end AND end > window.start
            query = query.lt(
                'start_time', spec.overlaps.end.isoformat()
            ).gt(
                'end_time', spec.overlaps.start.isoformat()
            )

        result = query.order('start_time').order('id').execute()
        return [appointment_from_row(row) for row in result.data or []]

    # ----- recurring series -----

    async def create_series(self, series: RecurringSeries) -> RecurringSeries:
        result = self._table('recurring_series').insert(series.model_dump(mode="json")).execute()
        if not result.data:
            raise RuntimeError(f"Failed to create series {series.id}")
        return RecurringSeries.model_validate(result.data[0])

    async def get_series(self, series_id: str) -> Optional[RecurringSeries]:
        result = self._table('recurring_series').select('*').eq('id', series_id).limit(1).execute()
        if not result.data:
            return None
        return RecurringSeries.model_validate(result.data[0])

    async def update_series(self, series: RecurringSeries, expected_version: int) -> RecurringSeries:
        result = self._table('recurring_series').update(
            series.model_dump(mode="json")
        ).eq(
            'id', series.id
        ).eq(
            'version', expected_version
        ).execute()

        if result.data:
            return RecurringSeries.model_validate(result.data[0])

        if await self.get_series(series.id) is None:
            raise NotFoundError("Series", series.id)
        raise ConflictError(f"Series {series.id} was modified concurrently", [series.id])

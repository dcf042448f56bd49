"""
Test fixtures for the scheduling engine
"""

from datetime import date, datetime, time, timedelta, timezone

from scheduling_engine.models import (
    Appointment,
    AppointmentTypeSettings,
    Practitioner,
    SettingsCatalog,
    WorkingHoursEntry,
    WorkingHoursTemplate,
)

# Sample test data
TEST_PRACTITIONER_ID = 'dr-smith'
OTHER_PRACTITIONER_ID = 'dr-jones'
TEST_PATIENT_ID = 'patient-001'
OTHER_PATIENT_ID = 'patient-002'
CONSULT = 'consult'
THERAPY = 'therapy'

# 2030-03-04 is a Monday; the test clock starts on the Friday before it
MONDAY = date(2030, 3, 4)
CLOCK_START = datetime(2030, 3, 1, 8, 0, tzinfo=timezone.utc)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    """UTC datetime on the given day"""
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def weekday(offset: int) -> date:
    """Date `offset` days after the reference Monday"""
    return MONDAY + timedelta(days=offset)


# Fixture functions
def create_test_practitioner(**kwargs):
    """Create a test practitioner"""
    return Practitioner(
        id=kwargs.get('id', TEST_PRACTITIONER_ID),
        name=kwargs.get('name', 'Dr. Smith'),
        timezone=kwargs.get('timezone', 'UTC'),
        is_active=kwargs.get('is_active', True),
        appointment_type_ids=kwargs.get('appointment_type_ids', [CONSULT, THERAPY]),
    )


def create_test_working_hours(practitioner_id=TEST_PRACTITIONER_ID, **kwargs):
    """Monday to Friday, 09:00-17:00 unless overridden"""
    start = kwargs.get('start_time', time(9, 0))
    end = kwargs.get('end_time', time(17, 0))
    days = kwargs.get('days', range(5))
    return WorkingHoursTemplate(
        practitioner_id=practitioner_id,
        entries=[WorkingHoursEntry(day_of_week=d, start_time=start, end_time=end) for d in days],
    )


def create_test_settings_catalog(**kwargs):
    """
    Consult: 30 minutes, no buffer. Therapy: 60 minutes plus 15 minutes buffer.
    Unknown types fall back to the policy defaults.
    """
    return SettingsCatalog(
        type_defaults=kwargs.get('type_defaults', {
            CONSULT: AppointmentTypeSettings(duration_minutes=30, buffer_minutes=0),
            THERAPY: AppointmentTypeSettings(duration_minutes=60, buffer_minutes=15),
        }),
        practitioner_overrides=kwargs.get('practitioner_overrides', {}),
    )


def create_test_appointment(**kwargs):
    """Create a test appointment (not persisted)"""
    return Appointment(
        practitioner_id=kwargs.get('practitioner_id', TEST_PRACTITIONER_ID),
        patient_id=kwargs.get('patient_id', TEST_PATIENT_ID),
        appointment_type_id=kwargs.get('appointment_type_id', CONSULT),
        start=kwargs.get('start', at(MONDAY, 10)),
        duration_minutes=kwargs.get('duration_minutes', 30),
        status=kwargs.get('status', 'scheduled'),
        series_id=kwargs.get('series_id'),
    )

"""Data models for the scheduling engine."""
from scheduling_engine.models.appointments import (
    AlternativeSlot,
    Appointment,
    AppointmentFilter,
    AppointmentTypeSettings,
    SettingsCatalog,
    Slot,
    SlotLock,
    TransitionRecord,
)
from scheduling_engine.models.availability import (
    BreakTime,
    Holiday,
    Leave,
    Practitioner,
    SpecialDate,
    WorkingHoursEntry,
    WorkingHoursTemplate,
)
from scheduling_engine.models.commands import (
    BookAppointment,
    CascadeDecision,
    CreateAppointment,
    CreateSeries,
    RescheduleAppointment,
    SeriesCancellation,
    SeriesChanges,
    SeriesUpdate,
    TransitionAppointment,
    UpdateAppointmentDetails,
)
from scheduling_engine.models.events import AuditEvent, NotificationEvent
from scheduling_engine.models.series import RecurrenceRule, RecurringSeries, SeriesOccurrence

__all__ = [
    "AlternativeSlot",
    "Appointment",
    "AppointmentFilter",
    "AppointmentTypeSettings",
    "AuditEvent",
    "BookAppointment",
    "BreakTime",
    "CascadeDecision",
    "CreateAppointment",
    "CreateSeries",
    "Holiday",
    "Leave",
    "NotificationEvent",
    "Practitioner",
    "RecurrenceRule",
    "RecurringSeries",
    "RescheduleAppointment",
    "SeriesCancellation",
    "SeriesChanges",
    "SeriesOccurrence",
    "SeriesUpdate",
    "SettingsCatalog",
    "Slot",
    "SlotLock",
    "SpecialDate",
    "TransitionAppointment",
    "TransitionRecord",
    "UpdateAppointmentDetails",
    "WorkingHoursEntry",
    "WorkingHoursTemplate",
]

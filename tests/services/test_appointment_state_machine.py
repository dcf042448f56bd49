"""
Tests for the appointment state machine
"""

import pytest

from scheduling_engine.constants import VALID_TRANSITIONS, AppointmentStatus, AuditEventType
from scheduling_engine.exceptions import ConflictError, InvalidTransitionError, NotFoundError
from scheduling_engine.models import (
    CreateAppointment,
    RescheduleAppointment,
    TransitionAppointment,
    UpdateAppointmentDetails,
)
from scheduling_engine.services.appointment_state_machine import AppointmentStateMachine, can_transition

from tests.fixtures import CONSULT, MONDAY, TEST_PATIENT_ID, TEST_PRACTITIONER_ID, THERAPY, at


@pytest.fixture
def machine(repository, clock, audit_sink):
    return AppointmentStateMachine(repository, clock, audit_sink)


@pytest.fixture
async def appointment(machine):
    return await machine.create(CreateAppointment(
        practitioner_id=TEST_PRACTITIONER_ID,
        patient_id=TEST_PATIENT_ID,
        appointment_type_id=CONSULT,
        start=at(MONDAY, 10),
        duration_minutes=30,
        actor='front-desk',
    ))


class TestTransitionTable:

    def test_terminal_states_have_no_exits(self):
        for status in (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW):
            assert VALID_TRANSITIONS[status] == []

    def test_walk_in_skips_confirmation(self):
        assert can_transition(AppointmentStatus.SCHEDULED, AppointmentStatus.CHECKED_IN)
        assert not can_transition(AppointmentStatus.SCHEDULED, AppointmentStatus.COMPLETED)
        assert not can_transition(AppointmentStatus.CONFIRMED, AppointmentStatus.SCHEDULED)


class TestLifecycle:

    async def test_create(self, appointment, audit_sink):
        assert appointment.status == AppointmentStatus.SCHEDULED
        assert appointment.version == 1
        assert appointment.history[0].to_status == AppointmentStatus.SCHEDULED
        assert audit_sink.of_type(AuditEventType.APPOINTMENT_CREATED)

    async def test_full_path(self, machine, appointment, clock):
        confirmed = await machine.confirm(appointment.id)
        clock.advance(minutes=5)
        await machine.check_in(appointment.id)
        await machine.start(appointment.id)
        completed = await machine.complete(appointment.id)

        assert completed.status == AppointmentStatus.COMPLETED
        assert completed.confirmed_at == confirmed.confirmed_at
        assert completed.checked_in_at > completed.confirmed_at
        assert completed.completed_at is not None
        assert completed.version == 5
        assert [h.to_status for h in completed.history] == [
            AppointmentStatus.SCHEDULED,
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.CHECKED_IN,
            AppointmentStatus.IN_PROGRESS,
            AppointmentStatus.COMPLETED,
        ]

    @pytest.mark.parametrize("finish", ["complete", "cancel", "mark_no_show"])
    async def test_terminal_states_reject_every_transition(self, machine, appointment, finish):
        if finish == "complete":
            await machine.check_in(appointment.id)
            await machine.start(appointment.id)
        await getattr(machine, finish)(appointment.id)

        for target in AppointmentStatus:
            with pytest.raises(InvalidTransitionError):
                await machine.transition(TransitionAppointment(appointment_id=appointment.id, target=target))

    async def test_invalid_transition(self, machine, appointment):
        with pytest.raises(InvalidTransitionError) as exc_info:
            await machine.complete(appointment.id)
        assert exc_info.value.current == AppointmentStatus.SCHEDULED.value
        assert exc_info.value.target == AppointmentStatus.COMPLETED.value

    async def test_cancel_records_reason(self, machine, appointment, audit_sink):
        cancelled = await machine.cancel(appointment.id, reason='patient request', actor='patient')

        assert cancelled.status == AppointmentStatus.CANCELLED
        assert cancelled.cancellation_reason == 'patient request'
        assert cancelled.cancelled_at is not None
        assert cancelled.history[-1].actor == 'patient'
        event = audit_sink.of_type(AuditEventType.APPOINTMENT_TRANSITIONED)[-1]
        assert event.details['to'] == AppointmentStatus.CANCELLED.value

    async def test_unknown_appointment(self, machine):
        with pytest.raises(NotFoundError):
            await machine.confirm('missing')

    async def test_stale_version_conflicts(self, machine, appointment, repository):
        await machine.confirm(appointment.id)
        stale = appointment.model_copy(update={"notes": "stale", "version": appointment.version + 1})

        with pytest.raises(ConflictError):
            await repository.update_appointment(stale, expected_version=appointment.version)


class TestUpdateDetails:

    async def test_update_while_scheduled(self, machine, appointment):
        updated = await machine.update_details(UpdateAppointmentDetails(
            appointment_id=appointment.id, appointment_type_id=THERAPY, duration_minutes=60, notes='x-ray'
        ))
        assert updated.appointment_type_id == THERAPY
        assert updated.duration_minutes == 60
        assert updated.version == appointment.version + 1

    async def test_update_after_check_in_rejected(self, machine, appointment):
        await machine.check_in(appointment.id)
        with pytest.raises(InvalidTransitionError):
            await machine.update_details(UpdateAppointmentDetails(appointment_id=appointment.id, notes='late'))

    async def test_empty_update_is_noop(self, machine, appointment):
        unchanged = await machine.update_details(UpdateAppointmentDetails(appointment_id=appointment.id))
        assert unchanged.version == appointment.version


class TestReschedule:

    async def test_reschedule_links_both_records(self, machine, appointment):
        original, replacement = await machine.reschedule(RescheduleAppointment(
            appointment_id=appointment.id, new_start=at(MONDAY, 15), reason='clash'
        ))

        assert original.status == AppointmentStatus.CANCELLED
        assert original.rescheduled_to_id == replacement.id
        assert replacement.rescheduled_from_id == original.id
        assert replacement.status == AppointmentStatus.SCHEDULED
        assert replacement.start == at(MONDAY, 15)
        assert replacement.duration_minutes == appointment.duration_minutes

    async def test_reschedule_from_terminal_state_rejected(self, machine, appointment):
        await machine.mark_no_show(appointment.id)
        with pytest.raises(InvalidTransitionError):
            await machine.reschedule(RescheduleAppointment(appointment_id=appointment.id, new_start=at(MONDAY, 15)))

    async def test_detach_from_series(self, machine, appointment):
        detached = await machine.detach_from_series(appointment.id)
        assert detached.detached_from_series
        again = await machine.detach_from_series(appointment.id)
        assert again.version == detached.version

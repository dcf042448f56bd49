"""
Tests for the emergency cascade planner
"""

from datetime import time

import pytest

from scheduling_engine import create_scheduling_engine
from scheduling_engine.config import SchedulingPolicy
from scheduling_engine.constants import (
    AppointmentStatus,
    AuditEventType,
    CascadeAction,
    CascadeStepStatus,
    LeaveStatus,
    NotificationKind,
)
from scheduling_engine.exceptions import NotFoundError
from scheduling_engine.intervals import Interval
from scheduling_engine.models import CascadeDecision, CreateAppointment, Leave, SpecialDate

from tests.fixtures import (
    CONSULT,
    MONDAY,
    OTHER_PRACTITIONER_ID,
    TEST_PRACTITIONER_ID,
    at,
    weekday,
)

WINDOW = Interval(start=at(MONDAY, 9), end=at(MONDAY, 15))
RESCHEDULE = CascadeDecision(action=CascadeAction.RESCHEDULE)
CANCEL = CascadeDecision(action=CascadeAction.CANCEL)


@pytest.fixture
async def affected(engine):
    """Three bookings inside the window and one after it"""
    booked = []
    for i, hour in enumerate((10, 11, 14, 16)):
        result = await engine.booking.book(CreateAppointment(
            practitioner_id=TEST_PRACTITIONER_ID,
            patient_id=f'patient-{i}',
            appointment_type_id=CONSULT,
            start=at(MONDAY, hour),
            duration_minutes=30,
        ), notify=False)
        booked.append(result.appointment)
    return booked[:3]


class TestDeclareEmergency:

    async def test_plan_lists_affected_in_order(self, engine, affected):
        plan = await engine.cascade.declare_emergency(TEST_PRACTITIONER_ID, WINDOW, reason='illness')

        assert plan.appointment_ids == [a.id for a in affected]
        assert plan.leave.status == LeaveStatus.EMERGENCY
        for item in plan.items:
            assert item.alternatives
            assert all(alt.start >= WINDOW.end for alt in item.alternatives)
            assert len(item.alternatives) <= engine.policy.cascade_max_alternatives

    async def test_availability_drops_immediately(self, engine, affected):
        await engine.cascade.declare_emergency(TEST_PRACTITIONER_ID, WINDOW)
        assert await engine.resolver.resolve_day(TEST_PRACTITIONER_ID, MONDAY) == [
            Interval(start=at(MONDAY, 15), end=at(MONDAY, 17))
        ]

    async def test_declaring_twice_reuses_leave(self, engine, affected, repository, audit_sink):
        first = await engine.cascade.declare_emergency(TEST_PRACTITIONER_ID, WINDOW)
        second = await engine.cascade.declare_emergency(TEST_PRACTITIONER_ID, WINDOW)

        assert first.leave.id == second.leave.id
        assert len(await repository.list_leaves(TEST_PRACTITIONER_ID, MONDAY, MONDAY)) == 1
        assert len(audit_sink.of_type(AuditEventType.LEAVE_RECORDED)) == 1

    async def test_same_practitioner_alternatives_first(self, engine, affected):
        plan = await engine.cascade.declare_emergency(
            TEST_PRACTITIONER_ID, WINDOW, include_other_practitioners=True
        )

        alternatives = plan.items[0].alternatives
        same = [a.same_practitioner for a in alternatives]
        assert same == sorted(same, reverse=True)
        assert alternatives[0].practitioner_id == TEST_PRACTITIONER_ID

    async def test_other_practitioner_covers_when_horizon_is_closed(
        self, engine, affected, repository, lock_store, clock
    ):
        """Dr. Smith is out Monday and closed Tuesday; Dr. Jones offers the alternatives"""
        narrow = create_scheduling_engine(
            repository=repository,
            lock_store=lock_store,
            clock=clock,
            policy=SchedulingPolicy(cascade_search_horizon_days=1),
        )
        repository.add_special_date(SpecialDate(practitioner_id=TEST_PRACTITIONER_ID, day=weekday(1)))
        whole_day = Interval(start=at(MONDAY, 9), end=at(MONDAY, 17))

        plan = await narrow.cascade.declare_emergency(
            TEST_PRACTITIONER_ID, whole_day, include_other_practitioners=True
        )
        assert len(plan.items) == 4
        alternatives = plan.items[0].alternatives
        assert alternatives
        assert {a.practitioner_id for a in alternatives} == {OTHER_PRACTITIONER_ID}
        assert not any(a.same_practitioner for a in alternatives)

        report = await narrow.cascade.apply(plan, {plan.items[0].appointment.id: RESCHEDULE})
        replacement = await narrow.state_machine.get(report.steps[0].replacement_id)
        assert replacement.practitioner_id == OTHER_PRACTITIONER_ID
        assert replacement.start == at(weekday(1), 9)

    async def test_unknown_practitioner(self, engine):
        with pytest.raises(NotFoundError):
            await engine.cascade.declare_emergency('nobody', WINDOW)


class TestApply:

    async def test_reenumeration_after_partial_apply(self, engine, affected):
        """Rescheduling one of three affected appointments leaves two to handle"""
        plan = await engine.cascade.declare_emergency(TEST_PRACTITIONER_ID, WINDOW)

        report = await engine.cascade.apply(plan, {affected[0].id: RESCHEDULE})

        assert [s.status for s in report.steps] == [
            CascadeStepStatus.RESCHEDULED,
            CascadeStepStatus.SKIPPED,
            CascadeStepStatus.SKIPPED,
        ]
        remaining = await engine.cascade.enumerate_affected(plan.leave.id)
        assert [a.id for a in remaining] == [a.id for a in affected[1:]]

    async def test_first_free_alternative_is_used(self, engine, affected, notifier):
        plan = await engine.cascade.declare_emergency(TEST_PRACTITIONER_ID, WINDOW)

        report = await engine.cascade.apply(plan, {a.id: RESCHEDULE for a in affected})

        replacements = [await engine.state_machine.get(s.replacement_id) for s in report.steps]
        # 16:00 was already booked before the emergency
        assert [r.start for r in replacements] == [at(MONDAY, 15), at(MONDAY, 15, 30), at(MONDAY, 16, 30)]
        assert [e.kind for e in notifier.events] == [NotificationKind.RESCHEDULED] * 3
        assert await engine.cascade.enumerate_affected(plan.leave.id) == []

    async def test_chosen_alternative(self, engine, affected):
        plan = await engine.cascade.declare_emergency(TEST_PRACTITIONER_ID, WINDOW)
        decision = CascadeDecision(action=CascadeAction.RESCHEDULE, new_start=at(weekday(1), 9))

        report = await engine.cascade.apply(plan, {affected[0].id: decision})

        replacement = await engine.state_machine.get(report.steps[0].replacement_id)
        assert replacement.start == at(weekday(1), 9)

    async def test_failures_are_isolated(self, engine, affected, audit_sink):
        plan = await engine.cascade.declare_emergency(TEST_PRACTITIONER_ID, WINDOW)
        outside_hours = CascadeDecision(action=CascadeAction.RESCHEDULE, new_start=at(MONDAY, 20))

        report = await engine.cascade.apply(plan, {
            affected[0].id: outside_hours,
            affected[1].id: CANCEL,
            affected[2].id: RESCHEDULE,
        })

        assert [s.status for s in report.steps] == [
            CascadeStepStatus.FAILED,
            CascadeStepStatus.CANCELLED,
            CascadeStepStatus.RESCHEDULED,
        ]
        assert len(report.failed) == 1
        still_there = await engine.state_machine.get(affected[0].id)
        assert still_there.status == AppointmentStatus.SCHEDULED
        steps = audit_sink.of_type(AuditEventType.CASCADE_STEP)
        assert [e.outcome for e in steps] == ["failure", "success", "success"]

    async def test_cancel_sends_one_notification(self, engine, affected, notifier):
        plan = await engine.cascade.declare_emergency(TEST_PRACTITIONER_ID, WINDOW, reason='illness')

        await engine.cascade.apply(plan, {affected[0].id: CANCEL})

        events = notifier.for_appointment(affected[0].id)
        assert [e.kind for e in events] == [NotificationKind.CANCELLED]
        assert events[0].payload['leave_id'] == plan.leave.id

    async def test_cooperative_interruption_and_resume(self, engine, affected):
        plan = await engine.cascade.declare_emergency(TEST_PRACTITIONER_ID, WINDOW)
        decisions = {a.id: CANCEL for a in affected}
        allowed = iter([True, False])

        report = await engine.cascade.apply(plan, decisions, should_continue=lambda: next(allowed))

        assert report.interrupted
        assert len(report.steps) == 1

        resumed = await engine.cascade.plan_for_leave(plan.leave.id)
        assert resumed.appointment_ids == [a.id for a in affected[1:]]

        # Replaying the stale plan skips what is already resolved
        replay = await engine.cascade.apply(plan, decisions)
        assert [s.status for s in replay.steps] == [
            CascadeStepStatus.SKIPPED,
            CascadeStepStatus.CANCELLED,
            CascadeStepStatus.CANCELLED,
        ]


class TestPlanForLeave:

    async def test_approved_leave_triggers_enumeration(self, engine, affected, repository):
        leave = await repository.create_leave(Leave(
            practitioner_id=TEST_PRACTITIONER_ID,
            start_date=MONDAY,
            end_date=MONDAY,
            start_time=time(10),
            end_time=time(12),
            status=LeaveStatus.APPROVED,
        ))

        plan = await engine.cascade.plan_for_leave(leave.id)

        assert plan.appointment_ids == [affected[0].id, affected[1].id]

    async def test_pending_leave_has_nothing_to_cascade(self, engine, affected, repository):
        leave = await repository.create_leave(Leave(
            practitioner_id=TEST_PRACTITIONER_ID, start_date=MONDAY, end_date=MONDAY, status=LeaveStatus.PENDING
        ))

        plan = await engine.cascade.plan_for_leave(leave.id)

        assert plan.items == []

    async def test_unknown_leave(self, engine):
        with pytest.raises(NotFoundError):
            await engine.cascade.enumerate_affected('missing')



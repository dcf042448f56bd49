"""
Tests for practitioner and patient conflict detection
"""

import pytest

from scheduling_engine.config import SchedulingPolicy
from scheduling_engine.constants import AppointmentStatus
from scheduling_engine.exceptions import ConflictError, is_retryable
from scheduling_engine.intervals import Interval
from scheduling_engine.services.conflict_detector import ConflictDetector

from tests.fixtures import (
    MONDAY,
    OTHER_PATIENT_ID,
    OTHER_PRACTITIONER_ID,
    TEST_PATIENT_ID,
    TEST_PRACTITIONER_ID,
    THERAPY,
    at,
    create_test_appointment,
)


def half_hour(hour, minute=0):
    return Interval.of(at(MONDAY, hour, minute), 30)


@pytest.fixture
async def booked(repository):
    """Dr. Smith with patient-001 at 10:00-10:30"""
    return await repository.create_appointment(create_test_appointment(start=at(MONDAY, 10)))


class TestPractitionerConflicts:

    async def test_overlap_blocks(self, repository, booked):
        detector = ConflictDetector(repository)

        with pytest.raises(ConflictError) as exc_info:
            await detector.assert_bookable(TEST_PRACTITIONER_ID, OTHER_PATIENT_ID, half_hour(10, 15))

        assert exc_info.value.conflicting_ids == [booked.id]
        assert is_retryable(exc_info.value)

    async def test_touching_interval_is_free(self, repository, booked):
        detector = ConflictDetector(repository)
        report = await detector.assert_bookable(TEST_PRACTITIONER_ID, OTHER_PATIENT_ID, half_hour(10, 30))
        assert not report.is_blocking

    async def test_other_practitioner_unaffected(self, repository, booked):
        detector = ConflictDetector(repository)
        conflicts = await detector.check_practitioner(OTHER_PRACTITIONER_ID, half_hour(10))
        assert conflicts == []

    async def test_symmetric_buffer(self, repository, booked):
        """With a 10 minute buffer, 10:30 and 09:30 both sit too close to 10:00-10:30"""
        detector = ConflictDetector(repository, SchedulingPolicy(practitioner_buffer_minutes=10))

        assert await detector.check_practitioner(TEST_PRACTITIONER_ID, half_hour(10, 30))
        assert await detector.check_practitioner(TEST_PRACTITIONER_ID, half_hour(9, 30))
        assert await detector.check_practitioner(TEST_PRACTITIONER_ID, half_hour(10, 40)) == []

    async def test_type_buffer_follows_existing_appointment(self, repository):
        """Therapy at 10:00-11:00 keeps 15 minutes of buffer after it and none before"""
        therapy = await repository.create_appointment(create_test_appointment(
            start=at(MONDAY, 10), duration_minutes=60, appointment_type_id=THERAPY
        ))
        detector = ConflictDetector(repository)

        assert [a.id for a in await detector.check_practitioner(TEST_PRACTITIONER_ID, half_hour(11))] == [therapy.id]
        assert await detector.check_practitioner(TEST_PRACTITIONER_ID, half_hour(11, 15)) == []
        assert await detector.check_practitioner(TEST_PRACTITIONER_ID, half_hour(9, 30)) == []

    async def test_type_and_practitioner_buffers_add_up(self, repository):
        await repository.create_appointment(create_test_appointment(
            start=at(MONDAY, 10), duration_minutes=60, appointment_type_id=THERAPY
        ))
        detector = ConflictDetector(repository, SchedulingPolicy(practitioner_buffer_minutes=10))

        assert await detector.check_practitioner(TEST_PRACTITIONER_ID, half_hour(11, 20))
        assert await detector.check_practitioner(TEST_PRACTITIONER_ID, half_hour(11, 25)) == []
        assert await detector.check_practitioner(TEST_PRACTITIONER_ID, half_hour(9, 25))

    async def test_hold_covers_trailing_buffers(self, repository):
        detector = ConflictDetector(repository, SchedulingPolicy(practitioner_buffer_minutes=10))

        held = await detector.hold_for(TEST_PRACTITIONER_ID, THERAPY, Interval.of(at(MONDAY, 10), 60))

        assert held == Interval(start=at(MONDAY, 10), end=at(MONDAY, 11, 25))

    async def test_cancelled_and_no_show_do_not_block(self, repository):
        await repository.create_appointment(create_test_appointment(
            start=at(MONDAY, 10), status=AppointmentStatus.CANCELLED
        ))
        await repository.create_appointment(create_test_appointment(
            start=at(MONDAY, 10), status=AppointmentStatus.NO_SHOW
        ))
        detector = ConflictDetector(repository)
        assert await detector.check_practitioner(TEST_PRACTITIONER_ID, half_hour(10)) == []

    async def test_excluded_ids(self, repository, booked):
        detector = ConflictDetector(repository)
        conflicts = await detector.check_practitioner(TEST_PRACTITIONER_ID, half_hour(10), exclude_ids=[booked.id])
        assert conflicts == []


class TestPatientConflicts:

    async def test_patient_conflict_is_advisory_by_default(self, repository, booked):
        """Same patient with another practitioner an hour later is reported, not blocked"""
        detector = ConflictDetector(repository)

        report = await detector.assert_bookable(OTHER_PRACTITIONER_ID, TEST_PATIENT_ID, half_hour(11))

        assert not report.is_blocking
        assert [a.id for a in report.patient_conflicts] == [booked.id]
        assert len(report.advisories) == 1
        assert report.conflicting_ids == []

    async def test_patient_conflict_outside_window(self, repository, booked):
        detector = ConflictDetector(repository, SchedulingPolicy(patient_conflict_window_minutes=30))
        report = await detector.evaluate(OTHER_PRACTITIONER_ID, TEST_PATIENT_ID, half_hour(11, 30))
        assert report.patient_conflicts == []

    async def test_blocking_policy(self, repository, booked):
        detector = ConflictDetector(repository, SchedulingPolicy(patient_conflict_blocking=True))

        with pytest.raises(ConflictError) as exc_info:
            await detector.assert_bookable(OTHER_PRACTITIONER_ID, TEST_PATIENT_ID, half_hour(11))

        assert exc_info.value.conflicting_ids == [booked.id]

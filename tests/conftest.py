"""
Pytest configuration and shared fixtures for scheduling engine tests
"""

import pytest

from scheduling_engine import ManualClock, create_scheduling_engine
from scheduling_engine.config import SchedulingPolicy
from scheduling_engine.repositories import InMemorySchedulingRepository
from scheduling_engine.services import (
    InMemoryLockStore,
    RecordingAuditSink,
    RecordingNotificationDispatcher,
)

from tests.fixtures import (
    CLOCK_START,
    OTHER_PRACTITIONER_ID,
    create_test_practitioner,
    create_test_settings_catalog,
    create_test_working_hours,
)


@pytest.fixture
def clock():
    """Manual clock starting on the Friday before the reference Monday"""
    return ManualClock(CLOCK_START)


@pytest.fixture
def policy():
    return SchedulingPolicy()


@pytest.fixture
def repository():
    """In-memory repository with two weekday practitioners and the test settings catalog"""
    repo = InMemorySchedulingRepository()
    repo.add_practitioner(create_test_practitioner())
    repo.add_practitioner(create_test_practitioner(id=OTHER_PRACTITIONER_ID, name='Dr. Jones'))
    repo.set_working_hours(create_test_working_hours())
    repo.set_working_hours(create_test_working_hours(OTHER_PRACTITIONER_ID))
    repo.set_settings_catalog(create_test_settings_catalog())
    return repo


@pytest.fixture
def lock_store(clock):
    return InMemoryLockStore(clock)


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def notifier():
    return RecordingNotificationDispatcher()


@pytest.fixture
def engine(repository, lock_store, clock, policy, notifier, audit_sink):
    """Fully wired in-process engine"""
    return create_scheduling_engine(
        repository=repository,
        lock_store=lock_store,
        clock=clock,
        policy=policy,
        notifier=notifier,
        audit_sink=audit_sink,
    )

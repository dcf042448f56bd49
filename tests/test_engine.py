"""
Tests for engine wiring and policy validation
"""

import pytest
from pydantic import ValidationError

from scheduling_engine import ManualClock, create_scheduling_engine
from scheduling_engine.config import SchedulingPolicy, load_scheduling_policy
from scheduling_engine.repositories import InMemorySchedulingRepository
from scheduling_engine.services import InMemoryLockStore

from tests.fixtures import CLOCK_START


class TestCreateSchedulingEngine:

    def test_defaults_are_in_process(self):
        engine = create_scheduling_engine(clock=ManualClock(CLOCK_START))

        assert isinstance(engine.repository, InMemorySchedulingRepository)
        assert isinstance(engine.lock_manager.store, InMemoryLockStore)

    def test_services_share_collaborators(self, engine, repository, clock):
        assert engine.repository is repository
        assert engine.booking.state_machine is engine.state_machine
        assert engine.slot_generator.resolver is engine.resolver
        assert engine.clock is clock

    def test_lock_sweep_job_uses_engine_manager(self, engine):
        assert engine.lock_sweep_job().lock_manager is engine.lock_manager


class TestSchedulingPolicy:

    def test_environment_defaults(self):
        policy = load_scheduling_policy()
        assert policy.slot_lock_ttl_seconds == 60
        assert not policy.patient_conflict_blocking

    @pytest.mark.parametrize("field,value", [
        ("slot_lock_ttl_seconds", 5),
        ("practitioner_buffer_minutes", -1),
        ("cascade_max_alternatives", 0),
    ])
    def test_out_of_range_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            SchedulingPolicy(**{field: value})

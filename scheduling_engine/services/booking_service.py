"""
Booking Service

Runs the booking data flow end to end:

    availability -> slots -> (client picks) -> hold -> final conflict check
    -> lock verify -> create -> release

Series expansion and the emergency cascade go through the same commit path
per occurrence / per affected appointment.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional, Tuple

from ..clock import Clock, SystemClock
from ..constants import NotificationKind
from ..exceptions import ConflictError, LockExpiredError
from ..intervals import Interval
from ..models import (
    Appointment,
    BookAppointment,
    CreateAppointment,
    RescheduleAppointment,
    SlotLock,
    UpdateAppointmentDetails,
)
from .appointment_state_machine import AppointmentStateMachine
from .availability_resolver import AvailabilityResolver
from .conflict_detector import ConflictDetector, ConflictReport
from .notifications import NotificationDispatcher, build_notification, safe_dispatch
from .slot_generator import SlotGenerator, SlotSequence
from .slot_lock_manager import SlotLockManager

logger = logging.getLogger(__name__)


@dataclass
class BookingResult:
    appointment: Appointment
    report: ConflictReport = field(default_factory=ConflictReport)

    @property
    def advisories(self) -> List[str]:
        return self.report.advisories


class BookingService:

    def __init__(
        self,
        resolver: AvailabilityResolver,
        slot_generator: SlotGenerator,
        conflict_detector: ConflictDetector,
        lock_manager: SlotLockManager,
        state_machine: AppointmentStateMachine,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Optional[Clock] = None,
    ):
        self.resolver = resolver
        self.slot_generator = slot_generator
        self.conflict_detector = conflict_detector
        self.lock_manager = lock_manager
        self.state_machine = state_machine
        self.notifier = notifier
        self.clock = clock or SystemClock()

    async def list_available_slots(
        self,
        practitioner_id: str,
        start_date: date,
        end_date: Optional[date] = None,
        appointment_type_id: Optional[str] = None,
        duration_minutes: Optional[int] = None,
        stride_minutes: Optional[int] = None,
    ) -> SlotSequence:
        return await self.slot_generator.slots_for_range(
            practitioner_id,
            start_date,
            end_date or start_date,
            appointment_type_id=appointment_type_id,
            duration_minutes=duration_minutes,
            stride_minutes=stride_minutes,
        )

    async def hold_slot(
        self,
        practitioner_id: str,
        start: datetime,
        appointment_type_id: Optional[str] = None,
        duration_minutes: Optional[int] = None,
        requested_lock_id: Optional[str] = None,
    ) -> SlotLock:
        """
        Hold a slot picked by the client.

        Raises:
            NotFoundError: unknown practitioner
            ConflictError: slot outside open hours or already held
        """
        if duration_minutes is None:
            settings = await self.slot_generator.resolve_settings(practitioner_id, appointment_type_id)
            duration_minutes = settings.duration_minutes
        interval = Interval.of(start, duration_minutes)
        await self._require_open(practitioner_id, interval)
        held = await self._hold_interval(practitioner_id, appointment_type_id, interval)
        return await self.lock_manager.acquire(
            practitioner_id, held.start, held.end, requested_lock_id
        )

    async def confirm_booking(self, command: BookAppointment) -> BookingResult:
        """
        Commit a booking for a held slot and release the hold.

        The command must carry the appointment type the slot was held for.

        Raises:
            LockExpiredError: the hold is gone or does not match the interval
            ConflictError: the interval became unavailable
        """
        create = CreateAppointment(**command.model_dump(exclude={"lock_id"}))
        try:
            held = await self._hold_interval(create.practitioner_id, create.appointment_type_id, create.interval)
            result = await self._commit(create, command.lock_id, held)
        finally:
            await self.lock_manager.release(command.lock_id)
        await safe_dispatch(self.notifier, build_notification(result.appointment, NotificationKind.BOOKED))
        return result

    async def book(self, command: CreateAppointment, notify: bool = True) -> BookingResult:
        """Hold, validate and commit in one call."""
        held = await self._hold_interval(command.practitioner_id, command.appointment_type_id, command.interval)
        async with self.lock_manager.hold(command.practitioner_id, held.start, held.end) as lock:
            result = await self._commit(command, lock.lock_id, held)
        if notify:
            await safe_dispatch(self.notifier, build_notification(result.appointment, NotificationKind.BOOKED))
        return result

    async def reschedule(self, command: RescheduleAppointment, notify: bool = True) -> Tuple[Appointment, Appointment]:
        """
        Move an appointment through a fresh interval claim.

        Returns:
            (cancelled original, replacement)
        """
        current = await self.state_machine.get(command.appointment_id)
        practitioner_id = command.new_practitioner_id or current.practitioner_id
        interval = Interval.of(command.new_start, command.new_duration_minutes or current.duration_minutes)
        held = await self._hold_interval(practitioner_id, current.appointment_type_id, interval)

        if command.lock_id:
            try:
                original, replacement = await self._reschedule_under_lock(
                    command, current, practitioner_id, interval, held, command.lock_id
                )
            finally:
                await self.lock_manager.release(command.lock_id)
        else:
            async with self.lock_manager.hold(practitioner_id, held.start, held.end) as lock:
                original, replacement = await self._reschedule_under_lock(
                    command, current, practitioner_id, interval, held, lock.lock_id
                )

        if notify:
            await safe_dispatch(self.notifier, build_notification(
                replacement,
                NotificationKind.RESCHEDULED,
                {"previous_appointment_id": original.id, "previous_start": original.start.isoformat()},
            ))
        return original, replacement

    async def cancel(
        self,
        appointment_id: str,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
        notify: bool = True,
    ) -> Appointment:
        cancelled = await self.state_machine.cancel(appointment_id, reason=reason, actor=actor)
        if notify:
            await safe_dispatch(self.notifier, build_notification(
                cancelled, NotificationKind.CANCELLED, {"reason": reason}
            ))
        return cancelled

    async def update_details(self, command: UpdateAppointmentDetails) -> Appointment:
        """Edit details; a longer duration is conflict-checked first."""
        current = await self.state_machine.get(command.appointment_id)
        if command.duration_minutes and command.duration_minutes > current.duration_minutes:
            interval = Interval.of(current.start, command.duration_minutes)
            await self._require_open(current.practitioner_id, interval)
            held = await self._hold_interval(current.practitioner_id, current.appointment_type_id, interval)
            async with self.lock_manager.hold(current.practitioner_id, held.start, held.end):
                await self.conflict_detector.assert_bookable(
                    current.practitioner_id, current.patient_id, interval, exclude_ids=[current.id]
                )
                return await self.state_machine.update_details(command)
        return await self.state_machine.update_details(command)

    async def _commit(
        self,
        command: CreateAppointment,
        lock_id: str,
        held: Interval,
    ) -> BookingResult:
        interval = command.interval
        await self._require_open(command.practitioner_id, interval)
        report = await self.conflict_detector.assert_bookable(
            command.practitioner_id, command.patient_id, interval
        )
        await self._require_lock(command.practitioner_id, held, lock_id)
        appointment = await self.state_machine.create(command)
        return BookingResult(appointment=appointment, report=report)

    async def _reschedule_under_lock(self, command, current, practitioner_id, interval, held, lock_id):
        await self._require_open(practitioner_id, interval)
        await self.conflict_detector.assert_bookable(
            practitioner_id, current.patient_id, interval, exclude_ids=[current.id]
        )
        await self._require_lock(practitioner_id, held, lock_id)
        return await self.state_machine.reschedule(command)

    async def _hold_interval(
        self, practitioner_id: str, appointment_type_id: Optional[str], interval: Interval
    ) -> Interval:
        return await self.conflict_detector.hold_for(practitioner_id, appointment_type_id, interval)

    async def _require_lock(self, practitioner_id: str, held: Interval, lock_id: str) -> None:
        if not await self.lock_manager.verify(practitioner_id, held.start, held.end, lock_id):
            logger.warning(
                "booking.lock_expired",
                extra={"practitioner_id": practitioner_id, "lock_id": lock_id},
            )
            raise LockExpiredError(lock_id)

    async def _require_open(self, practitioner_id: str, interval: Interval) -> None:
        if not await self.resolver.is_open(practitioner_id, interval):
            raise ConflictError(
                f"Interval {interval.start.isoformat()} - {interval.end.isoformat()} is outside "
                f"the open hours of practitioner {practitioner_id}"
            )

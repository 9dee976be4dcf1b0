"""Appointment state transitions.

Every mutation is version checked: callers pass the version they last read
and a mismatch comes back as VERSION_CONFLICT. Lost races are returned to the
caller, never retried here, since retrying the same interval would only race
again.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from appointment_service.models.appointment import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_NO_SHOW,
    Appointment,
)
from appointment_service.scheduling.errors import ErrorCode, Rejection
from appointment_service.scheduling.store import AppointmentStore
from appointment_service.scheduling.validator import SlotValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingOutcome:
    appointment: Appointment | None = None
    rejection: Rejection | None = None

    @property
    def ok(self) -> bool:
        return self.rejection is None

    @classmethod
    def success(cls, appointment: Appointment) -> 'BookingOutcome':
        return cls(appointment=appointment)

    @classmethod
    def failure(cls, code: ErrorCode, message: str) -> 'BookingOutcome':
        return cls(rejection=Rejection(code, message))

    @classmethod
    def rejected(cls, rejection: Rejection) -> 'BookingOutcome':
        return cls(rejection=rejection)


class BookingCoordinator:
    def __init__(
        self,
        store: AppointmentStore,
        validator: SlotValidator | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.validator = validator or SlotValidator(store)
        self.clock = clock

    def book(
        self,
        patient_id: int,
        doctor_id: int,
        department: str,
        start: datetime,
        end: datetime,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> BookingOutcome:
        now = now or self.clock()
        rejection = self.validator.validate(doctor_id, start, end, now)
        if rejection is not None:
            self._log_rejection('Booking for doctor %s', doctor_id, rejection)
            return BookingOutcome.rejected(rejection)

        doctor = self.store.get_active_doctor(doctor_id)
        if doctor is None:
            return BookingOutcome.failure(ErrorCode.DOCTOR_NOT_FOUND, f'Doctor {doctor_id} not found or inactive.')

        appointment = self.store.insert_exclusive(
            patient_id=patient_id,
            doctor_id=doctor_id,
            department=department,
            slot_start=start,
            slot_end=end,
            max_daily=SlotValidator.max_daily(doctor),
            notes=notes,
        )
        if appointment is None:
            logger.warning(
                'Booking for doctor %s at %s lost a concurrent race',
                doctor_id, start.isoformat(),
            )
            return BookingOutcome.failure(
                ErrorCode.CONFLICT,
                'This time was booked by another request. Refresh availability and try again.',
            )

        logger.info(
            'Appointment %s booked for doctor %s at %s',
            appointment.appointment_id, doctor_id, start.isoformat(),
        )
        return BookingOutcome.success(appointment)

    def reschedule(
        self,
        appointment_id: int,
        expected_version: int,
        start: datetime,
        end: datetime,
        now: datetime | None = None,
    ) -> BookingOutcome:
        now = now or self.clock()
        current, rejection = self._load_for_update(appointment_id, expected_version)
        if rejection is not None:
            return BookingOutcome.rejected(rejection)

        rejection = self.validator.validate(
            current.doctor_id,
            start,
            end,
            now,
            exclude_appointment_id=appointment_id,
        )
        if rejection is not None:
            self._log_rejection('Reschedule of appointment %s', appointment_id, rejection)
            return BookingOutcome.rejected(rejection)

        updated = self.store.update_versioned(
            appointment_id,
            expected_version,
            doctor_id=current.doctor_id,
            values={
                'slot_start': start,
                'slot_end': end,
                'reschedule_count': Appointment.reschedule_count + 1,
            },
            interval=(start, end),
        )
        if updated is None:
            return BookingOutcome.rejected(self._explain_lost_update(appointment_id, expected_version))

        logger.info(
            'Appointment %s rescheduled to %s (version %s)',
            appointment_id, start.isoformat(), updated.version,
        )
        return BookingOutcome.success(updated)

    def cancel(self, appointment_id: int, expected_version: int, now: datetime | None = None) -> BookingOutcome:
        return self._transition(appointment_id, expected_version, STATUS_CANCELLED, now, require_elapsed=False)

    def complete(self, appointment_id: int, expected_version: int, now: datetime | None = None) -> BookingOutcome:
        return self._transition(appointment_id, expected_version, STATUS_COMPLETED, now, require_elapsed=True)

    def mark_no_show(self, appointment_id: int, expected_version: int, now: datetime | None = None) -> BookingOutcome:
        return self._transition(appointment_id, expected_version, STATUS_NO_SHOW, now, require_elapsed=True)

    def _transition(
        self,
        appointment_id: int,
        expected_version: int,
        target_status: str,
        now: datetime | None,
        require_elapsed: bool,
    ) -> BookingOutcome:
        now = now or self.clock()
        current, rejection = self._load_for_update(appointment_id, expected_version)
        if rejection is not None:
            return BookingOutcome.rejected(rejection)

        if require_elapsed and current.slot_end > now:
            return BookingOutcome.failure(
                ErrorCode.INVALID_STATE,
                f'Appointment {appointment_id} cannot be marked {target_status} before it ends.',
            )

        updated = self.store.update_versioned(
            appointment_id,
            expected_version,
            doctor_id=current.doctor_id,
            values={'status': target_status},
        )
        if updated is None:
            return BookingOutcome.rejected(self._explain_lost_update(appointment_id, expected_version))

        logger.info('Appointment %s is now %s (version %s)', appointment_id, target_status, updated.version)
        return BookingOutcome.success(updated)

    def _load_for_update(
        self,
        appointment_id: int,
        expected_version: int,
    ) -> tuple[Appointment | None, Rejection | None]:
        current = self.store.get(appointment_id)
        if current is None:
            return None, Rejection(ErrorCode.APPOINTMENT_NOT_FOUND, f'Appointment {appointment_id} not found.')
        if current.is_terminal:
            return None, Rejection(
                ErrorCode.INVALID_STATE,
                f'Appointment {appointment_id} is {current.status} and can no longer change.',
            )
        if current.version != expected_version:
            return None, self._version_conflict(appointment_id, expected_version, current.version)
        return current, None

    def _explain_lost_update(self, appointment_id: int, expected_version: int) -> Rejection:
        """Work out why a version-checked update matched no row."""
        current = self.store.get(appointment_id)
        if current is None:
            return Rejection(ErrorCode.APPOINTMENT_NOT_FOUND, f'Appointment {appointment_id} not found.')
        if current.version != expected_version:
            return self._version_conflict(appointment_id, expected_version, current.version)
        if current.is_terminal:
            return Rejection(
                ErrorCode.INVALID_STATE,
                f'Appointment {appointment_id} is {current.status} and can no longer change.',
            )

        logger.warning('Update of appointment %s lost a concurrent race', appointment_id)
        return Rejection(
            ErrorCode.CONFLICT,
            'This time was booked by another request. Refresh availability and try again.',
        )

    @staticmethod
    def _log_rejection(subject: str, subject_id: int, rejection: Rejection) -> None:
        # Validation failures are routine.
        level = logging.INFO if rejection.is_validation else logging.WARNING
        logger.log(level, subject + ' rejected: %s (%s)', subject_id, rejection.code.value, rejection.message)

    @staticmethod
    def _version_conflict(appointment_id: int, expected_version: int, stored_version: int) -> Rejection:
        logger.warning(
            'Stale write to appointment %s: expected version %s, stored %s',
            appointment_id, expected_version, stored_version,
        )
        return Rejection(
            ErrorCode.VERSION_CONFLICT,
            f'Appointment {appointment_id} was modified (version {stored_version}). Re-read it and retry.',
        )

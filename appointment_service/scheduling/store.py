"""Appointment persistence.

``AppointmentStore`` is the only code that reads or writes appointment rows.
Writes that claim a doctor's time are single conditional statements, so the
overlap check and the write commit together; PostgreSQL additionally enforces
the exclusion constraint created by ``ensure_appointment_schema``.
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta

from sqlalchemy import DateTime, Integer, String, Text, func, insert, literal, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from appointment_service.core import config
from appointment_service.database import OVERLAP_CONSTRAINT_NAME
from appointment_service.models.appointment import STATUS_SCHEDULED, Appointment
from appointment_service.models.doctor import AvailabilityOverride, Doctor, DoctorSchedule
from appointment_service.scheduling.errors import StorageTimeout, StorageUnavailable

logger = logging.getLogger(__name__)

appointments_table = Appointment.__table__

PG_EXCLUSION_VIOLATION = '23P01'
PG_QUERY_CANCELED = '57014'


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def _pgcode(exc: SQLAlchemyError) -> str | None:
    return getattr(getattr(exc, 'orig', None), 'pgcode', None)


def _is_overlap_violation(exc: IntegrityError) -> bool:
    return _pgcode(exc) == PG_EXCLUSION_VIOLATION or OVERLAP_CONSTRAINT_NAME in str(exc.orig)


def _overlapping_scheduled(doctor_id: int, start: datetime, end: datetime, exclude_id: int | None = None):
    other = appointments_table.alias('other')
    query = select(other.c.appointment_id).where(
        other.c.doctor_id == doctor_id,
        other.c.status == STATUS_SCHEDULED,
        other.c.slot_start < end,
        other.c.slot_end > start,
    )
    if exclude_id is not None:
        query = query.where(other.c.appointment_id != exclude_id)
    return query.exists()


class AppointmentStore:
    def __init__(self, db: Session, timeout_ms: int | None = None):
        self.db = db
        self.timeout_ms = config.STORAGE_TIMEOUT_MS if timeout_ms is None else timeout_ms

    @contextmanager
    def _storage_call(self, operation: str):
        try:
            self._apply_deadline()
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            if _pgcode(exc) == PG_QUERY_CANCELED:
                logger.warning('Storage deadline of %sms expired during %s', self.timeout_ms, operation)
                raise StorageTimeout(f'{operation} exceeded the storage deadline.') from exc
            logger.exception('Appointment store call failed during %s', operation)
            raise StorageUnavailable(f'{operation} failed.') from exc

    def _apply_deadline(self) -> None:
        if not self.timeout_ms or self.db.get_bind().dialect.name != 'postgresql':
            return
        # SET LOCAL lasts until the surrounding transaction ends.
        self.db.execute(text(f'SET LOCAL statement_timeout = {int(self.timeout_ms)}'))

    # Doctor-management data (read-only).

    def get_active_doctor(self, doctor_id: int) -> Doctor | None:
        with self._storage_call('doctor lookup'):
            return self.db.query(Doctor).filter(
                Doctor.doctor_id == doctor_id,
                Doctor.is_active.is_(True),
            ).first()

    def templates_for(self, doctor_id: int, day_of_week: int) -> list[DoctorSchedule]:
        with self._storage_call('schedule lookup'):
            return self.db.query(DoctorSchedule).filter(
                DoctorSchedule.doctor_id == doctor_id,
                DoctorSchedule.day_of_week == day_of_week,
                DoctorSchedule.is_active.is_(True),
            ).order_by(DoctorSchedule.start_time.asc()).all()

    def override_for(self, doctor_id: int, day: date) -> AvailabilityOverride | None:
        with self._storage_call('override lookup'):
            return self.db.query(AvailabilityOverride).filter(
                AvailabilityOverride.doctor_id == doctor_id,
                AvailabilityOverride.date == day,
            ).first()

    # Appointment reads.

    def get(self, appointment_id: int) -> Appointment | None:
        with self._storage_call('appointment lookup'):
            return self.db.get(Appointment, appointment_id, populate_existing=True)

    def list_appointments(
        self,
        *,
        patient_id: int | None = None,
        doctor_id: int | None = None,
        status: str | None = None,
        day: date | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[Appointment], int]:
        with self._storage_call('appointment listing'):
            query = self.db.query(Appointment)
            if patient_id is not None:
                query = query.filter(Appointment.patient_id == patient_id)
            if doctor_id is not None:
                query = query.filter(Appointment.doctor_id == doctor_id)
            if status is not None:
                query = query.filter(Appointment.status == status)
            if day is not None:
                day_start, day_end = day_bounds(day)
                query = query.filter(Appointment.slot_start >= day_start, Appointment.slot_start < day_end)

            total = query.count()
            rows = query.order_by(
                Appointment.slot_start.asc(),
                Appointment.appointment_id.asc(),
            ).offset(offset).limit(limit).all()
            return rows, total

    def scheduled_intervals(
        self,
        doctor_id: int,
        start: datetime,
        end: datetime,
        exclude_id: int | None = None,
    ) -> list[tuple[datetime, datetime]]:
        with self._storage_call('booked interval lookup'):
            query = self.db.query(Appointment.slot_start, Appointment.slot_end).filter(
                Appointment.doctor_id == doctor_id,
                Appointment.status == STATUS_SCHEDULED,
                Appointment.slot_start < end,
                Appointment.slot_end > start,
            )
            if exclude_id is not None:
                query = query.filter(Appointment.appointment_id != exclude_id)
            return [(row.slot_start, row.slot_end) for row in query.order_by(Appointment.slot_start.asc())]

    def count_scheduled_on(self, doctor_id: int, day: date, exclude_id: int | None = None) -> int:
        day_start, day_end = day_bounds(day)
        with self._storage_call('daily count'):
            query = self.db.query(func.count(Appointment.appointment_id)).filter(
                Appointment.doctor_id == doctor_id,
                Appointment.status == STATUS_SCHEDULED,
                Appointment.slot_start >= day_start,
                Appointment.slot_start < day_end,
            )
            if exclude_id is not None:
                query = query.filter(Appointment.appointment_id != exclude_id)
            return query.scalar() or 0

    # Guarded writes.

    def insert_exclusive(
        self,
        *,
        patient_id: int,
        doctor_id: int,
        department: str,
        slot_start: datetime,
        slot_end: datetime,
        max_daily: int,
        notes: str | None = None,
    ) -> Appointment | None:
        """Insert a SCHEDULED appointment unless the doctor's time is already taken.

        Returns None when another SCHEDULED appointment overlaps the interval
        or the doctor's daily cap was reached at commit time.
        """
        now = datetime.now()
        day_start, day_end = day_bounds(slot_start.date())
        peer = appointments_table.alias('peer')
        booked_that_day = select(func.count(peer.c.appointment_id)).where(
            peer.c.doctor_id == doctor_id,
            peer.c.status == STATUS_SCHEDULED,
            peer.c.slot_start >= day_start,
            peer.c.slot_start < day_end,
        ).scalar_subquery()

        row = select(
            literal(patient_id, Integer()),
            literal(doctor_id, Integer()),
            literal(department, String()),
            literal(slot_start, DateTime()),
            literal(slot_end, DateTime()),
            literal(STATUS_SCHEDULED, String()),
            literal(0, Integer()),
            literal(notes, Text()),
            literal(1, Integer()),
            literal(now, DateTime()),
            literal(now, DateTime()),
        ).where(
            ~_overlapping_scheduled(doctor_id, slot_start, slot_end),
            booked_that_day < max_daily,
        )
        statement = insert(appointments_table).from_select(
            [
                'patient_id', 'doctor_id', 'department', 'slot_start', 'slot_end', 'status',
                'reschedule_count', 'notes', 'version', 'created_at', 'updated_at',
            ],
            row,
        ).returning(appointments_table.c.appointment_id)

        with self._storage_call('appointment insert'):
            try:
                appointment_id = self.db.execute(statement).scalar_one_or_none()
            except IntegrityError as exc:
                if not _is_overlap_violation(exc):
                    raise
                self.db.rollback()
                logger.info('Exclusion constraint rejected insert for doctor %s', doctor_id)
                return None

            if appointment_id is None:
                self.db.rollback()
                return None

            self.db.commit()
            return self.db.get(Appointment, appointment_id, populate_existing=True)

    def update_versioned(
        self,
        appointment_id: int,
        expected_version: int,
        *,
        doctor_id: int,
        values: dict,
        interval: tuple[datetime, datetime] | None = None,
    ) -> Appointment | None:
        """Apply ``values`` to a SCHEDULED appointment still at ``expected_version``.

        When ``interval`` is given the update also requires that no other
        SCHEDULED appointment of the doctor overlaps it. Returns None when no
        row matched.
        """
        conditions = [
            appointments_table.c.appointment_id == appointment_id,
            appointments_table.c.version == expected_version,
            appointments_table.c.status == STATUS_SCHEDULED,
        ]
        if interval is not None:
            start, end = interval
            conditions.append(~_overlapping_scheduled(doctor_id, start, end, exclude_id=appointment_id))

        statement = update(appointments_table).where(*conditions).values(
            version=appointments_table.c.version + 1,
            updated_at=datetime.now(),
            **values,
        )

        with self._storage_call('appointment update'):
            try:
                result = self.db.execute(statement)
            except IntegrityError as exc:
                if not _is_overlap_violation(exc):
                    raise
                self.db.rollback()
                logger.info('Exclusion constraint rejected update of appointment %s', appointment_id)
                return None

            if result.rowcount != 1:
                self.db.rollback()
                return None

            self.db.commit()
            return self.db.get(Appointment, appointment_id, populate_existing=True)

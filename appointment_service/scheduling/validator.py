from datetime import datetime, timedelta

from appointment_service.core import config
from appointment_service.scheduling.errors import DoctorNotFound, ErrorCode, Rejection
from appointment_service.scheduling.resolver import AvailabilityResolver
from appointment_service.scheduling.store import AppointmentStore


class SlotValidator:
    """Read-only checks that a requested interval can be booked.

    ``validate`` returns None when the interval is acceptable, otherwise the
    first failing rule as a ``Rejection``.
    """

    def __init__(
        self,
        store: AppointmentStore,
        resolver: AvailabilityResolver | None = None,
        min_lead_minutes: int | None = None,
    ):
        self.store = store
        self.resolver = resolver or AvailabilityResolver(store)
        self.min_lead = timedelta(
            minutes=config.MIN_BOOKING_LEAD_MINUTES if min_lead_minutes is None else min_lead_minutes
        )

    def validate(
        self,
        doctor_id: int,
        start: datetime,
        end: datetime,
        now: datetime,
        exclude_appointment_id: int | None = None,
    ) -> Rejection | None:
        if start >= end:
            return Rejection(ErrorCode.INVALID_INTERVAL, 'Appointment start must be before its end.')

        if start < now + self.min_lead:
            lead_minutes = int(self.min_lead.total_seconds() // 60)
            if not lead_minutes:
                return Rejection(ErrorCode.LEAD_TIME_VIOLATION, 'Appointments must be scheduled in the future.')
            return Rejection(
                ErrorCode.LEAD_TIME_VIOLATION,
                f'Appointments must start at least {lead_minutes} minutes from now.',
            )

        day = start.date()
        try:
            slots = self.resolver.resolve(doctor_id, day, exclude_appointment_id=exclude_appointment_id)
        except DoctorNotFound as exc:
            return Rejection(ErrorCode.DOCTOR_NOT_FOUND, str(exc))

        if not any(slot.contains(start, end) for slot in slots):
            return Rejection(ErrorCode.SLOT_UNAVAILABLE, 'The requested time is not available for this doctor.')

        doctor = self.store.get_active_doctor(doctor_id)
        if doctor is None:
            return Rejection(ErrorCode.DOCTOR_NOT_FOUND, str(DoctorNotFound(doctor_id)))

        booked_today = self.store.count_scheduled_on(doctor_id, day, exclude_id=exclude_appointment_id)
        if booked_today >= self.max_daily(doctor):
            return Rejection(
                ErrorCode.DAILY_CAPACITY_EXCEEDED,
                f'Doctor {doctor_id} has no remaining appointments on {day.isoformat()}.',
            )

        return None

    @staticmethod
    def max_daily(doctor) -> int:
        if doctor.max_daily_appointments is None:
            return config.DEFAULT_MAX_DAILY_APPOINTMENTS
        return doctor.max_daily_appointments

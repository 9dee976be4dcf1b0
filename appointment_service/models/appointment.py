"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, String, Text

from appointment_service.database import Base

STATUS_SCHEDULED = 'SCHEDULED'
STATUS_COMPLETED = 'COMPLETED'
STATUS_CANCELLED = 'CANCELLED'
STATUS_NO_SHOW = 'NO_SHOW'

APPOINTMENT_STATUSES = (STATUS_SCHEDULED, STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW)
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW})


class Appointment(Base):
    """A patient booked into one doctor's time interval."""
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint('slot_start < slot_end', name='ck_appointments_interval'),
        CheckConstraint(
            "status IN ('SCHEDULED', 'COMPLETED', 'CANCELLED', 'NO_SHOW')",
            name='ck_appointments_status',
        ),
        Index('idx_appointments_patient', 'patient_id'),
        Index('idx_appointments_doctor', 'doctor_id'),
        Index('idx_appointments_status', 'status'),
        Index('idx_appointments_slot', 'slot_start', 'slot_end'),
        Index('idx_appointments_department', 'department'),
    )

    appointment_id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, nullable=False)
    doctor_id = Column(Integer, nullable=False)
    department = Column(String(100), nullable=False)
    slot_start = Column(DateTime, nullable=False)
    slot_end = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default=STATUS_SCHEDULED)
    reschedule_count = Column(Integer, nullable=False, default=0)
    notes = Column(Text)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

"""Doctor schedule model definitions.

These tables belong to the doctor-management service. The scheduling engine
only reads them.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Time,
    UniqueConstraint,
)

from appointment_service.database import Base


class Doctor(Base):
    """A doctor who can be booked."""
    __tablename__ = "doctors"

    doctor_id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    department = Column(String(100), nullable=False)
    specialization = Column(String(100))
    is_active = Column(Boolean, nullable=False, default=True)
    max_daily_appointments = Column(Integer, nullable=False, default=20)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now)


class DoctorSchedule(Base):
    """Recurring weekly availability; day_of_week 0 is Sunday."""
    __tablename__ = "doctor_schedules"
    __table_args__ = (
        CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='ck_doctor_schedules_day'),
        UniqueConstraint('doctor_id', 'day_of_week', 'start_time', 'end_time'),
    )

    schedule_id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.doctor_id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_duration = Column(Integer, nullable=False, default=30)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.now)


class AvailabilityOverride(Base):
    """Adds or removes availability for one doctor on one date."""
    __tablename__ = "doctor_availability_overrides"
    __table_args__ = (
        UniqueConstraint('doctor_id', 'date'),
    )

    override_id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.doctor_id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(Time)
    end_time = Column(Time)
    is_available = Column(Boolean, nullable=False)
    reason = Column(String(255))
    created_at = Column(DateTime, default=datetime.now)

    @property
    def has_time_range(self) -> bool:
        return self.start_time is not None and self.end_time is not None

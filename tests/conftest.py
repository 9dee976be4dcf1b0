import os
from datetime import date, datetime, time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from appointment_service.database import Base  # noqa: E402
from appointment_service.models.appointment import STATUS_SCHEDULED, Appointment  # noqa: E402
from appointment_service.models.doctor import AvailabilityOverride, Doctor, DoctorSchedule  # noqa: E402

# 2031-01-06 is a Monday; stored day_of_week 1.
MONDAY = date(2031, 1, 6)
SUNDAY = date(2031, 1, 5)
NOW = datetime(2031, 1, 1, 8, 0)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute))


@pytest.fixture
def db():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def make_doctor(db):
    def _make_doctor(
        templates=((1, time(9, 0), time(12, 0), 30),),
        max_daily_appointments: int = 20,
        is_active: bool = True,
        department: str = 'Cardiology',
    ) -> Doctor:
        doctor = Doctor(
            name='Dr. Rivera',
            department=department,
            specialization='General',
            is_active=is_active,
            max_daily_appointments=max_daily_appointments,
        )
        db.add(doctor)
        db.flush()
        for day_of_week, start_time, end_time, slot_duration in templates:
            db.add(DoctorSchedule(
                doctor_id=doctor.doctor_id,
                day_of_week=day_of_week,
                start_time=start_time,
                end_time=end_time,
                slot_duration=slot_duration,
            ))
        db.commit()
        return doctor

    return _make_doctor


@pytest.fixture
def add_override(db):
    def _add_override(doctor_id: int, day: date, is_available: bool, start_time=None, end_time=None):
        override = AvailabilityOverride(
            doctor_id=doctor_id,
            date=day,
            start_time=start_time,
            end_time=end_time,
            is_available=is_available,
            reason='test',
        )
        db.add(override)
        db.commit()
        return override

    return _add_override


@pytest.fixture
def add_appointment(db):
    def _add_appointment(doctor_id: int, start: datetime, end: datetime, status: str = STATUS_SCHEDULED):
        appointment = Appointment(
            patient_id=42,
            doctor_id=doctor_id,
            department='Cardiology',
            slot_start=start,
            slot_end=end,
            status=status,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _add_appointment

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from appointment_service.models.appointment import STATUS_CANCELLED, STATUS_COMPLETED
from appointment_service.routes.appointment_routes import (
    BookAppointmentRequest,
    RescheduleAppointmentRequest,
    TransitionAppointmentRequest,
    book_appointment,
    cancel_appointment,
    complete_appointment,
    get_appointment,
    list_appointments,
    mark_no_show,
    reschedule_appointment,
)
from appointment_service.routes.dependencies import storage_error
from appointment_service.scheduling.errors import StorageTimeout, StorageUnavailable
from conftest import MONDAY, at


@pytest.fixture(autouse=True)
def skip_schema_bootstrap(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('appointment_service.routes.appointment_routes.ensure_database_ready', lambda: None)


def book_request(doctor, start, end, **overrides) -> BookAppointmentRequest:
    payload = {
        'patient_id': 7,
        'doctor_id': doctor.doctor_id,
        'department': doctor.department,
        'slot_start': start,
        'slot_end': end,
    }
    payload.update(overrides)
    return BookAppointmentRequest(**payload)


def list_all(db, **filters):
    params = {
        'patient_id': None,
        'doctor_id': None,
        'appointment_status': None,
        'day': None,
        'page': 1,
        'limit': 10,
    }
    params.update(filters)
    return list_appointments(db=db, **params)


def test_book_request_normalizes_fields() -> None:
    request = BookAppointmentRequest(
        patient_id=1,
        doctor_id=2,
        department='  Cardiology ',
        slot_start=datetime(2031, 1, 6, 9, 0),
        slot_end=datetime(2031, 1, 6, 9, 30),
        notes='   ',
    )

    assert request.department == 'Cardiology'
    assert request.notes is None


def test_book_request_converts_aware_times_to_naive_local() -> None:
    aware = datetime(2031, 1, 6, 9, 0, tzinfo=timezone.utc)

    request = BookAppointmentRequest(
        patient_id=1,
        doctor_id=2,
        department='Cardiology',
        slot_start=aware,
        slot_end=aware + timedelta(minutes=30),
    )

    assert request.slot_start.tzinfo is None
    assert request.slot_start == aware.astimezone().replace(tzinfo=None)


@pytest.mark.parametrize(
    'overrides',
    [
        {'department': '   '},
        {'patient_id': 0},
        {'notes': 'x' * 1001},
        {'unexpected': 'field'},
    ],
)
def test_book_request_rejects_invalid_payloads(overrides) -> None:
    payload = {
        'patient_id': 1,
        'doctor_id': 2,
        'department': 'Cardiology',
        'slot_start': datetime(2031, 1, 6, 9, 0),
        'slot_end': datetime(2031, 1, 6, 9, 30),
    }
    payload.update(overrides)

    with pytest.raises(ValidationError):
        BookAppointmentRequest(**payload)


def test_transition_request_requires_positive_version() -> None:
    with pytest.raises(ValidationError):
        TransitionAppointmentRequest(expected_version=0)


def test_book_appointment_returns_created_row(db, make_doctor) -> None:
    doctor = make_doctor()

    appointment = book_appointment(
        data=book_request(doctor, at(MONDAY, 9), at(MONDAY, 9, 30), notes='Chest pain'),
        db=db,
        timeout_ms=None,
    )

    assert appointment.version == 1
    assert appointment.status == 'SCHEDULED'
    assert appointment.notes == 'Chest pain'


def test_book_appointment_maps_validation_rejection_to_400(db, make_doctor) -> None:
    doctor = make_doctor()

    with pytest.raises(HTTPException) as exception_info:
        book_appointment(data=book_request(doctor, at(MONDAY, 14), at(MONDAY, 14, 30)), db=db, timeout_ms=None)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['code'] == 'SLOT_UNAVAILABLE'
    assert exception_info.value.detail['retryable'] is False


def test_book_appointment_for_unknown_doctor_is_404(db) -> None:
    request = BookAppointmentRequest(
        patient_id=1,
        doctor_id=999,
        department='Cardiology',
        slot_start=at(MONDAY, 9),
        slot_end=at(MONDAY, 9, 30),
    )

    with pytest.raises(HTTPException) as exception_info:
        book_appointment(data=request, db=db, timeout_ms=None)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail['code'] == 'DOCTOR_NOT_FOUND'


def test_book_appointment_in_the_past_is_rejected(db, make_doctor) -> None:
    doctor = make_doctor()
    yesterday = datetime.now().replace(second=0, microsecond=0) - timedelta(days=1)

    with pytest.raises(HTTPException) as exception_info:
        book_appointment(data=book_request(doctor, yesterday, yesterday + timedelta(minutes=30)), db=db, timeout_ms=None)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['code'] == 'LEAD_TIME_VIOLATION'


def test_reschedule_with_stale_version_is_409(db, make_doctor) -> None:
    doctor = make_doctor()
    booked = book_appointment(data=book_request(doctor, at(MONDAY, 9), at(MONDAY, 9, 30)), db=db, timeout_ms=None)
    appointment_id = booked.appointment_id

    moved = reschedule_appointment(
        appointment_id=appointment_id,
        data=RescheduleAppointmentRequest(expected_version=1, slot_start=at(MONDAY, 10), slot_end=at(MONDAY, 10, 30)),
        db=db,
        timeout_ms=None,
    )
    assert moved.version == 2
    assert moved.reschedule_count == 1

    with pytest.raises(HTTPException) as exception_info:
        reschedule_appointment(
            appointment_id=appointment_id,
            data=RescheduleAppointmentRequest(
                expected_version=1,
                slot_start=at(MONDAY, 11),
                slot_end=at(MONDAY, 11, 30),
            ),
            db=db,
            timeout_ms=None,
        )

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['code'] == 'VERSION_CONFLICT'
    assert exception_info.value.detail['retryable'] is True


def test_cancel_then_cancel_again_is_invalid_state(db, make_doctor) -> None:
    doctor = make_doctor()
    booked = book_appointment(data=book_request(doctor, at(MONDAY, 9), at(MONDAY, 9, 30)), db=db, timeout_ms=None)
    appointment_id = booked.appointment_id

    cancelled = cancel_appointment(
        appointment_id=appointment_id,
        data=TransitionAppointmentRequest(expected_version=1),
        db=db,
        timeout_ms=None,
    )
    assert cancelled.status == STATUS_CANCELLED

    with pytest.raises(HTTPException) as exception_info:
        cancel_appointment(
            appointment_id=appointment_id,
            data=TransitionAppointmentRequest(expected_version=2),
            db=db,
            timeout_ms=None,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['code'] == 'INVALID_STATE'


def test_cancel_unknown_appointment_is_404(db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        cancel_appointment(
            appointment_id=999,
            data=TransitionAppointmentRequest(expected_version=1),
            db=db,
            timeout_ms=None,
        )

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail['code'] == 'APPOINTMENT_NOT_FOUND'


def test_complete_future_appointment_is_rejected(db, make_doctor) -> None:
    doctor = make_doctor()
    booked = book_appointment(data=book_request(doctor, at(MONDAY, 9), at(MONDAY, 9, 30)), db=db, timeout_ms=None)

    with pytest.raises(HTTPException) as exception_info:
        complete_appointment(
            appointment_id=booked.appointment_id,
            data=TransitionAppointmentRequest(expected_version=1),
            db=db,
            timeout_ms=None,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['code'] == 'INVALID_STATE'


def test_complete_and_no_show_for_past_appointments(db, add_appointment) -> None:
    last_week = datetime.now().replace(second=0, microsecond=0) - timedelta(days=7)
    attended = add_appointment(1, last_week, last_week + timedelta(minutes=30))
    missed = add_appointment(1, last_week + timedelta(hours=1), last_week + timedelta(hours=1, minutes=30))

    completed = complete_appointment(
        appointment_id=attended.appointment_id,
        data=TransitionAppointmentRequest(expected_version=1),
        db=db,
        timeout_ms=None,
    )
    no_show = mark_no_show(
        appointment_id=missed.appointment_id,
        data=TransitionAppointmentRequest(expected_version=1),
        db=db,
        timeout_ms=None,
    )

    assert completed.status == STATUS_COMPLETED
    assert no_show.status == 'NO_SHOW'
    assert no_show.version == 2


def test_get_appointment_not_found(db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_appointment(appointment_id=12345, db=db)

    assert exception_info.value.status_code == 404


def test_list_appointments_paginates(db, add_appointment) -> None:
    for hour in (9, 10, 11):
        add_appointment(1, at(MONDAY, hour), at(MONDAY, hour, 30))

    first_page = list_all(db, doctor_id=1, limit=2)
    second_page = list_all(db, doctor_id=1, limit=2, page=2)

    assert [item.slot_start for item in first_page.appointments] == [at(MONDAY, 9), at(MONDAY, 10)]
    assert first_page.pagination.total_records == 3
    assert first_page.pagination.total_pages == 2
    assert first_page.pagination.has_next is True
    assert first_page.pagination.has_prev is False
    assert len(second_page.appointments) == 1
    assert second_page.pagination.has_next is False


def test_list_appointments_filters_by_status(db, add_appointment) -> None:
    add_appointment(1, at(MONDAY, 9), at(MONDAY, 9, 30))
    add_appointment(1, at(MONDAY, 10), at(MONDAY, 10, 30), status=STATUS_CANCELLED)

    page = list_all(db, appointment_status='cancelled')

    assert [item.status for item in page.appointments] == [STATUS_CANCELLED]


def test_list_appointments_rejects_unknown_status(db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_all(db, appointment_status='pending')

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['code'] == 'INVALID_REQUEST'


def test_storage_errors_map_to_503_and_504() -> None:
    assert storage_error(StorageUnavailable('down')).status_code == 503

    timeout = storage_error(StorageTimeout('slow'))
    assert timeout.status_code == 504
    assert 'Re-read the appointment' in timeout.detail['message']

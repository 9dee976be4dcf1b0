import logging
import math
from datetime import date, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from appointment_service.core import config
from appointment_service.models.appointment import APPOINTMENT_STATUSES
from appointment_service.routes.dependencies import (
    build_store,
    ensure_database_ready,
    error_detail,
    get_db,
    rejection_error,
    storage_error,
)
from appointment_service.scheduling.coordinator import BookingCoordinator, BookingOutcome
from appointment_service.scheduling.errors import ErrorCode, StorageUnavailable

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)

MAX_DEPARTMENT_LENGTH = 100
MAX_APPOINTMENT_NOTES_LENGTH = 1000

RequestTimeout = Annotated[int | None, Header(alias='x-request-timeout-ms', ge=1)]


def normalize_slot_time(value: datetime) -> datetime:
    # Slots are stored as naive local time.
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


class BookAppointmentRequest(BaseModel):
    patient_id: int = Field(gt=0)
    doctor_id: int = Field(gt=0)
    department: str
    slot_start: datetime
    slot_end: datetime
    notes: str | None = None

    class Config:
        extra = 'forbid'

    @field_validator('department')
    @classmethod
    def validate_department(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Department is required.')
        if len(normalized) > MAX_DEPARTMENT_LENGTH:
            raise ValueError(f'Department must be {MAX_DEPARTMENT_LENGTH} characters or fewer.')
        return normalized

    @field_validator('slot_start', 'slot_end')
    @classmethod
    def validate_slot_time(cls, value: datetime) -> datetime:
        return normalize_slot_time(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

        return normalized


class RescheduleAppointmentRequest(BaseModel):
    expected_version: int = Field(ge=1)
    slot_start: datetime
    slot_end: datetime

    class Config:
        extra = 'forbid'

    @field_validator('slot_start', 'slot_end')
    @classmethod
    def validate_slot_time(cls, value: datetime) -> datetime:
        return normalize_slot_time(value)


class TransitionAppointmentRequest(BaseModel):
    expected_version: int = Field(ge=1)

    class Config:
        extra = 'forbid'


class AppointmentResponse(BaseModel):
    appointment_id: int
    patient_id: int
    doctor_id: int
    department: str
    slot_start: datetime
    slot_end: datetime
    status: str
    reschedule_count: int
    version: int
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PaginationResponse(BaseModel):
    current_page: int
    total_pages: int
    total_records: int
    has_next: bool
    has_prev: bool


class AppointmentListResponse(BaseModel):
    appointments: list[AppointmentResponse]
    pagination: PaginationResponse


def unwrap(outcome: BookingOutcome):
    if not outcome.ok:
        raise rejection_error(outcome.rejection)
    return outcome.appointment


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    data: BookAppointmentRequest,
    db: Session = Depends(get_db),
    timeout_ms: RequestTimeout = None,
):
    ensure_database_ready()

    coordinator = BookingCoordinator(build_store(db, timeout_ms))
    try:
        outcome = coordinator.book(
            patient_id=data.patient_id,
            doctor_id=data.doctor_id,
            department=data.department,
            start=data.slot_start,
            end=data.slot_end,
            notes=data.notes,
        )
    except StorageUnavailable as exc:
        raise storage_error(exc) from exc

    return unwrap(outcome)


@router.get('', response_model=AppointmentListResponse)
def list_appointments(
    patient_id: int | None = Query(default=None, gt=0),
    doctor_id: int | None = Query(default=None, gt=0),
    appointment_status: str | None = Query(default=None, alias='status'),
    day: date | None = Query(default=None, alias='date'),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=config.MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    normalized_status = None
    if appointment_status is not None:
        normalized_status = appointment_status.strip().upper()
        if normalized_status not in APPOINTMENT_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=error_detail(ErrorCode.INVALID_REQUEST, f'Unknown appointment status: {appointment_status}.'),
            )

    ensure_database_ready()

    store = build_store(db, None)
    try:
        rows, total = store.list_appointments(
            patient_id=patient_id,
            doctor_id=doctor_id,
            status=normalized_status,
            day=day,
            offset=(page - 1) * limit,
            limit=limit,
        )
    except StorageUnavailable as exc:
        raise storage_error(exc) from exc

    total_pages = math.ceil(total / limit)
    logger.info('Appointments retrieved: %s of %s (page %s)', len(rows), total, page)

    return AppointmentListResponse(
        appointments=[AppointmentResponse.model_validate(row) for row in rows],
        pagination=PaginationResponse(
            current_page=page,
            total_pages=total_pages,
            total_records=total,
            has_next=page < total_pages,
            has_prev=page > 1,
        ),
    )


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        appointment = build_store(db, None).get(appointment_id)
    except StorageUnavailable as exc:
        raise storage_error(exc) from exc

    if appointment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_detail(ErrorCode.APPOINTMENT_NOT_FOUND, f'Appointment {appointment_id} not found.'),
        )

    return appointment


@router.put('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    db: Session = Depends(get_db),
    timeout_ms: RequestTimeout = None,
):
    ensure_database_ready()

    coordinator = BookingCoordinator(build_store(db, timeout_ms))
    try:
        outcome = coordinator.reschedule(
            appointment_id,
            data.expected_version,
            start=data.slot_start,
            end=data.slot_end,
        )
    except StorageUnavailable as exc:
        raise storage_error(exc) from exc

    return unwrap(outcome)


def _run_transition(action: str, appointment_id: int, data: TransitionAppointmentRequest, db, timeout_ms):
    ensure_database_ready()

    coordinator = BookingCoordinator(build_store(db, timeout_ms))
    try:
        outcome = getattr(coordinator, action)(appointment_id, data.expected_version)
    except StorageUnavailable as exc:
        raise storage_error(exc) from exc

    return unwrap(outcome)


@router.put('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: TransitionAppointmentRequest,
    db: Session = Depends(get_db),
    timeout_ms: RequestTimeout = None,
):
    return _run_transition('cancel', appointment_id, data, db, timeout_ms)


@router.put('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    data: TransitionAppointmentRequest,
    db: Session = Depends(get_db),
    timeout_ms: RequestTimeout = None,
):
    return _run_transition('complete', appointment_id, data, db, timeout_ms)


@router.put('/{appointment_id}/no-show', response_model=AppointmentResponse)
def mark_no_show(
    appointment_id: int,
    data: TransitionAppointmentRequest,
    db: Session = Depends(get_db),
    timeout_ms: RequestTimeout = None,
):
    return _run_transition('mark_no_show', appointment_id, data, db, timeout_ms)

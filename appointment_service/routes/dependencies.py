from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from appointment_service.core import config
from appointment_service.core.logging import get_correlation_id
from appointment_service.database import SessionLocal, ensure_appointment_schema
from appointment_service.scheduling.errors import ErrorCode, Rejection, StorageTimeout, StorageUnavailable
from appointment_service.scheduling.store import AppointmentStore

STATUS_BY_CODE = {
    ErrorCode.INVALID_INTERVAL: status.HTTP_400_BAD_REQUEST,
    ErrorCode.LEAD_TIME_VIOLATION: status.HTTP_400_BAD_REQUEST,
    ErrorCode.SLOT_UNAVAILABLE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.DAILY_CAPACITY_EXCEEDED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_STATE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorCode.DOCTOR_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.APPOINTMENT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.VERSION_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.STORAGE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}

DATABASE_UNAVAILABLE_MESSAGE = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def error_detail(code: ErrorCode, message: str, retryable: bool = False) -> dict:
    return {
        'code': code.value,
        'message': message,
        'retryable': retryable,
        'correlation_id': get_correlation_id(),
    }


def rejection_error(rejection: Rejection) -> HTTPException:
    return HTTPException(
        status_code=STATUS_BY_CODE[rejection.code],
        detail=error_detail(rejection.code, rejection.message, rejection.retryable),
    )


def storage_error(exc: StorageUnavailable) -> HTTPException:
    if isinstance(exc, StorageTimeout):
        return HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail=error_detail(
                ErrorCode.STORAGE_UNAVAILABLE,
                'The request timed out and may not have been applied. Re-read the appointment before retrying.',
            ),
        )
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=error_detail(ErrorCode.STORAGE_UNAVAILABLE, DATABASE_UNAVAILABLE_MESSAGE),
    )


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error_detail(ErrorCode.STORAGE_UNAVAILABLE, DATABASE_UNAVAILABLE_MESSAGE),
        ) from exc


def build_store(db, timeout_ms: int | None) -> AppointmentStore:
    if timeout_ms is not None:
        timeout_ms = max(1, min(timeout_ms, config.MAX_REQUEST_TIMEOUT_MS))
    return AppointmentStore(db, timeout_ms=timeout_ms)

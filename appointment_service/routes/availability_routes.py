from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from appointment_service.routes.dependencies import build_store, ensure_database_ready, error_detail, get_db, storage_error
from appointment_service.scheduling.errors import DoctorNotFound, ErrorCode, StorageUnavailable
from appointment_service.scheduling.resolver import AvailabilityResolver

router = APIRouter(tags=['availability'])


class AvailabilitySlotResponse(BaseModel):
    start: datetime
    end: datetime
    duration_minutes: int


@router.get('/{doctor_id}/availability', response_model=list[AvailabilitySlotResponse])
def get_doctor_availability(
    doctor_id: int,
    day: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    resolver = AvailabilityResolver(build_store(db, None))
    try:
        slots = resolver.resolve(doctor_id, day)
    except DoctorNotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_detail(ErrorCode.DOCTOR_NOT_FOUND, str(exc)),
        ) from exc
    except StorageUnavailable as exc:
        raise storage_error(exc) from exc

    return [
        AvailabilitySlotResponse(
            start=slot.start,
            end=slot.end,
            duration_minutes=int((slot.end - slot.start).total_seconds() // 60),
        )
        for slot in slots
    ]

"""Scheduling error taxonomy.

Business outcomes (validation failures, missing rows, lost races) are
returned as ``Rejection`` values. Only infrastructure failures and a missing
doctor during availability lookup are raised.
"""

import enum
from dataclasses import dataclass


class ErrorCode(str, enum.Enum):
    INVALID_INTERVAL = 'INVALID_INTERVAL'
    LEAD_TIME_VIOLATION = 'LEAD_TIME_VIOLATION'
    SLOT_UNAVAILABLE = 'SLOT_UNAVAILABLE'
    DAILY_CAPACITY_EXCEEDED = 'DAILY_CAPACITY_EXCEEDED'
    DOCTOR_NOT_FOUND = 'DOCTOR_NOT_FOUND'
    APPOINTMENT_NOT_FOUND = 'APPOINTMENT_NOT_FOUND'
    INVALID_STATE = 'INVALID_STATE'
    VERSION_CONFLICT = 'VERSION_CONFLICT'
    CONFLICT = 'CONFLICT'
    STORAGE_UNAVAILABLE = 'STORAGE_UNAVAILABLE'
    INVALID_REQUEST = 'INVALID_REQUEST'


VALIDATION_CODES = frozenset({
    ErrorCode.INVALID_INTERVAL,
    ErrorCode.LEAD_TIME_VIOLATION,
    ErrorCode.SLOT_UNAVAILABLE,
    ErrorCode.DAILY_CAPACITY_EXCEEDED,
})

RETRYABLE_CODES = frozenset({ErrorCode.VERSION_CONFLICT, ErrorCode.CONFLICT})


@dataclass(frozen=True)
class Rejection:
    code: ErrorCode
    message: str

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES

    @property
    def is_validation(self) -> bool:
        return self.code in VALIDATION_CODES


class DoctorNotFound(Exception):
    def __init__(self, doctor_id: int):
        super().__init__(f'Doctor {doctor_id} not found or inactive.')
        self.doctor_id = doctor_id


class StorageUnavailable(Exception):
    """The appointment store could not complete the call."""


class StorageTimeout(StorageUnavailable):
    """The deadline expired mid-call; the write may or may not have committed."""

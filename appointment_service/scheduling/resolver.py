"""Bookable slot resolution for one doctor on one date."""

import logging
from datetime import date, datetime
from typing import Iterator

from appointment_service.core import config
from appointment_service.scheduling import intervals
from appointment_service.scheduling.errors import DoctorNotFound
from appointment_service.scheduling.intervals import Interval
from appointment_service.scheduling.store import AppointmentStore, day_bounds

logger = logging.getLogger(__name__)


def schedule_day_of_week(day: date) -> int:
    """Day index as stored in doctor_schedules: 0 is Sunday, 6 is Saturday."""
    return (day.weekday() + 1) % 7


class SlotSequence:
    """Ordered, non-overlapping free slots.

    All storage reads happen before construction; iterating only slices the
    captured intervals, so the sequence can be walked any number of times.
    A partly booked slot yields the pieces that remain free.
    """

    def __init__(self, candidates: list[Interval], booked: list[tuple[datetime, datetime]]):
        self._candidates = candidates
        self._booked = booked

    def __iter__(self) -> Iterator[Interval]:
        for candidate in self._candidates:
            for slot in intervals.iterate_slots(candidate):
                free = [slot]
                for start, end in self._booked:
                    free = intervals.subtract_all(free, start, end)
                yield from free

    def __repr__(self) -> str:
        return f'SlotSequence({list(self)!r})'


class AvailabilityResolver:
    def __init__(self, store: AppointmentStore):
        self.store = store

    def candidate_intervals(self, doctor_id: int, day: date) -> list[Interval]:
        """Template intervals for ``day`` with the date override applied."""
        templates = self.store.templates_for(doctor_id, schedule_day_of_week(day))
        candidates = [
            Interval(
                datetime.combine(day, template.start_time),
                datetime.combine(day, template.end_time),
                template.slot_duration or config.DEFAULT_SLOT_DURATION_MINUTES,
            )
            for template in templates
            if template.start_time < template.end_time
        ]

        override = self.store.override_for(doctor_id, day)
        if override is None:
            return intervals.merge(candidates)

        if not override.is_available:
            if not override.has_time_range:
                return []
            return intervals.merge(intervals.subtract_all(
                candidates,
                datetime.combine(day, override.start_time),
                datetime.combine(day, override.end_time),
            ))

        if override.has_time_range and override.start_time < override.end_time:
            extra = [Interval(
                datetime.combine(day, override.start_time),
                datetime.combine(day, override.end_time),
                config.DEFAULT_SLOT_DURATION_MINUTES,
            )]
            # Time already covered by a template keeps that template's slots.
            for covered in candidates:
                extra = intervals.subtract_all(extra, covered.start, covered.end)
            candidates.extend(extra)

        return intervals.merge(candidates)

    def resolve(self, doctor_id: int, day: date, exclude_appointment_id: int | None = None) -> SlotSequence:
        if self.store.get_active_doctor(doctor_id) is None:
            raise DoctorNotFound(doctor_id)

        candidates = self.candidate_intervals(doctor_id, day)
        if not candidates:
            return SlotSequence([], [])

        day_start, day_end = day_bounds(day)
        booked = self.store.scheduled_intervals(
            doctor_id,
            day_start,
            day_end,
            exclude_id=exclude_appointment_id,
        )
        logger.debug(
            'Resolved %s candidate intervals and %s bookings for doctor %s on %s',
            len(candidates), len(booked), doctor_id, day.isoformat(),
        )
        return SlotSequence(candidates, booked)

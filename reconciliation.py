import logging
from dataclasses import dataclass
from datetime import datetime, date, time
from typing import List, Optional

from models.errors import ValidationError
from models.schema import AppliedAudit, ComputedHours, CorrectionRequest, PunchEvent, PunchType, Provenance
from utils.helper import local_date, round_hours, span_minutes
from utils.store import EmployeeLocks, RecordStore, retry_on_contention


@dataclass
class HourLimits:
    max_work_hours: float = 20
    max_lunch_hours: float = 6
    max_rest_hours: float = 3

    @classmethod
    def from_config(cls, config: dict) -> "HourLimits":
        limits = config.get("limits", {})
        return cls(
            max_work_hours=limits.get("max_work_hours", cls.max_work_hours),
            max_lunch_hours=limits.get("max_lunch_hours", cls.max_lunch_hours),
            max_rest_hours=limits.get("max_rest_hours", cls.max_rest_hours),
        )


def _bounded_span(label: str, start: time, end: time, max_hours: float, wrap: bool) -> float:
    if not wrap and end <= start:
        raise ValidationError(f"{label} must end after it starts; spans crossing midnight are not supported.")
    minutes = span_minutes(start, end)
    if minutes <= 0 or minutes > max_hours * 60:
        raise ValidationError(f"{label} duration must be greater than 0 and at most {max_hours:g} hours.")
    return minutes


def compute_hours(
    clock_in: time,
    clock_out: time,
    meal_in: Optional[time] = None,
    meal_out: Optional[time] = None,
    rest_in: Optional[time] = None,
    rest_out: Optional[time] = None,
    limits: Optional[HourLimits] = None,
    wrap: bool = True,
) -> ComputedHours:
    """Work, lunch and rest hours implied by a day's time pairs.

    With ``wrap`` a span whose end precedes its start wraps forward 24h;
    without it such a span is rejected. Lunch is unpaid; rest is paid and
    never subtracted.
    """
    limits = limits or HourLimits()
    work_min = _bounded_span("Work", clock_in, clock_out, limits.max_work_hours, wrap)
    lunch_min = 0.0
    rest_min = 0.0
    if meal_in is not None and meal_out is not None:
        lunch_min = _bounded_span("Lunch", meal_in, meal_out, limits.max_lunch_hours, wrap)
    if rest_in is not None and rest_out is not None:
        rest_min = _bounded_span("Rest", rest_in, rest_out, limits.max_rest_hours, wrap)

    work_hours = round_hours(work_min)
    lunch_hours = round_hours(lunch_min)
    return ComputedHours(
        work_hours=work_hours,
        lunch_hours=lunch_hours,
        rest_hours=round_hours(rest_min),
        payable_hours=round(max(0.0, work_hours - lunch_hours), 2),
    )


def correction_hours(correction: CorrectionRequest, limits: Optional[HourLimits] = None, wrap: bool = True) -> ComputedHours:
    return compute_hours(
        correction.clock_in,
        correction.clock_out,
        correction.meal_in,
        correction.meal_out,
        correction.rest_in,
        correction.rest_out,
        limits,
        wrap,
    )


def synthesize_events(correction: CorrectionRequest) -> List[PunchEvent]:
    pairs = [
        (PunchType.CLOCK_IN, correction.clock_in, PunchType.CLOCK_OUT, correction.clock_out),
    ]
    if correction.meal_in is not None and correction.meal_out is not None:
        pairs.append((PunchType.MEAL_IN, correction.meal_in, PunchType.MEAL_OUT, correction.meal_out))
    if correction.rest_in is not None and correction.rest_out is not None:
        pairs.append((PunchType.REST_IN, correction.rest_in, PunchType.REST_OUT, correction.rest_out))

    events = []
    for in_type, in_time, out_type, out_time in pairs:
        for punch_type, at in ((in_type, in_time), (out_type, out_time)):
            events.append(PunchEvent(
                employee_id=correction.employee_id,
                punch_type=punch_type,
                timestamp=datetime.combine(correction.date, at),
                provenance=Provenance.CORRECTION,
                correction_id=correction.id,
            ))
    return sorted(events, key=lambda e: e.timestamp)


class ReconciliationApplier:
    """Swaps a day's punches for the ones implied by an approved correction."""

    def __init__(self, events: RecordStore, locks: EmployeeLocks, limits: Optional[HourLimits] = None, max_retries: int = 3):
        self.events = events
        self.locks = locks
        self.limits = limits or HourLimits()
        self.max_retries = max_retries

    def apply(self, correction: CorrectionRequest) -> AppliedAudit:
        """Replace every event on the correction's day with its synthesized events.

        ``removed_records`` holds whatever was on that day, which includes the
        events of an earlier approved correction for the same day.
        """
        computed = correction_hours(correction, self.limits, wrap=False)
        inserted = synthesize_events(correction)
        day = correction.date

        def on_day(event: PunchEvent) -> bool:
            return local_date(event.timestamp) == day

        def attempt() -> List[PunchEvent]:
            version = self.events.version(correction.employee_id)
            return self.events.replace_matching(
                correction.employee_id, on_day, inserted, expected_version=version,
            )

        with self.locks.hold(correction.employee_id):
            removed = retry_on_contention(attempt, self.max_retries, f"reconciling correction {correction.id}")

        logging.info(
            f"Reconciled correction {correction.id} for employee_id: {correction.employee_id} on {day}: "
            f"removed {len(removed)}, inserted {len(inserted)}"
        )
        return AppliedAudit(removed_records=removed, inserted_records=inserted, computed_hours=computed)

    def restore_day(self, employee_id: str, day: date, previous: List[PunchEvent]) -> None:
        """Put back the events a failed approval replaced."""
        with self.locks.hold(employee_id):
            self.events.replace_matching(employee_id, lambda e: local_date(e.timestamp) == day, previous)
        logging.warning(f"Restored {len(previous)} events for employee_id: {employee_id} on {day}")

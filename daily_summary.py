from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from models.schema import (
    CorrectionRequest,
    CorrectionStatus,
    DailySummary,
    DateRange,
    PeriodTotals,
    PunchEvent,
    PunchType,
)
from reconciliation import HourLimits, correction_hours, synthesize_events
from utils.helper import format_hm, get_pay_period_range, local_date, round_hours


def calculate_daily_summary(employee_id: str, day: date, events: Iterable[PunchEvent]) -> DailySummary:
    work_min = lunch_min = rest_min = 0.0
    clock_in = meal_in = rest_in = None
    first_in = last_out = None
    trail = []

    for event in sorted(events, key=lambda e: e.timestamp):
        ts = event.timestamp
        trail.append(f"{format_hm(ts)} {event.punch_type.value}")
        if event.punch_type == PunchType.CLOCK_IN:
            clock_in = ts
            if first_in is None:
                first_in = ts
        elif event.punch_type == PunchType.CLOCK_OUT:
            if clock_in is not None:
                work_min += (ts - clock_in).total_seconds() / 60.0
                last_out = ts
                clock_in = None
        elif event.punch_type == PunchType.MEAL_IN:
            meal_in = ts
        elif event.punch_type == PunchType.MEAL_OUT:
            if meal_in is not None:
                lunch_min += (ts - meal_in).total_seconds() / 60.0
                meal_in = None
        elif event.punch_type == PunchType.REST_IN:
            rest_in = ts
        elif event.punch_type == PunchType.REST_OUT:
            if rest_in is not None:
                rest_min += (ts - rest_in).total_seconds() / 60.0
                rest_in = None

    work_hours = round_hours(work_min)
    lunch_hours = round_hours(lunch_min)
    return DailySummary(
        employee_id=employee_id,
        date=day,
        first_in=first_in.time() if first_in else None,
        last_out=last_out.time() if last_out else None,
        events=trail,
        work_hours=work_hours,
        lunch_hours=lunch_hours,
        rest_hours=round_hours(rest_min),
        # rest is paid, only lunch comes off
        payable_hours=round(max(0.0, work_hours - lunch_hours), 2),
    )


def summarize_correction(correction: CorrectionRequest, limits: Optional[HourLimits] = None) -> DailySummary:
    if correction.applied_audit is not None:
        hours = correction.applied_audit.computed_hours
    else:
        hours = correction_hours(correction, limits)
    return DailySummary(
        employee_id=correction.employee_id,
        date=correction.date,
        first_in=correction.clock_in,
        last_out=correction.clock_out,
        events=[f"{format_hm(e.timestamp)} {e.punch_type.value}" for e in synthesize_events(correction)],
        work_hours=hours.work_hours,
        lunch_hours=hours.lunch_hours,
        rest_hours=hours.rest_hours,
        payable_hours=hours.payable_hours,
        corrected=True,
    )


def latest_approved(corrections: Iterable[CorrectionRequest]) -> Dict[Tuple[str, date], CorrectionRequest]:
    approved = {}
    for correction in sorted(corrections, key=lambda c: c.reviewed_at or c.submitted_at):
        if correction.status == CorrectionStatus.APPROVED:
            approved[(correction.employee_id, correction.date)] = correction
    return approved


def build_daily_summaries(
    events: Iterable[PunchEvent],
    corrections: Iterable[CorrectionRequest] = (),
    date_range: Optional[DateRange] = None,
    limits: Optional[HourLimits] = None,
) -> List[DailySummary]:
    """One summary per employee and local date, approved corrections replacing raw punches."""
    date_range = date_range or DateRange()
    grouped: Dict[Tuple[str, date], List[PunchEvent]] = defaultdict(list)
    for event in events:
        day = local_date(event.timestamp)
        if date_range.contains(day):
            grouped[(event.employee_id, day)].append(event)

    summaries = {
        key: calculate_daily_summary(key[0], key[1], day_events)
        for key, day_events in grouped.items()
    }
    for key, correction in latest_approved(corrections).items():
        if date_range.contains(correction.date):
            summaries[key] = summarize_correction(correction, limits)

    return [summaries[key] for key in sorted(summaries)]


def calculate_period_totals(employee_id: str, day: date, summaries: Iterable[DailySummary]) -> PeriodTotals:
    period_start, period_end = get_pay_period_range(day)
    payable = breaks = 0.0
    for summary in summaries:
        if summary.employee_id != employee_id or not (period_start <= summary.date <= period_end):
            continue
        payable += summary.payable_hours
        breaks += summary.lunch_hours + summary.rest_hours
    return PeriodTotals(
        employee_id=employee_id,
        period_start=period_start,
        period_end=period_end,
        total_payable_hours=round(payable, 2),
        total_break_hours=round(breaks, 2),
    )

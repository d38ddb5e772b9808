import logging
from datetime import datetime, date
from typing import Iterable, List, Optional, Tuple

from models.errors import IllegalTransitionError, ValidationError
from models.schema import AttendanceState, Group, IncompleteDay, PunchEvent, PunchType
from utils.helper import local_date

INVALID_SEQUENCE = "Invalid clock sequence"
THERAPIST_REST_DISABLED = "Rest break is disabled for therapists."

Flags = Tuple[bool, bool, bool]


def is_transition_allowed(punch_type: PunchType, flags: Flags, group: Group) -> bool:
    clocked_in, in_meal, in_rest = flags
    if punch_type == PunchType.CLOCK_IN:
        return not clocked_in and not in_meal and not in_rest
    if punch_type == PunchType.CLOCK_OUT:
        return clocked_in and not in_meal and not in_rest
    if punch_type == PunchType.MEAL_IN:
        return clocked_in and not in_meal and not in_rest
    if punch_type == PunchType.MEAL_OUT:
        return in_meal
    if punch_type == PunchType.REST_IN:
        # no minimum wait before a rest break; therapists never take one
        return clocked_in and not in_meal and not in_rest and group != Group.THERAPIST
    if punch_type == PunchType.REST_OUT:
        return in_rest
    return False


def _apply(punch_type: PunchType, flags: Flags) -> Flags:
    clocked_in, in_meal, in_rest = flags
    if punch_type == PunchType.CLOCK_IN:
        return True, in_meal, in_rest
    if punch_type == PunchType.CLOCK_OUT:
        return False, in_meal, in_rest
    if punch_type == PunchType.MEAL_IN:
        return clocked_in, True, in_rest
    if punch_type == PunchType.MEAL_OUT:
        return clocked_in, False, in_rest
    if punch_type == PunchType.REST_IN:
        return clocked_in, in_meal, True
    return clocked_in, in_meal, False


def missing_kinds(flags: Flags) -> List[PunchType]:
    clocked_in, in_meal, in_rest = flags
    missing = []
    if clocked_in:
        missing.append(PunchType.CLOCK_OUT)
    if in_meal:
        missing.append(PunchType.MEAL_OUT)
    if in_rest:
        missing.append(PunchType.REST_OUT)
    return missing


def compute_state(events: Iterable[PunchEvent], now: datetime, group: Group = Group.NON_THERAPIST) -> AttendanceState:
    """Fold an employee's punch log into the live status and the days left open.

    Illegal events are skipped. Crossing into a new calendar day with anything
    still open records the previous day as incomplete and resets every flag,
    and the same check runs once more against ``now`` after the last event.
    """
    flags: Flags = (False, False, False)
    incomplete_days: List[IncompleteDay] = []
    current_day: Optional[date] = None

    def close_day(day: date, open_flags: Flags) -> Flags:
        missing = missing_kinds(open_flags)
        if not missing:
            return open_flags
        incomplete_days.append(IncompleteDay(date=day, missing=missing))
        return False, False, False

    for event in sorted(events, key=lambda e: e.timestamp):
        day = local_date(event.timestamp)
        if current_day is not None and day > current_day:
            flags = close_day(current_day, flags)
        current_day = day
        if is_transition_allowed(event.punch_type, flags, group):
            flags = _apply(event.punch_type, flags)

    if current_day is not None and current_day < local_date(now):
        flags = close_day(current_day, flags)

    clocked_in, in_meal, in_rest = flags
    return AttendanceState(
        clocked_in=clocked_in,
        in_meal=in_meal,
        in_rest=in_rest,
        incomplete_days=incomplete_days,
    )


def check_transition(state: AttendanceState, punch_type, group: Group) -> PunchType:
    """Write-boundary check for a new punch; raises instead of ignoring."""
    try:
        punch_type = PunchType(punch_type)
    except ValueError:
        raise ValidationError("Unknown record type")

    if group == Group.THERAPIST and punch_type in (PunchType.REST_IN, PunchType.REST_OUT):
        logging.warning(f"Rejected {punch_type.value}: rest break attempted by a therapist")
        raise IllegalTransitionError(THERAPIST_REST_DISABLED)

    flags = (state.clocked_in, state.in_meal, state.in_rest)
    if not is_transition_allowed(punch_type, flags, group):
        logging.warning(f"Rejected {punch_type.value}: clocked_in={flags[0]} in_meal={flags[1]} in_rest={flags[2]}")
        raise IllegalTransitionError(INVALID_SEQUENCE)
    return punch_type

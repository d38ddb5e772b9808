import calendar
from datetime import datetime, date, time, timedelta
from typing import Optional, Tuple, Union

from models.errors import ValidationError
from models.schema import DateRange


def local_date(timestamp: datetime) -> date:
    return timestamp.date()


def format_hm(value: Union[datetime, time]) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def round_hours(minutes: float) -> float:
    return round(minutes / 60.0, 2)


def parse_date(value: Union[str, date, None], field: str = "date") -> date:
    """Strict YYYY-MM-DD parsing; datetime values are rejected rather than truncated."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required (YYYY-MM-DD).")
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"{field} must be a valid calendar date (YYYY-MM-DD).")


def parse_time(value: Union[str, time, None], field: str) -> Optional[time]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a time of day (HH:MM).")
    try:
        return datetime.strptime(value.strip(), "%H:%M").time()
    except ValueError:
        raise ValidationError(f"{field} must be a time of day (HH:MM).")


def get_pay_period_range(day: date) -> Tuple[date, date]:
    """Semimonthly pay period containing ``day``: 1st-15th or 16th-last day, both inclusive."""
    if day.day <= 15:
        return day.replace(day=1), day.replace(day=15)
    last_day = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=16), day.replace(day=last_day)


def resolve_date_range(mode: str = "all", start=None, end=None, today: Optional[date] = None) -> DateRange:
    if mode == "all":
        return DateRange()
    if mode == "current":
        period_start, period_end = get_pay_period_range(today or date.today())
        return DateRange(start=period_start, end=period_end)
    if mode == "custom":
        start_date = parse_date(start, "start")
        end_date = parse_date(end, "end")
        if end_date < start_date:
            raise ValidationError("end must not be earlier than start.")
        return DateRange(start=start_date, end=end_date)
    raise ValidationError(f"Unknown range: {mode}")


def span_minutes(start: time, end: time) -> float:
    """Minutes from start to end on the same day, wrapped forward by 24h when end precedes start."""
    anchor = date(2000, 1, 1)
    delta = datetime.combine(anchor, end) - datetime.combine(anchor, start)
    if delta < timedelta(0):
        delta += timedelta(hours=24)
    return delta.total_seconds() / 60.0


def to_local_naive(value: datetime) -> datetime:
    """Aware timestamps are converted to local wall-clock time and made naive."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)

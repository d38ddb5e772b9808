import logging
from datetime import datetime, date
from typing import Callable, Dict, List, Optional

from corrections import CorrectionManager
from daily_summary import build_daily_summaries, calculate_period_totals
from models.errors import AuthorizationError, ValidationError
from models.schema import (
    AttendanceState,
    CorrectionRequest,
    CorrectionStatus,
    DailySummary,
    DateRange,
    Employee,
    Identity,
    IncompleteDay,
    PeriodTotals,
    PunchEvent,
    Provenance,
)
from punch_state import check_transition, compute_state
from reconciliation import HourLimits, ReconciliationApplier
from utils.config import DEFAULT_CONFIG
from utils.directory import EmployeeDirectory
from utils.helper import get_pay_period_range, to_local_naive
from utils.store import EmployeeLocks, InMemoryRecordStore, JsonFileRecordStore, RecordStore, retry_on_contention

NO_TIMESHEET = "Admin has no personal timesheet."
BACKDATED_PUNCH = "Punch time cannot be earlier than the last recorded punch."


class TimeClock:
    """Punch log, live status, corrections and pay-period totals for every employee."""

    def __init__(
        self,
        events: RecordStore,
        corrections: RecordStore,
        limits: Optional[HourLimits] = None,
        max_retries: int = 3,
        clock: Callable[[], datetime] = datetime.now,
        directory: Optional[EmployeeDirectory] = None,
    ):
        self.events = events
        self.directory = directory or EmployeeDirectory()
        self.locks = EmployeeLocks()
        self.limits = limits or HourLimits()
        self.max_retries = max_retries
        self.clock = clock
        self.applier = ReconciliationApplier(events, self.locks, self.limits, max_retries)
        self.corrections = CorrectionManager(corrections, self.applier, self.locks, self.limits, max_retries, clock)

    def _resolve_employee(self, identity: Identity, employee_id: Optional[str]) -> Optional[str]:
        if identity.is_reviewer:
            return employee_id or None
        if employee_id and employee_id != identity.employee_id:
            logging.warning(f"employee_id: {identity.employee_id} requested data of {employee_id}")
            raise AuthorizationError("Employees can only access their own timesheet.")
        if not identity.employee_id:
            raise AuthorizationError(NO_TIMESHEET)
        return identity.employee_id

    def _events_for(self, employee_id: Optional[str]) -> List[PunchEvent]:
        if employee_id:
            return self.events.read_all(employee_id)
        return self.events.read_everything()

    def record_punch(self, identity: Identity, punch_type, timestamp: Optional[datetime] = None) -> PunchEvent:
        if not identity.employee_id:
            raise ValidationError(NO_TIMESHEET)
        employee_id = identity.employee_id
        at = to_local_naive(timestamp or self.clock())
        result = {}

        def attempt():
            version = self.events.version(employee_id)
            history = self.events.read_all(employee_id)
            latest = max((e.timestamp for e in history), default=None)
            if latest is not None and at < latest:
                logging.warning(f"Backdated punch for employee_id: {employee_id} at {at} (last punch {latest})")
                raise ValidationError(BACKDATED_PUNCH)
            state = compute_state(history, at, identity.group)
            checked = check_transition(state, punch_type, identity.group)
            event = PunchEvent(
                employee_id=employee_id,
                punch_type=checked,
                timestamp=at,
                provenance=Provenance.DIRECT,
            )
            self.events.append(employee_id, [event], expected_version=version)
            result["event"] = event

        with self.locks.hold(employee_id):
            retry_on_contention(attempt, self.max_retries, f"recording punch for {employee_id}")
        logging.info(f"Recorded {result['event'].punch_type.value} for employee_id: {employee_id} at {at}")
        return result["event"]

    def get_state(self, identity: Identity, now: Optional[datetime] = None, employee_id: Optional[str] = None) -> AttendanceState:
        target = self._resolve_employee(identity, employee_id)
        if not target:
            return AttendanceState()
        group = identity.group if target == identity.employee_id else self.directory.group_of(target)
        return compute_state(self.events.read_all(target), now or self.clock(), group)

    def list_records(self, identity: Identity, employee_id: Optional[str] = None) -> List[PunchEvent]:
        target = self._resolve_employee(identity, employee_id)
        return sorted(self._events_for(target), key=lambda e: (e.employee_id, e.timestamp))

    def get_daily_summaries(
        self,
        identity: Identity,
        date_range: Optional[DateRange] = None,
        employee_id: Optional[str] = None,
    ) -> List[DailySummary]:
        target = self._resolve_employee(identity, employee_id)
        return build_daily_summaries(
            self._events_for(target),
            self.corrections.approved_for(target),
            date_range,
            self.limits,
        )

    def get_period_totals(self, identity: Identity, day: Optional[date] = None, employee_id: Optional[str] = None) -> PeriodTotals:
        target = self._resolve_employee(identity, employee_id)
        if not target:
            raise ValidationError("employeeId is required for period totals.")
        day = day or self.clock().date()
        period_start, period_end = get_pay_period_range(day)
        summaries = self.get_daily_summaries(identity, DateRange(start=period_start, end=period_end), target)
        return calculate_period_totals(target, day, summaries)

    def submit_correction(self, identity: Identity, **fields) -> str:
        return self.corrections.submit(identity, **fields).id

    def cancel_correction(self, correction_id: str, identity: Identity) -> CorrectionRequest:
        return self.corrections.cancel(correction_id, identity)

    def list_corrections(
        self,
        identity: Identity,
        employee_id: Optional[str] = None,
        status: Optional[CorrectionStatus] = None,
        date_range: Optional[DateRange] = None,
    ) -> List[CorrectionRequest]:
        return self.corrections.query(identity, employee_id, status, date_range)

    def review_correction(self, correction_id: str, action, identity: Identity, note: Optional[str] = None) -> CorrectionRequest:
        return self.corrections.review(correction_id, action, identity, note)

    def list_employees(self, identity: Identity) -> List[Employee]:
        if not identity.is_reviewer:
            raise AuthorizationError("Only admins can list employees.")
        return self.directory.list_employees()

    def find_missed_punches(self, now: Optional[datetime] = None) -> Dict[str, List[IncompleteDay]]:
        now = now or self.clock()
        missed = {}
        for employee_id in self.events.employee_ids():
            state = compute_state(self.events.read_all(employee_id), now, self.directory.group_of(employee_id))
            if state.incomplete_days:
                missed[employee_id] = state.incomplete_days
        return missed


def load_directory(config: dict) -> EmployeeDirectory:
    users_file = config.get("directory", {}).get("users_file")
    if not users_file:
        return EmployeeDirectory()
    return EmployeeDirectory.from_file(users_file)


def create_time_clock(config: Optional[dict] = None, clock: Callable[[], datetime] = datetime.now) -> TimeClock:
    config = config or DEFAULT_CONFIG
    storage = config["storage"]
    if storage["backend"] == "memory":
        events = InMemoryRecordStore(PunchEvent)
        corrections = InMemoryRecordStore(CorrectionRequest)
    elif storage["backend"] == "json":
        events = JsonFileRecordStore(PunchEvent, storage["records_file"])
        corrections = JsonFileRecordStore(CorrectionRequest, storage["corrections_file"])
    else:
        raise ValueError(f"Unknown storage backend: {storage['backend']}")
    return TimeClock(
        events,
        corrections,
        limits=HourLimits.from_config(config),
        max_retries=config["store"]["max_retries"],
        clock=clock,
        directory=load_directory(config),
    )

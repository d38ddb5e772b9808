import logging
import uuid
from datetime import datetime
from typing import Callable, List, Optional

from models.errors import AuthorizationError, ConflictError, IllegalTransitionError, NotFoundError, ValidationError
from models.schema import CorrectionRequest, CorrectionStatus, DateRange, Identity, ReviewAction
from punch_state import THERAPIST_REST_DISABLED
from reconciliation import HourLimits, ReconciliationApplier, compute_hours
from utils.helper import parse_date, parse_time
from utils.store import EmployeeLocks, RecordStore, retry_on_contention

CLOSED_STATUSES = (CorrectionStatus.DENIED, CorrectionStatus.CANCELLED)


class CorrectionManager:
    """Submit, cancel, review and list employee day corrections."""

    def __init__(
        self,
        corrections: RecordStore,
        applier: ReconciliationApplier,
        locks: EmployeeLocks,
        limits: Optional[HourLimits] = None,
        max_retries: int = 3,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.corrections = corrections
        self.applier = applier
        self.locks = locks
        self.limits = limits or HourLimits()
        self.max_retries = max_retries
        self.clock = clock

    def submit(
        self,
        identity: Identity,
        date,
        clock_in,
        clock_out,
        meal_in=None,
        meal_out=None,
        rest_in=None,
        rest_out=None,
        note: Optional[str] = None,
    ) -> CorrectionRequest:
        if not identity.employee_id:
            raise ValidationError("Admin has no personal timesheet.")
        employee_id = identity.employee_id

        day = parse_date(date)
        start = parse_time(clock_in, "clockIn")
        end = parse_time(clock_out, "clockOut")
        if start is None or end is None:
            raise ValidationError("clockIn and clockOut are required (HH:MM).")
        meal = (parse_time(meal_in, "mealIn"), parse_time(meal_out, "mealOut"))
        rest = (parse_time(rest_in, "restIn"), parse_time(rest_out, "restOut"))

        if (meal[0] is None) != (meal[1] is None):
            raise ValidationError("mealIn and mealOut must be provided together.")
        if (rest[0] is None) != (rest[1] is None):
            raise ValidationError("restIn and restOut must be provided together.")

        if identity.is_therapist and rest[0] is not None:
            raise IllegalTransitionError(THERAPIST_REST_DISABLED)

        compute_hours(start, end, meal[0], meal[1], rest[0], rest[1], self.limits, wrap=False)

        request = CorrectionRequest(
            id=uuid.uuid4().hex,
            employee_id=employee_id,
            date=day,
            clock_in=start,
            clock_out=end,
            meal_in=meal[0],
            meal_out=meal[1],
            rest_in=rest[0],
            rest_out=rest[1],
            note=(note or "").strip() or None,
            status=CorrectionStatus.PENDING,
            submitted_at=self.clock(),
        )

        def attempt():
            version = self.corrections.version(employee_id)
            same_day = [c for c in self.corrections.read_all(employee_id) if c.date == day]
            if same_day:
                latest = max(enumerate(same_day), key=lambda pair: (pair[1].submitted_at, pair[0]))[1]
                if latest.status not in CLOSED_STATUSES:
                    logging.warning(f"Duplicate correction for employee_id: {employee_id} on {day} ({latest.status.value})")
                    raise ConflictError(f"A {latest.status.value} correction request already exists for {day}.")
            self.corrections.append(employee_id, [request], expected_version=version)

        with self.locks.hold(employee_id):
            retry_on_contention(attempt, self.max_retries, f"submitting correction for {employee_id} on {day}")
        logging.info(f"Correction {request.id} submitted by employee_id: {employee_id} for {day}")
        return request

    def get(self, correction_id: str) -> CorrectionRequest:
        for correction in self.corrections.read_everything():
            if correction.id == correction_id:
                return correction
        raise NotFoundError(f"Correction request {correction_id} not found.")

    def _transition(self, correction: CorrectionRequest, change: Callable[[CorrectionRequest], CorrectionRequest]) -> CorrectionRequest:
        """Atomically rewrite one still-pending request."""
        employee_id = correction.employee_id
        result = {}

        def attempt():
            version = self.corrections.version(employee_id)
            current = next((c for c in self.corrections.read_all(employee_id) if c.id == correction.id), None)
            if current is None:
                raise NotFoundError(f"Correction request {correction.id} not found.")
            if current.status != CorrectionStatus.PENDING:
                raise ConflictError(f"Correction request is already {current.status.value}.")
            updated = change(current)
            self.corrections.replace_matching(
                employee_id, lambda c: c.id == correction.id, [updated], expected_version=version,
            )
            result["updated"] = updated

        retry_on_contention(attempt, self.max_retries, f"updating correction {correction.id}")
        return result["updated"]

    def cancel(self, correction_id: str, identity: Identity) -> CorrectionRequest:
        correction = self.get(correction_id)
        if correction.employee_id != identity.employee_id:
            logging.warning(f"employee_id: {identity.employee_id} tried to cancel correction {correction_id}")
            raise AuthorizationError("Only the submitting employee can cancel this request.")

        with self.locks.hold(correction.employee_id):
            updated = self._transition(
                correction, lambda c: c.model_copy(update={"status": CorrectionStatus.CANCELLED}),
            )
        logging.info(f"Correction {correction_id} cancelled by employee_id: {identity.employee_id}")
        return updated

    def review(self, correction_id: str, action, identity: Identity, note: Optional[str] = None) -> CorrectionRequest:
        if not identity.is_reviewer:
            logging.warning(f"employee_id: {identity.employee_id} attempted to review correction {correction_id}")
            raise AuthorizationError("Only reviewers can approve or deny corrections.")
        try:
            action = ReviewAction(action)
        except ValueError:
            raise ValidationError(f"Unknown review action: {action}")

        correction = self.get(correction_id)
        reviewer = identity.employee_id or identity.role.value

        with self.locks.hold(correction.employee_id):
            current = self.get(correction_id)
            if current.status != CorrectionStatus.PENDING:
                logging.warning(f"Re-review of correction {correction_id} rejected ({current.status.value})")
                raise ConflictError(f"Correction request is already {current.status.value}.")

            audit = None
            if action == ReviewAction.APPROVE:
                audit = self.applier.apply(current)

            decision = {
                "status": CorrectionStatus.APPROVED if audit is not None else CorrectionStatus.DENIED,
                "reviewed_at": self.clock(),
                "reviewed_by": reviewer,
                "decision_note": (note or "").strip() or None,
                "applied_audit": audit,
            }
            try:
                updated = self._transition(current, lambda c: c.model_copy(update=decision))
            except Exception:
                if audit is not None:
                    self.applier.restore_day(current.employee_id, current.date, audit.removed_records)
                raise

        logging.info(f"Correction {correction_id} {updated.status.value} by {reviewer}")
        return updated

    def query(
        self,
        identity: Identity,
        employee_id: Optional[str] = None,
        status=None,
        date_range: Optional[DateRange] = None,
    ) -> List[CorrectionRequest]:
        if not identity.is_reviewer:
            if employee_id and employee_id != identity.employee_id:
                raise AuthorizationError("Employees can only view their own correction requests.")
            employee_id = identity.employee_id
            if not employee_id:
                return []
        if status is not None:
            try:
                status = CorrectionStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown status: {status}")

        if employee_id:
            candidates = self.corrections.read_all(employee_id)
        else:
            candidates = self.corrections.read_everything()
        matches = [
            c for c in candidates
            if (status is None or c.status == status)
            and (date_range is None or date_range.contains(c.date))
        ]
        return sorted(matches, key=lambda c: c.submitted_at, reverse=True)

    def approved_for(self, employee_id: Optional[str] = None) -> List[CorrectionRequest]:
        candidates = self.corrections.read_all(employee_id) if employee_id else self.corrections.read_everything()
        return [c for c in candidates if c.status == CorrectionStatus.APPROVED]

from datetime import datetime, time, date
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class PunchType(str, Enum):
    CLOCK_IN = "CLOCK_IN"
    CLOCK_OUT = "CLOCK_OUT"
    MEAL_IN = "MEAL_IN"
    MEAL_OUT = "MEAL_OUT"
    REST_IN = "REST_IN"
    REST_OUT = "REST_OUT"


class Provenance(str, Enum):
    DIRECT = "direct"
    CORRECTION = "correction"


class Role(str, Enum):
    EMPLOYEE = "employee"
    ADMIN = "admin"


class Group(str, Enum):
    THERAPIST = "therapist"
    NON_THERAPIST = "non-therapist"
    ADMIN = "admin"


class CorrectionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    CANCELLED = "cancelled"


class ReviewAction(str, Enum):
    APPROVE = "approve"
    DENY = "deny"


class Identity(BaseModel):
    employee_id: Optional[str] = None
    role: Role = Role.EMPLOYEE
    group: Group = Group.NON_THERAPIST

    @property
    def is_reviewer(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_therapist(self) -> bool:
        return self.group == Group.THERAPIST


class Employee(BaseModel):
    employee_id: str
    name: str = ""
    role: Role = Role.EMPLOYEE
    group: Group = Group.NON_THERAPIST

    @property
    def display_name(self) -> str:
        return self.name or self.employee_id


class PunchEvent(BaseModel):
    employee_id: str
    punch_type: PunchType
    timestamp: datetime
    provenance: Provenance = Provenance.DIRECT
    correction_id: Optional[str] = None


class IncompleteDay(BaseModel):
    date: date
    missing: List[PunchType]


class AttendanceState(BaseModel):
    clocked_in: bool = False
    in_meal: bool = False
    in_rest: bool = False
    incomplete_days: List[IncompleteDay] = Field(default_factory=list)


class DailySummary(BaseModel):
    employee_id: str
    date: date
    first_in: Optional[time] = None
    last_out: Optional[time] = None
    events: List[str] = Field(default_factory=list)
    work_hours: float = 0.0
    lunch_hours: float = 0.0
    rest_hours: float = 0.0
    payable_hours: float = 0.0
    corrected: bool = False


class PeriodTotals(BaseModel):
    employee_id: str
    period_start: date
    period_end: date
    total_payable_hours: float
    total_break_hours: float


class DateRange(BaseModel):
    start: Optional[date] = None
    end: Optional[date] = None

    def contains(self, day: date) -> bool:
        if self.start is not None and day < self.start:
            return False
        if self.end is not None and day > self.end:
            return False
        return True


class ComputedHours(BaseModel):
    work_hours: float
    lunch_hours: float
    rest_hours: float
    payable_hours: float


class AppliedAudit(BaseModel):
    removed_records: List[PunchEvent]
    inserted_records: List[PunchEvent]
    computed_hours: ComputedHours


class CorrectionRequest(BaseModel):
    id: str
    employee_id: str
    date: date
    clock_in: time
    clock_out: time
    meal_in: Optional[time] = None
    meal_out: Optional[time] = None
    rest_in: Optional[time] = None
    rest_out: Optional[time] = None
    note: Optional[str] = None
    status: CorrectionStatus = CorrectionStatus.PENDING
    submitted_at: datetime
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    decision_note: Optional[str] = None
    applied_audit: Optional[AppliedAudit] = None

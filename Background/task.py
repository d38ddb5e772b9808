import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from Background.scheduler import MissedPunchScheduler
from main import TimeClock, create_time_clock
from models.errors import (
    AuthorizationError,
    ConflictError,
    IllegalTransitionError,
    NotFoundError,
    TimeClockError,
    ValidationError,
)
from models.schema import Group, Identity, Role
from utils.config import configure_logging, load_config
from utils.helper import parse_date, resolve_date_range

STATUS_CODES = {
    ValidationError: 400,
    IllegalTransitionError: 400,
    ConflictError: 409,
    NotFoundError: 404,
    AuthorizationError: 403,
}


class PunchRequest(BaseModel):
    type: str
    timestamp: Optional[datetime] = None


class CorrectionSubmission(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: Optional[str] = None
    clock_in: Optional[str] = Field(None, alias="clockIn")
    clock_out: Optional[str] = Field(None, alias="clockOut")
    meal_in: Optional[str] = Field(None, alias="mealIn")
    meal_out: Optional[str] = Field(None, alias="mealOut")
    rest_in: Optional[str] = Field(None, alias="restIn")
    rest_out: Optional[str] = Field(None, alias="restOut")
    note: Optional[str] = None


class ReviewRequest(BaseModel):
    action: str
    note: Optional[str] = None


def get_identity(
    x_employee_id: Optional[str] = Header(None),
    x_role: str = Header("employee"),
    x_group: str = Header("non-therapist"),
) -> Identity:
    """Identity as resolved by the upstream login layer."""
    try:
        return Identity(employee_id=x_employee_id or None, role=Role(x_role), group=Group(x_group))
    except ValueError:
        raise HTTPException(status_code=401, detail="Not logged in")


def run_missed_punch_check(time_clock: TimeClock, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now()
    logging.info("Running missed-punch check for all employees")
    missed = time_clock.find_missed_punches(now)
    for employee_id, days in missed.items():
        for day in days:
            kinds = ", ".join(k.value for k in day.missing)
            logging.warning(f"Missed punch for employee_id: {employee_id} on {day.date}: missing {kinds}")
    logging.info("Missed-punch check completed.")
    return missed


def create_app(
    time_clock: Optional[TimeClock] = None,
    config: Optional[dict] = None,
    schedule_sweep: bool = False,
) -> FastAPI:
    config = config or load_config()
    configure_logging(config)
    time_clock = time_clock or create_time_clock(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler = None
        if schedule_sweep:
            scheduler = MissedPunchScheduler(
                interval_minutes=config["sweep"]["interval_minutes"],
                job_func=lambda: run_missed_punch_check(time_clock),
            )
            scheduler.start()
        yield
        if scheduler is not None:
            scheduler.stop()

    app = FastAPI(lifespan=lifespan)

    @app.exception_handler(TimeClockError)
    async def rejection_handler(request: Request, exc: TimeClockError):
        return JSONResponse(
            status_code=STATUS_CODES.get(type(exc), 400),
            content={"success": False, "code": exc.code, "message": exc.reason},
        )

    @app.post("/punch")
    def record_punch(body: PunchRequest, identity: Identity = Depends(get_identity)):
        event = time_clock.record_punch(identity, body.type, body.timestamp)
        return {"success": True, "event": event}

    @app.get("/state")
    def get_state(employee: Optional[str] = None, identity: Identity = Depends(get_identity)):
        state = time_clock.get_state(identity, employee_id=employee)
        return {**state.model_dump(mode="json"), "role": identity.role.value, "group": identity.group.value}

    @app.get("/records")
    def list_records(employee: Optional[str] = None, identity: Identity = Depends(get_identity)):
        return time_clock.list_records(identity, employee)

    @app.get("/summaries")
    def daily_summaries(
        range_: str = Query("all", alias="range"),
        start: Optional[str] = None,
        end: Optional[str] = None,
        employee: Optional[str] = None,
        identity: Identity = Depends(get_identity),
    ):
        date_range = resolve_date_range(range_, start, end, today=time_clock.clock().date())
        return time_clock.get_daily_summaries(identity, date_range, employee)

    @app.get("/summary")
    def period_totals(date: Optional[str] = None, employee: Optional[str] = None, identity: Identity = Depends(get_identity)):
        day = parse_date(date) if date else None
        return time_clock.get_period_totals(identity, day, employee)

    @app.get("/employees")
    def list_employees(identity: Identity = Depends(get_identity)):
        return time_clock.list_employees(identity)

    @app.post("/corrections")
    def submit_correction(body: CorrectionSubmission, identity: Identity = Depends(get_identity)):
        correction_id = time_clock.submit_correction(identity, **body.model_dump())
        return {"success": True, "id": correction_id}

    @app.get("/corrections")
    def list_corrections(
        employee: Optional[str] = None,
        status: Optional[str] = None,
        range_: str = Query("all", alias="range"),
        start: Optional[str] = None,
        end: Optional[str] = None,
        identity: Identity = Depends(get_identity),
    ):
        date_range = resolve_date_range(range_, start, end, today=time_clock.clock().date())
        return time_clock.list_corrections(identity, employee, status, date_range)

    @app.post("/corrections/{correction_id}/cancel")
    def cancel_correction(correction_id: str, identity: Identity = Depends(get_identity)):
        time_clock.cancel_correction(correction_id, identity)
        return {"success": True}

    @app.post("/corrections/{correction_id}/review")
    def review_correction(correction_id: str, body: ReviewRequest, identity: Identity = Depends(get_identity)):
        correction = time_clock.review_correction(correction_id, body.action, identity, body.note)
        return {"success": True, "status": correction.status.value}

    return app

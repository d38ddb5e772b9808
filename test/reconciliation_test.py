import pytest
from datetime import datetime, date, time

from models.errors import ValidationError
from models.schema import CorrectionRequest, CorrectionStatus, PunchEvent, PunchType, Provenance
from reconciliation import HourLimits, ReconciliationApplier, compute_hours, synthesize_events
from utils.store import EmployeeLocks, InMemoryRecordStore


def make_correction(**times) -> CorrectionRequest:
    fields = {"clock_in": time(9, 0), "clock_out": time(17, 0)}
    fields.update(times)
    return CorrectionRequest(
        id="c1",
        employee_id="E001",
        date=date(2024, 3, 8),
        status=CorrectionStatus.PENDING,
        submitted_at=datetime(2024, 3, 9, 10),
        **fields,
    )


def test_compute_hours_subtracts_lunch_only():
    hours = compute_hours(time(9, 0), time(17, 0), time(12, 0), time(12, 30), time(15, 0), time(15, 10))
    assert hours.work_hours == 8.0
    assert hours.lunch_hours == 0.5
    assert hours.rest_hours == 0.17
    assert hours.payable_hours == 7.5


def test_compute_hours_wraps_forward():
    assert compute_hours(time(22, 0), time(6, 0)).work_hours == 8.0


def test_compute_hours_bounds():
    with pytest.raises(ValidationError):
        compute_hours(time(9, 0), time(9, 0))
    with pytest.raises(ValidationError):
        compute_hours(time(1, 0), time(23, 0))
    with pytest.raises(ValidationError):
        compute_hours(time(6, 0), time(20, 0), time(7, 0), time(14, 0))
    with pytest.raises(ValidationError):
        compute_hours(time(6, 0), time(20, 0), rest_in=time(10, 0), rest_out=time(13, 30))


def test_compute_hours_custom_limits():
    with pytest.raises(ValidationError):
        compute_hours(time(9, 0), time(19, 0), limits=HourLimits(max_work_hours=8))


def test_synthesize_events_counts():
    assert len(synthesize_events(make_correction())) == 2
    assert len(synthesize_events(make_correction(meal_in=time(12, 0), meal_out=time(12, 30)))) == 4
    events = synthesize_events(make_correction(
        meal_in=time(12, 0), meal_out=time(12, 30), rest_in=time(15, 0), rest_out=time(15, 15),
    ))
    assert [e.punch_type for e in events] == [
        PunchType.CLOCK_IN, PunchType.MEAL_IN, PunchType.MEAL_OUT,
        PunchType.REST_IN, PunchType.REST_OUT, PunchType.CLOCK_OUT,
    ]
    assert all(e.provenance == Provenance.CORRECTION and e.correction_id == "c1" for e in events)


def test_apply_replaces_only_that_day():
    store = InMemoryRecordStore(PunchEvent)
    store.append("E001", [
        PunchEvent(employee_id="E001", punch_type="CLOCK_IN", timestamp=datetime(2024, 3, 8, 8)),
        PunchEvent(employee_id="E001", punch_type="CLOCK_IN", timestamp=datetime(2024, 3, 9, 8)),
    ])
    applier = ReconciliationApplier(store, EmployeeLocks())

    audit = applier.apply(make_correction())

    assert [e.timestamp for e in audit.removed_records] == [datetime(2024, 3, 8, 8)]
    assert len(audit.inserted_records) == 2
    assert audit.computed_hours.payable_hours == 8.0
    remaining = sorted(store.read_all("E001"), key=lambda e: e.timestamp)
    assert [e.timestamp for e in remaining] == [datetime(2024, 3, 8, 9), datetime(2024, 3, 8, 17), datetime(2024, 3, 9, 8)]


def test_repeated_apply_does_not_duplicate():
    store = InMemoryRecordStore(PunchEvent)
    applier = ReconciliationApplier(store, EmployeeLocks())
    applier.apply(make_correction())
    applier.apply(make_correction())
    assert len(store.read_all("E001")) == 2


def test_invalid_hours_leave_log_untouched():
    store = InMemoryRecordStore(PunchEvent)
    store.append("E001", [PunchEvent(employee_id="E001", punch_type="CLOCK_IN", timestamp=datetime(2024, 3, 8, 8))])
    applier = ReconciliationApplier(store, EmployeeLocks())

    with pytest.raises(ValidationError):
        applier.apply(make_correction(clock_out=time(9, 0)))
    assert len(store.read_all("E001")) == 1
    assert store.version("E001") == 1


def test_restore_day_puts_back_previous_events():
    store = InMemoryRecordStore(PunchEvent)
    original = PunchEvent(employee_id="E001", punch_type="CLOCK_IN", timestamp=datetime(2024, 3, 8, 8))
    store.append("E001", [original])
    applier = ReconciliationApplier(store, EmployeeLocks())

    audit = applier.apply(make_correction())
    applier.restore_day("E001", date(2024, 3, 8), audit.removed_records)
    assert store.read_all("E001") == [original]


def test_apply_rejects_span_crossing_midnight():
    store = InMemoryRecordStore(PunchEvent)
    applier = ReconciliationApplier(store, EmployeeLocks())

    with pytest.raises(ValidationError) as exc:
        applier.apply(make_correction(clock_in=time(22, 0), clock_out=time(6, 0)))
    assert "Work must end after it starts" in exc.value.reason
    assert store.read_all("E001") == []


def test_compute_hours_without_wrap():
    assert compute_hours(time(9, 0), time(17, 0), wrap=False).work_hours == 8.0
    with pytest.raises(ValidationError):
        compute_hours(time(22, 0), time(6, 0), wrap=False)
    with pytest.raises(ValidationError):
        compute_hours(time(9, 0), time(17, 0), time(13, 0), time(12, 0), wrap=False)


def test_reapply_reports_superseded_correction_events():
    store = InMemoryRecordStore(PunchEvent)
    applier = ReconciliationApplier(store, EmployeeLocks())
    first = applier.apply(make_correction())

    second = applier.apply(make_correction(clock_in=time(8, 0), clock_out=time(16, 0)).model_copy(update={"id": "c2"}))

    assert second.removed_records == first.inserted_records
    assert all(e.provenance == Provenance.CORRECTION and e.correction_id == "c1" for e in second.removed_records)
    assert {e.correction_id for e in store.read_all("E001")} == {"c2"}

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import (
    ApiError,
    DuplicateScheduleConflictError,
    EntityValidationError,
    InvalidIdentifierError,
    MissingRequiredFieldError,
    NotFoundError,
)
from app.models import (
    ActivityRecord,
    Machine,
    PermitType,
    Process,
    ProductionArea,
    Shift,
    Supply,
    TimeCategory,
    WorkOrder,
)
from app.schemas import ActivityInput, ShiftCompleteRequest
from app.services.calendar_days import as_utc, day_range, normalize_day
from app.services.effective_time import ROLLOVER, round_minutes
from app.services.identifiers import parse_identifier, unique_identifiers
from app.services.shifts import (
    find_shift_for_day,
    get_operator_or_404,
    get_shift_or_404,
    refresh_shift_totals,
)

logger = logging.getLogger("app.ingest")

MIN_DURATION_MINUTES = 1

REQUIRED_ACTIVITY_FIELDS = (
    "work_order",
    "production_area",
    "machines",
    "processes",
    "supplies",
    "time_category",
    "start_time",
    "end_time",
)

_NOT_FOUND_CODES: dict[type, str] = {
    WorkOrder: "WORK_ORDER_NOT_FOUND",
    ProductionArea: "PRODUCTION_AREA_NOT_FOUND",
    Machine: "MACHINE_NOT_FOUND",
    Process: "PROCESS_NOT_FOUND",
    Supply: "SUPPLY_NOT_FOUND",
}


@dataclass(frozen=True)
class ValidatedActivity:
    position: int | None
    work_order: int | str
    production_area_id: int
    machine_ids: list[int]
    process_ids: list[int]
    supply_ids: list[int]
    time_category: TimeCategory
    permit_type: PermitType | None
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    notes: str | None

    def field(self, name: str) -> str:
        return _field_path(self.position, name)


@dataclass(frozen=True)
class IngestResult:
    shift: Shift
    created_ids: list[int]


def _field_path(position: int | None, name: str) -> str:
    if position is None:
        return name
    return f"activities[{position}].{name}"


def activity_interval(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    # An end before the start crosses midnight; equal values are an empty entry.
    start_utc = as_utc(start)
    end_utc = as_utc(end)
    if end_utc < start_utc:
        end_utc = end_utc + ROLLOVER
    return start_utc, end_utc


def compute_activity_duration(start: datetime, end: datetime, supplied: int | None = None) -> int:
    if supplied is not None and supplied > 0:
        return int(supplied)
    start_utc, end_utc = activity_interval(start, end)
    minutes = round_minutes(end_utc - start_utc)
    return minutes if minutes > 0 else MIN_DURATION_MINUTES


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, list):
        return not value
    return False


def _ensure_exists(db: Session, model: type, ids: Sequence[int], *, field: str) -> None:
    found = set(db.scalars(select(model.id).where(model.id.in_(list(ids)))).all())
    missing = [identifier for identifier in ids if identifier not in found]
    if missing:
        raise NotFoundError(
            _NOT_FOUND_CODES[model],
            f"{model.__name__} not found.",
            field=field,
            value=missing[0],
        )


def _validate_work_order(db: Session, raw: int | str, *, field: str) -> int | str:
    # Integers reference an existing work order; strings are codes that may be new.
    if isinstance(raw, str):
        return raw.strip()
    work_order_id = parse_identifier(raw, field=field)
    _ensure_exists(db, WorkOrder, [work_order_id], field=field)
    return work_order_id


def _validate_reference_list(db: Session, model: type, raw: Any, *, field: str) -> list[int]:
    if not isinstance(raw, list):
        raise InvalidIdentifierError(field, raw, f"Field '{field}' must be a non-empty list of identifiers.")
    ids = [parse_identifier(item, field=f"{field}[{index}]") for index, item in enumerate(raw)]
    ids = unique_identifiers(ids, field=field)
    _ensure_exists(db, model, ids, field=field)
    return ids


def validate_activity(db: Session, activity: ActivityInput, *, position: int | None = None) -> ValidatedActivity:
    """Check one activity payload against the catalogs without writing anything."""
    for name in REQUIRED_ACTIVITY_FIELDS:
        if _is_blank(getattr(activity, name)):
            raise MissingRequiredFieldError(_field_path(position, name))

    work_order = _validate_work_order(db, activity.work_order, field=_field_path(position, "work_order"))

    area_field = _field_path(position, "production_area")
    production_area_id = parse_identifier(activity.production_area, field=area_field)
    _ensure_exists(db, ProductionArea, [production_area_id], field=area_field)

    machine_ids = _validate_reference_list(db, Machine, activity.machines, field=_field_path(position, "machines"))
    process_ids = _validate_reference_list(db, Process, activity.processes, field=_field_path(position, "processes"))
    supply_ids = _validate_reference_list(db, Supply, activity.supplies, field=_field_path(position, "supplies"))

    category_field = _field_path(position, "time_category")
    try:
        time_category = TimeCategory.parse(activity.time_category)
    except ValueError as exc:
        raise EntityValidationError(str(exc), field=category_field, value=activity.time_category) from exc

    permit_type: PermitType | None = None
    if time_category is TimeCategory.LABOR_PERMIT and not _is_blank(activity.permit_type):
        permit_field = _field_path(position, "permit_type")
        try:
            permit_type = PermitType.parse(activity.permit_type)
        except ValueError as exc:
            raise EntityValidationError(str(exc), field=permit_field, value=activity.permit_type) from exc

    return ValidatedActivity(
        position=position,
        work_order=work_order,
        production_area_id=production_area_id,
        machine_ids=machine_ids,
        process_ids=process_ids,
        supply_ids=supply_ids,
        time_category=time_category,
        permit_type=permit_type,
        start_time=activity.start_time,
        end_time=activity.end_time,
        duration_minutes=compute_activity_duration(
            activity.start_time,
            activity.end_time,
            activity.duration_minutes,
        ),
        notes=activity.notes,
    )


def _overlaps(first: tuple[datetime, datetime], second: tuple[datetime, datetime]) -> bool:
    return first[0] < second[1] and second[0] < first[1]


def ensure_no_schedule_conflicts(
    db: Session,
    operator_id: int,
    day: datetime,
    activities: Sequence[ValidatedActivity],
) -> None:
    """Reject work-schedule entries overlapping another one for the same operator and day.

    Only records still attached to a shift count; deleting a shift frees its day.
    """
    incoming = [item for item in activities if item.time_category is TimeCategory.WORK_SCHEDULE]
    if not incoming:
        return

    bounds = day_range(day)
    stored = db.scalars(
        select(ActivityRecord).where(
            ActivityRecord.operator_id == operator_id,
            ActivityRecord.time_category == TimeCategory.WORK_SCHEDULE,
            ActivityRecord.shift_id.is_not(None),
            ActivityRecord.date >= bounds.start,
            ActivityRecord.date <= bounds.end,
        )
    ).all()

    taken: list[tuple[tuple[datetime, datetime], dict[str, Any]]] = [
        (activity_interval(record.start_time, record.end_time), {"activity_id": record.id})
        for record in stored
        if record.start_time is not None and record.end_time is not None
    ]
    for item in incoming:
        interval = activity_interval(item.start_time, item.end_time)
        for other, source in taken:
            if _overlaps(interval, other):
                raise DuplicateScheduleConflictError(
                    "Operator already has a work schedule overlapping this entry.",
                    field=item.field("start_time"),
                    detail={"conflicts_with": source},
                )
        taken.append((interval, {"position": item.position}))


def _resolve_work_order_id(db: Session, work_order: int | str) -> int:
    if isinstance(work_order, int):
        return work_order

    existing = db.scalar(select(WorkOrder).where(WorkOrder.code == work_order))
    if existing is not None:
        return existing.id

    created = WorkOrder(code=work_order)
    db.add(created)
    db.flush()
    logger.info("work_order_created", extra={"work_order_id": created.id, "code": work_order})
    return created.id


def _persist_activity(db: Session, shift: Shift, item: ValidatedActivity) -> ActivityRecord:
    record = ActivityRecord(
        operator_id=shift.operator_id,
        shift_id=shift.id,
        date=normalize_day(shift.date),
        work_order_id=_resolve_work_order_id(db, item.work_order),
        production_area_id=item.production_area_id,
        time_category=item.time_category,
        permit_type=item.permit_type,
        start_time=item.start_time,
        end_time=item.end_time,
        duration_minutes=item.duration_minutes,
        notes=item.notes,
    )
    record.machines = list(db.scalars(select(Machine).where(Machine.id.in_(item.machine_ids))).all())
    record.processes = list(db.scalars(select(Process).where(Process.id.in_(item.process_ids))).all())
    record.supplies = list(db.scalars(select(Supply).where(Supply.id.in_(item.supply_ids))).all())
    db.add(record)
    db.flush()
    return record


def _attach_and_commit(db: Session, shift: Shift, validated: Sequence[ValidatedActivity]) -> list[int]:
    created_ids: list[int] = []
    try:
        # Sequential on purpose: a new work-order code must exist before the next lookup.
        for item in validated:
            created_ids.append(_persist_activity(db, shift, item).id)

        shift.activity_ids = unique_identifiers([*(shift.activity_ids or []), *created_ids])
        refresh_shift_totals(db, shift)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise EntityValidationError(
            "Activity record violates a storage constraint.",
            detail=str(exc.orig),
        ) from exc
    db.refresh(shift)
    return created_ids


def ingest_batch(
    db: Session,
    shift: Shift,
    activities: Sequence[ActivityInput],
    *,
    request_id: str | None = None,
) -> IngestResult:
    """Validate every activity first, then persist them all against ``shift``.

    Any validation failure leaves the store untouched.
    """
    if not activities:
        raise MissingRequiredFieldError("activities")

    validated = [validate_activity(db, item, position=index) for index, item in enumerate(activities)]
    ensure_no_schedule_conflicts(db, shift.operator_id, shift.date, validated)

    created_ids = _attach_and_commit(db, shift, validated)
    logger.info(
        "activity_batch_ingested",
        extra={
            "shift_id": shift.id,
            "operator_id": shift.operator_id,
            "created_activity_ids": created_ids,
            "request_id": request_id,
        },
    )
    return IngestResult(shift=shift, created_ids=created_ids)


def ingest_single(
    db: Session,
    shift_id: int,
    activity: ActivityInput,
    *,
    request_id: str | None = None,
) -> IngestResult:
    shift = get_shift_or_404(db, shift_id)
    item = validate_activity(db, activity)
    ensure_no_schedule_conflicts(db, shift.operator_id, shift.date, [item])

    created_ids = _attach_and_commit(db, shift, [item])
    logger.info(
        "activity_ingested",
        extra={
            "shift_id": shift.id,
            "activity_id": created_ids[0],
            "request_id": request_id,
        },
    )
    return IngestResult(shift=shift, created_ids=created_ids)


def _same_instant(current: datetime | None, incoming: datetime) -> bool:
    return current is not None and as_utc(current) == as_utc(incoming)


def save_complete_shift(
    db: Session,
    payload: ShiftCompleteRequest,
    *,
    request_id: str | None = None,
) -> IngestResult:
    """Find or create the operator's shift for the day and ingest all activities into it."""
    operator_id = parse_identifier(payload.operator_id, field="operator_id")
    if not payload.activities:
        raise MissingRequiredFieldError("activities")
    get_operator_or_404(db, operator_id)
    day = normalize_day(payload.date)

    shift = find_shift_for_day(db, operator_id, day)
    created_shift = shift is None
    try:
        if shift is None:
            shift = Shift(
                operator_id=operator_id,
                date=day,
                start_time=payload.start_time,
                end_time=payload.end_time,
                activity_ids=[],
                total_activity_hours=0,
                total_activity_minutes=0,
                summed_activity_minutes=0,
                has_overlaps=False,
            )
            db.add(shift)
            db.flush()
        else:
            if payload.start_time is not None and not _same_instant(shift.start_time, payload.start_time):
                shift.start_time = payload.start_time
            if payload.end_time is not None and not _same_instant(shift.end_time, payload.end_time):
                shift.end_time = payload.end_time

        result = ingest_batch(db, shift, payload.activities, request_id=request_id)
    except ApiError:
        db.rollback()
        raise

    logger.info(
        "shift_saved",
        extra={
            "shift_id": result.shift.id,
            "operator_id": operator_id,
            "date": day.isoformat(),
            "created_shift": created_shift,
            "activity_count": len(result.created_ids),
        },
    )
    return result

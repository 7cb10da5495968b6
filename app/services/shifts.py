from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Literal

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.audit import AuditAction, audit_shift_event, log_audit
from app.errors import ApiError, EntityValidationError, NotFoundError
from app.models import ActivityRecord, AuditActorType, Operator, Shift
from app.schemas import (
    ActivityRecordRead,
    NamedRefRead,
    RecalculationStatsRead,
    ShiftCreateRequest,
    ShiftRead,
    ShiftUpdateRequest,
    TimeAmountRead,
)
from app.services.calendar_days import DateLike, as_utc, day_range, normalize_day
from app.services.consolidation import consolidate_operator_shifts
from app.services.effective_time import (
    TimeAmount,
    apply_shift_totals,
    cached_activity_time,
    compute_effective_time,
    recompute_shift_totals,
)
from app.services.identifiers import parse_identifier, unique_identifiers

logger = logging.getLogger("app.shifts")

ShiftSortField = Literal["date", "id"]
_SORT_COLUMNS = {"date": Shift.date, "id": Shift.id}


def _activity_load_options() -> tuple:
    return (
        selectinload(ActivityRecord.work_order),
        selectinload(ActivityRecord.production_area),
        selectinload(ActivityRecord.machines),
        selectinload(ActivityRecord.processes),
        selectinload(ActivityRecord.supplies),
    )


def load_activities(db: Session, activity_ids: Sequence[int]) -> list[ActivityRecord]:
    """Fetch activity records in the order of ``activity_ids``; unknown ids are skipped."""
    if not activity_ids:
        return []
    rows = db.scalars(
        select(ActivityRecord)
        .options(*_activity_load_options())
        .where(ActivityRecord.id.in_(list(activity_ids)))
    ).all()
    by_id = {row.id: row for row in rows}
    return [by_id[activity_id] for activity_id in activity_ids if activity_id in by_id]


def load_shift_activities(db: Session, shift: Shift) -> list[ActivityRecord]:
    return load_activities(db, unique_identifiers(shift.activity_ids or []))


def refresh_shift_totals(db: Session, shift: Shift) -> Shift:
    return apply_shift_totals(shift, recompute_shift_totals(load_shift_activities(db, shift)))


def get_shift_or_404(db: Session, shift_id: int) -> Shift:
    shift = db.get(Shift, shift_id)
    if shift is None:
        raise NotFoundError("SHIFT_NOT_FOUND", "Shift not found.", field="shift_id", value=shift_id)
    return shift


def get_operator_or_404(db: Session, operator_id: int) -> Operator:
    operator = db.get(Operator, operator_id)
    if operator is None:
        raise NotFoundError("OPERATOR_NOT_FOUND", "Operator not found.", field="operator_id", value=operator_id)
    return operator


def find_shift_for_day(db: Session, operator_id: int, day: DateLike) -> Shift | None:
    bounds = day_range(day)
    return db.scalar(
        select(Shift)
        .where(
            Shift.operator_id == operator_id,
            Shift.date >= bounds.start,
            Shift.date <= bounds.end,
        )
        .order_by(Shift.id.asc())
        .limit(1)
    )


def to_activity_read(record: ActivityRecord) -> ActivityRecordRead:
    return ActivityRecordRead(
        id=record.id,
        operator_id=record.operator_id,
        shift_id=record.shift_id,
        date=record.date,
        work_order_id=record.work_order_id,
        work_order_code=record.work_order.code if record.work_order is not None else None,
        production_area_id=record.production_area_id,
        production_area_name=record.production_area.name if record.production_area is not None else None,
        machines=[NamedRefRead(id=item.id, name=item.name) for item in record.machines],
        processes=[NamedRefRead(id=item.id, name=item.name) for item in record.processes],
        supplies=[NamedRefRead(id=item.id, name=item.name) for item in record.supplies],
        time_category=record.time_category,
        permit_type=record.permit_type,
        start_time=record.start_time,
        end_time=record.end_time,
        duration_minutes=record.duration_minutes,
        notes=record.notes,
    )


def _time_read(value: TimeAmount) -> TimeAmountRead:
    return TimeAmountRead(hours=value.hours, minutes=value.minutes)


def build_shift_read(
    shift: Shift,
    activities: Sequence[ActivityRecord],
    *,
    include_activities: bool = True,
) -> ShiftRead:
    # Payable time is derived on every read; nothing stored is trusted for it.
    effective = compute_effective_time(shift, activities, mode="boundary")
    operator = shift.operator
    return ShiftRead(
        id=shift.id,
        operator_id=shift.operator_id,
        operator_name=operator.name if operator is not None else None,
        date=shift.date,
        start_time=shift.start_time,
        end_time=shift.end_time,
        activity_ids=list(shift.activity_ids or []),
        activities=[to_activity_read(item) for item in activities] if include_activities else [],
        total_activity_time=_time_read(cached_activity_time(shift)),
        summed_activity_minutes=shift.summed_activity_minutes or 0,
        has_overlaps=bool(shift.has_overlaps),
        effective_payable_time=_time_read(effective),
    )


def read_shift(db: Session, shift: Shift) -> ShiftRead:
    return build_shift_read(shift, load_shift_activities(db, shift))


def create_shift(db: Session, payload: ShiftCreateRequest) -> Shift:
    operator_id = parse_identifier(payload.operator_id, field="operator_id")
    get_operator_or_404(db, operator_id)
    day = normalize_day(payload.date)

    existing = find_shift_for_day(db, operator_id, day)
    if existing is not None:
        raise ApiError(
            status_code=409,
            code="SHIFT_ALREADY_EXISTS",
            message="A shift already exists for this operator on this date.",
            field="date",
            value=day.date().isoformat(),
            detail={"shift_id": existing.id},
        )

    shift = Shift(
        operator_id=operator_id,
        date=day,
        activity_ids=[],
        total_activity_hours=0,
        total_activity_minutes=0,
        summed_activity_minutes=0,
        has_overlaps=False,
    )
    db.add(shift)
    db.commit()
    db.refresh(shift)
    logger.info("shift_created", extra={"shift_id": shift.id, "operator_id": operator_id, "date": day.isoformat()})
    return shift


def list_shifts(
    db: Session,
    *,
    limit: int | None = None,
    sort: str | None = None,
) -> list[ShiftRead]:
    sort_field: str = "date"
    descending = True
    if sort:
        field_part, _, direction = sort.partition(":")
        if field_part not in _SORT_COLUMNS or direction not in ("", "asc", "desc"):
            raise ApiError(
                status_code=400,
                code="INVALID_SORT",
                message="sort must be 'date' or 'id' with an optional ':asc' or ':desc'.",
                field="sort",
                value=sort,
            )
        sort_field = field_part
        descending = direction != "asc"

    column = _SORT_COLUMNS[sort_field]
    stmt = (
        select(Shift)
        .options(selectinload(Shift.operator))
        .order_by(column.desc() if descending else column.asc(), Shift.id.desc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)

    shifts = list(db.scalars(stmt).all())
    wanted_ids = unique_identifiers(ref for shift in shifts for ref in (shift.activity_ids or []))
    by_id = {record.id: record for record in load_activities(db, wanted_ids)}
    reads: list[ShiftRead] = []
    for shift in shifts:
        refs = unique_identifiers(shift.activity_ids or [])
        reads.append(build_shift_read(shift, [by_id[ref] for ref in refs if ref in by_id]))
    return reads


def list_operator_shifts(
    db: Session,
    *,
    operator_id: int,
    day: DateLike | None = None,
    request_id: str | None = None,
) -> list[ShiftRead]:
    get_operator_or_404(db, operator_id)

    stmt = select(Shift).where(Shift.operator_id == operator_id).order_by(Shift.date.desc(), Shift.id.asc())
    if day is not None:
        bounds = day_range(day, field="day")
        stmt = stmt.where(Shift.date >= bounds.start, Shift.date <= bounds.end)

    shifts = list(db.scalars(stmt).all())
    if not shifts:
        return []

    consolidated = consolidate_operator_shifts(db, operator_id, shifts, request_id=request_id)
    return [read_shift(db, shift) for shift in consolidated]


def list_operator_day_shifts(
    db: Session,
    *,
    operator_id: int,
    day: DateLike,
    request_id: str | None = None,
) -> list[ShiftRead]:
    bounds = day_range(day, field="day")
    shifts = list(
        db.scalars(
            select(Shift)
            .where(
                Shift.operator_id == operator_id,
                Shift.date >= bounds.start,
                Shift.date <= bounds.end,
            )
            .order_by(Shift.id.asc())
        ).all()
    )
    if not shifts:
        raise NotFoundError(
            "SHIFT_NOT_FOUND",
            "No shifts found for this operator on this date.",
            field="day",
            value=bounds.start.date().isoformat(),
        )

    consolidated = consolidate_operator_shifts(db, operator_id, shifts, request_id=request_id)
    return [read_shift(db, shift) for shift in consolidated]


def _load_reassigned_activities(db: Session, shift: Shift, activity_ids: list[int]) -> list[ActivityRecord]:
    records = load_activities(db, activity_ids)
    found = {record.id for record in records}
    for activity_id in activity_ids:
        if activity_id not in found:
            raise NotFoundError(
                "ACTIVITY_NOT_FOUND",
                "Activity not found.",
                field="activity_ids",
                value=activity_id,
            )
    for record in records:
        if record.operator_id != shift.operator_id:
            raise EntityValidationError(
                "Activity belongs to another operator.",
                field="activity_ids",
                value=record.id,
                detail={"operator_id": record.operator_id},
            )
    return records


def _reassign_activities(
    db: Session,
    shift: Shift,
    records: Sequence[ActivityRecord],
) -> tuple[list[int], list[int]]:
    """Point ``records`` at ``shift`` and detach whatever it no longer lists.

    Activities taken from another shift are removed from that shift's list
    and its totals are refreshed. Returns the added and removed ids.
    """
    new_ids = [record.id for record in records]
    dropped = db.scalars(
        select(ActivityRecord).where(
            ActivityRecord.shift_id == shift.id,
            ActivityRecord.id.not_in(new_ids),
        )
    ).all()
    removed = [record.id for record in dropped]
    for record in dropped:
        record.shift_id = None

    added: list[int] = []
    previous_owners: dict[int, list[int]] = {}
    for record in records:
        if record.shift_id == shift.id:
            continue
        if record.shift_id is not None:
            previous_owners.setdefault(record.shift_id, []).append(record.id)
        record.shift_id = shift.id
        added.append(record.id)

    for owner_id, moved_ids in previous_owners.items():
        owner = db.get(Shift, owner_id)
        if owner is None:
            continue
        owner.activity_ids = [ref for ref in unique_identifiers(owner.activity_ids or []) if ref not in moved_ids]
        refresh_shift_totals(db, owner)

    shift.activity_ids = new_ids
    return added, removed


def update_shift(
    db: Session,
    shift_id: int,
    payload: ShiftUpdateRequest,
    *,
    request_id: str | None = None,
) -> Shift:
    shift = get_shift_or_404(db, shift_id)
    fields_set = payload.model_fields_set

    records: list[ActivityRecord] | None = None
    if "activity_ids" in fields_set:
        records = _load_reassigned_activities(db, shift, unique_identifiers(payload.activity_ids or []))

    # Only fields present in the request are touched; an explicit null clears.
    if "start_time" in fields_set:
        shift.start_time = payload.start_time
    if "end_time" in fields_set:
        shift.end_time = payload.end_time
    added: list[int] = []
    removed: list[int] = []
    if records is not None:
        added, removed = _reassign_activities(db, shift, records)

    refresh_shift_totals(db, shift)
    db.commit()
    db.refresh(shift)
    logger.info("shift_updated", extra={"shift_id": shift.id, "fields": sorted(fields_set)})

    if added or removed:
        audit_shift_event(
            db,
            AuditAction.SHIFT_ACTIVITIES_REASSIGNED,
            shift_id=shift.id,
            operator_id=shift.operator_id,
            day=as_utc(shift.date),
            request_id=request_id,
            added_activity_ids=added,
            removed_activity_ids=removed,
        )
    return shift


def delete_shift(db: Session, shift_id: int, *, actor_id: str = "admin", request_id: str | None = None) -> None:
    shift = get_shift_or_404(db, shift_id)
    operator_id = shift.operator_id
    day = as_utc(shift.date)

    detached = db.execute(
        update(ActivityRecord).where(ActivityRecord.shift_id == shift_id).values(shift_id=None)
    ).rowcount
    db.delete(shift)
    db.commit()

    audit_shift_event(
        db,
        AuditAction.SHIFT_DELETED,
        shift_id=shift_id,
        operator_id=operator_id,
        day=day,
        actor_id=actor_id,
        request_id=request_id,
        detached_activities=detached,
    )


def recalculate_all_shifts(
    db: Session,
    *,
    actor_id: str = "admin",
    request_id: str | None = None,
) -> RecalculationStatsRead:
    """Recompute cached totals for every shift.

    A shift that fails is rolled back, counted and skipped so the rest of the
    batch still runs.
    """
    shift_ids = list(db.scalars(select(Shift.id).order_by(Shift.id.asc())).all())

    updated = 0
    errors = 0
    shifts_with_overlaps = 0
    recovered_minutes = 0
    for shift_id in shift_ids:
        try:
            shift = db.get(Shift, shift_id)
            if shift is None:
                continue
            totals = recompute_shift_totals(load_shift_activities(db, shift))
            apply_shift_totals(shift, totals)
            db.commit()
        except (SQLAlchemyError, ApiError) as exc:
            db.rollback()
            errors += 1
            logger.warning(
                "shift_recalculation_failed",
                extra={"shift_id": shift_id, "error": str(exc)},
            )
            continue

        updated += 1
        if totals.has_overlaps:
            shifts_with_overlaps += 1
            recovered_minutes += totals.overlap_minutes

    stats = RecalculationStatsRead(
        total_shifts=len(shift_ids),
        updated_shifts=updated,
        errors=errors,
        shifts_with_overlaps=shifts_with_overlaps,
        recovered_minutes=recovered_minutes,
        recovered_time=_time_read(TimeAmount.from_minutes(recovered_minutes)),
    )
    logger.info("shift_recalculation_complete", extra=stats.model_dump())
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id,
        action=AuditAction.SHIFTS_RECALCULATED,
        success=errors == 0,
        entity_type="shift",
        details=stats.model_dump(),
        request_id=request_id,
    )
    return stats


from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from datetime import date, datetime

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.audit import AuditAction, audit_shift_event
from app.errors import ShiftConsolidationError
from app.models import ActivityRecord, AuditActorType, Shift
from app.services.calendar_days import as_utc, day_key, normalize_day
from app.services.identifiers import unique_identifiers

logger = logging.getLogger("app.consolidation")


def group_shifts_by_day(shifts: Sequence[Shift]) -> dict[date, list[Shift]]:
    groups: dict[date, list[Shift]] = defaultdict(list)
    for shift in shifts:
        groups[day_key(shift.date)].append(shift)
    return groups


def consolidate_operator_shifts(
    db: Session,
    operator_id: int,
    shifts: Sequence[Shift],
    *,
    request_id: str | None = None,
) -> list[Shift]:
    """Leave at most one shift per calendar day for the operator, newest first.

    Days with a single shift only get their date pinned to UTC midnight. Days
    with several shifts are replaced by one new shift holding the union of
    their activity references. Each day is committed on its own; a failing
    day is rolled back and aborts the whole call.
    """
    consolidated: list[Shift] = []
    for key, members in group_shifts_by_day(shifts).items():
        normalized = normalize_day(key)
        if len(members) == 1:
            consolidated.append(_normalize_single_shift(db, operator_id, members[0], normalized))
        else:
            consolidated.append(
                _merge_duplicate_shifts(db, operator_id, members, normalized, request_id=request_id)
            )

    consolidated.sort(key=lambda item: as_utc(item.date), reverse=True)
    return consolidated


def _normalize_single_shift(db: Session, operator_id: int, shift: Shift, normalized: datetime) -> Shift:
    previous_date = as_utc(shift.date)
    if previous_date == normalized:
        return shift

    shift.date = normalized
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "shift_date_normalization_failed",
            extra={"operator_id": operator_id, "shift_id": shift.id},
        )
        raise ShiftConsolidationError(operator_id, str(exc)) from exc

    logger.info(
        "shift_date_normalized",
        extra={
            "operator_id": operator_id,
            "shift_id": shift.id,
            "previous_date": previous_date.isoformat(),
            "date": normalized.isoformat(),
        },
    )
    return shift


def _merge_duplicate_shifts(
    db: Session,
    operator_id: int,
    members: Sequence[Shift],
    normalized: datetime,
    *,
    request_id: str | None,
) -> Shift:
    merged_activity_ids = unique_identifiers(
        ref for member in members for ref in (member.activity_ids or [])
    )
    # Captured before any write so the new row can never be part of the deletion set.
    superseded_ids = [member.id for member in members]

    try:
        for member in members:
            db.delete(member)
        db.flush()

        merged = Shift(
            operator_id=operator_id,
            date=normalized,
            activity_ids=merged_activity_ids,
            total_activity_hours=0,
            total_activity_minutes=0,
            summed_activity_minutes=0,
            has_overlaps=False,
        )
        db.add(merged)
        db.flush()

        if merged_activity_ids:
            db.execute(
                update(ActivityRecord)
                .where(ActivityRecord.id.in_(merged_activity_ids))
                .values(shift_id=merged.id)
            )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "shift_consolidation_failed",
            extra={
                "operator_id": operator_id,
                "date": normalized.isoformat(),
                "shift_ids": superseded_ids,
            },
        )
        raise ShiftConsolidationError(operator_id, str(exc)) from exc

    logger.info(
        "shifts_consolidated",
        extra={
            "operator_id": operator_id,
            "date": normalized.isoformat(),
            "superseded_shift_ids": superseded_ids,
            "shift_id": merged.id,
            "activity_count": len(merged_activity_ids),
        },
    )
    audit_shift_event(
        db,
        AuditAction.SHIFTS_CONSOLIDATED,
        shift_id=merged.id,
        operator_id=operator_id,
        day=normalized,
        actor_type=AuditActorType.SYSTEM,
        actor_id="consolidation",
        request_id=request_id,
        superseded_shift_ids=superseded_ids,
        activity_count=len(merged_activity_ids),
    )
    return merged

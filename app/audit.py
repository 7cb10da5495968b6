from __future__ import annotations

import enum
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from app.models import AuditActorType, AuditLog

logger = logging.getLogger("app.audit")


class AuditAction(str, enum.Enum):
    SHIFT_DELETED = "SHIFT_DELETED"
    SHIFT_ACTIVITIES_REASSIGNED = "SHIFT_ACTIVITIES_REASSIGNED"
    SHIFTS_CONSOLIDATED = "SHIFTS_CONSOLIDATED"
    SHIFTS_RECALCULATED = "SHIFTS_RECALCULATED"
    PERMIT_REPORT_EXPORT_XLSX = "PERMIT_REPORT_EXPORT_XLSX"


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: AuditAction,
    success: bool,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    """Persist an audit row in its own commit.

    A failed audit write is logged and rolled back; it never fails the
    operation that triggered it.
    """
    payload = details or {}
    audit = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=actor_id,
        action=action.value,
        entity_type=entity_type,
        entity_id=entity_id,
        success=success,
        details=payload,
    )
    db.add(audit)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action.value,
                "entity_id": entity_id,
                "operator_id": payload.get("operator_id"),
            },
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action.value,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operator_id": payload.get("operator_id"),
            "success": success,
            "details": payload,
        },
    )


def audit_shift_event(
    db: Session,
    action: AuditAction,
    *,
    shift_id: int,
    operator_id: int,
    day: datetime | None = None,
    actor_type: AuditActorType = AuditActorType.ADMIN,
    actor_id: str = "admin",
    request_id: str | None = None,
    **details: Any,
) -> None:
    """Audit a change to one shift, keyed by the shift and its operator-day."""
    payload: dict[str, Any] = {"operator_id": operator_id}
    if day is not None:
        payload["date"] = day.date().isoformat()
    payload.update(details)
    log_audit(
        db,
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        success=True,
        entity_type="shift",
        entity_id=str(shift_id),
        details=payload,
        request_id=request_id,
    )

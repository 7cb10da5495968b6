from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _normalize_label(value: str) -> str:
    return " ".join(value.replace("_", " ").replace("-", " ").split()).casefold()


class TimeCategory(str, enum.Enum):
    WORK_SCHEDULE = "WORK_SCHEDULE"
    LABOR_PERMIT = "LABOR_PERMIT"
    OPERATION = "OPERATION"
    PREPARATION = "PREPARATION"
    IDLE = "IDLE"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, raw: TimeCategory | str) -> TimeCategory:
        if isinstance(raw, cls):
            return raw
        label = _normalize_label(str(raw))
        category = _TIME_CATEGORY_LABELS.get(label)
        if category is None:
            raise ValueError(f"Unknown time category: {raw!r}")
        return category


_TIME_CATEGORY_LABELS: dict[str, TimeCategory] = {
    **{_normalize_label(item.value): item for item in TimeCategory},
    "horario laboral": TimeCategory.WORK_SCHEDULE,
    "permiso laboral": TimeCategory.LABOR_PERMIT,
    "operacion": TimeCategory.OPERATION,
    "operación": TimeCategory.OPERATION,
    "preparacion": TimeCategory.PREPARATION,
    "preparación": TimeCategory.PREPARATION,
    "alistamiento": TimeCategory.PREPARATION,
    "tiempo muerto": TimeCategory.IDLE,
    "otro": TimeCategory.OTHER,
}


class PermitType(str, enum.Enum):
    PAID = "PAID"
    UNPAID = "UNPAID"

    @classmethod
    def parse(cls, raw: PermitType | str) -> PermitType:
        if isinstance(raw, cls):
            return raw
        label = _normalize_label(str(raw))
        permit_type = _PERMIT_TYPE_LABELS.get(label)
        if permit_type is None:
            raise ValueError(f"Unknown permit type: {raw!r}")
        return permit_type


_PERMIT_TYPE_LABELS: dict[str, PermitType] = {
    **{_normalize_label(item.value): item for item in PermitType},
    "paid permit": PermitType.PAID,
    "unpaid permit": PermitType.UNPAID,
    "permiso remunerado": PermitType.PAID,
    "permiso no remunerado": PermitType.UNPAID,
}


class AuditActorType(str, enum.Enum):
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


activity_record_machines = Table(
    "activity_record_machines",
    Base.metadata,
    Column("activity_record_id", ForeignKey("activity_records.id", ondelete="CASCADE"), primary_key=True),
    Column("machine_id", ForeignKey("machines.id", ondelete="CASCADE"), primary_key=True),
)

activity_record_processes = Table(
    "activity_record_processes",
    Base.metadata,
    Column("activity_record_id", ForeignKey("activity_records.id", ondelete="CASCADE"), primary_key=True),
    Column("process_id", ForeignKey("processes.id", ondelete="CASCADE"), primary_key=True),
)

activity_record_supplies = Table(
    "activity_record_supplies",
    Base.metadata,
    Column("activity_record_id", ForeignKey("activity_records.id", ondelete="CASCADE"), primary_key=True),
    Column("supply_id", ForeignKey("supplies.id", ondelete="CASCADE"), primary_key=True),
)


class Operator(Base):
    __tablename__ = "operators"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    document_number: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    shifts: Mapped[list[Shift]] = relationship(back_populates="operator")


class WorkOrder(Base):
    __tablename__ = "work_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class ProductionArea(Base):
    __tablename__ = "production_areas"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)


class Machine(Base):
    __tablename__ = "machines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class Process(Base):
    __tablename__ = "processes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class Supply(Base):
    __tablename__ = "supplies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class Shift(Base):
    """One operator work session for one calendar day.

    Uniqueness of (operator_id, date) is not enforced by the schema; duplicate
    rows are merged on read by the consolidation service.
    """

    __tablename__ = "shifts"
    __table_args__ = (Index("ix_shifts_operator_id_date", "operator_id", "date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    operator_id: Mapped[int] = mapped_column(
        ForeignKey("operators.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    activity_ids: Mapped[list[int]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )
    total_activity_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    total_activity_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    summed_activity_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    has_overlaps: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    operator: Mapped[Operator] = relationship(back_populates="shifts")


class ActivityRecord(Base):
    __tablename__ = "activity_records"
    __table_args__ = (
        CheckConstraint("duration_minutes >= 1", name="ck_activity_records_duration_positive"),
        Index("ix_activity_records_operator_id_date", "operator_id", "date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    operator_id: Mapped[int] = mapped_column(
        ForeignKey("operators.id", ondelete="CASCADE"),
        nullable=False,
    )
    shift_id: Mapped[int | None] = mapped_column(
        ForeignKey("shifts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    work_order_id: Mapped[int] = mapped_column(ForeignKey("work_orders.id", ondelete="RESTRICT"), nullable=False)
    production_area_id: Mapped[int] = mapped_column(
        ForeignKey("production_areas.id", ondelete="RESTRICT"),
        nullable=False,
    )
    time_category: Mapped[TimeCategory] = mapped_column(
        Enum(TimeCategory, name="activity_time_category"),
        nullable=False,
    )
    permit_type: Mapped[PermitType | None] = mapped_column(
        Enum(PermitType, name="activity_permit_type"),
        nullable=True,
    )
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    operator: Mapped[Operator] = relationship()
    work_order: Mapped[WorkOrder] = relationship()
    production_area: Mapped[ProductionArea] = relationship()
    machines: Mapped[list[Machine]] = relationship(secondary=activity_record_machines)
    processes: Mapped[list[Process]] = relationship(secondary=activity_record_processes)
    supplies: Mapped[list[Supply]] = relationship(secondary=activity_record_supplies)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    entity_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

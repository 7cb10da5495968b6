"""Initial shift tracking schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-05 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

activity_time_category = postgresql.ENUM(
    "WORK_SCHEDULE",
    "LABOR_PERMIT",
    "OPERATION",
    "PREPARATION",
    "IDLE",
    "OTHER",
    name="activity_time_category",
    create_type=False,
)
activity_permit_type = postgresql.ENUM(
    "PAID",
    "UNPAID",
    name="activity_permit_type",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "ADMIN",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)


def _named_catalog(table_name: str, *, unique_name: bool = False) -> None:
    columns = [
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
    ]
    if unique_name:
        columns.append(sa.UniqueConstraint("name", name=f"uq_{table_name}_name"))
    op.create_table(table_name, *columns)


def _activity_link(table_name: str, column_name: str, target_table: str) -> None:
    op.create_table(
        table_name,
        sa.Column("activity_record_id", sa.Integer(), nullable=False),
        sa.Column(column_name, sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["activity_record_id"], ["activity_records.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint([column_name], [f"{target_table}.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("activity_record_id", column_name),
    )


def upgrade() -> None:
    bind = op.get_bind()
    activity_time_category.create(bind, checkfirst=True)
    activity_permit_type.create(bind, checkfirst=True)
    audit_actor_type.create(bind, checkfirst=True)

    op.create_table(
        "operators",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("document_number", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.UniqueConstraint("document_number", name="uq_operators_document_number"),
    )
    op.create_index("ix_operators_name", "operators", ["name"])

    op.create_table(
        "work_orders",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )
    op.create_index("ix_work_orders_code", "work_orders", ["code"], unique=True)

    _named_catalog("production_areas", unique_name=True)
    _named_catalog("machines")
    _named_catalog("processes")
    _named_catalog("supplies")

    op.create_table(
        "shifts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("operator_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "activity_ids",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("total_activity_hours", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_activity_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["operator_id"], ["operators.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_shifts_operator_id", "shifts", ["operator_id"])
    op.create_index("ix_shifts_operator_id_date", "shifts", ["operator_id", "date"])

    op.create_table(
        "activity_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("operator_id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=True),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("work_order_id", sa.Integer(), nullable=False),
        sa.Column("production_area_id", sa.Integer(), nullable=False),
        sa.Column("time_category", activity_time_category, nullable=False),
        sa.Column("permit_type", activity_permit_type, nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["operator_id"], ["operators.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["work_order_id"], ["work_orders.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["production_area_id"], ["production_areas.id"], ondelete="RESTRICT"),
        sa.CheckConstraint("duration_minutes >= 1", name="ck_activity_records_duration_positive"),
    )
    op.create_index("ix_activity_records_shift_id", "activity_records", ["shift_id"])
    op.create_index("ix_activity_records_operator_id_date", "activity_records", ["operator_id", "date"])

    _activity_link("activity_record_machines", "machine_id", "machines")
    _activity_link("activity_record_processes", "process_id", "processes")
    _activity_link("activity_record_supplies", "supply_id", "supplies")

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_table("activity_record_supplies")
    op.drop_table("activity_record_processes")
    op.drop_table("activity_record_machines")

    op.drop_index("ix_activity_records_operator_id_date", table_name="activity_records")
    op.drop_index("ix_activity_records_shift_id", table_name="activity_records")
    op.drop_table("activity_records")

    op.drop_index("ix_shifts_operator_id_date", table_name="shifts")
    op.drop_index("ix_shifts_operator_id", table_name="shifts")
    op.drop_table("shifts")

    op.drop_table("supplies")
    op.drop_table("processes")
    op.drop_table("machines")
    op.drop_table("production_areas")
    op.drop_index("ix_work_orders_code", table_name="work_orders")
    op.drop_table("work_orders")
    op.drop_index("ix_operators_name", table_name="operators")
    op.drop_table("operators")

    bind = op.get_bind()
    audit_actor_type.drop(bind, checkfirst=True)
    activity_permit_type.drop(bind, checkfirst=True)
    activity_time_category.drop(bind, checkfirst=True)

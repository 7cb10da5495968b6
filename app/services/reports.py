from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime, timezone
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.models import ActivityRecord, Operator, PermitType, Shift, TimeCategory
from app.schemas import (
    LaborDaySummaryPage,
    LaborDaySummaryRead,
    PaginationRead,
    PermitEntryRead,
    PermitReportItem,
    PermitReportResponse,
    TimeAmountRead,
)
from app.services.calendar_days import as_utc, day_key, day_range, normalize_day
from app.services.effective_time import (
    cached_activity_time,
    compute_category_restricted_time,
    derive_work_window,
    elapsed_minutes,
)
from app.services.identifiers import unique_identifiers
from app.services.shifts import load_activities, to_activity_read

LABOR_CATEGORIES = (TimeCategory.WORK_SCHEDULE, TimeCategory.LABOR_PERMIT)

SHIFT_HEADERS = [
    "Fecha",
    "Operario",
    "Cédula",
    "Hora Inicio",
    "Hora Fin",
    "Tiempo Jornada",
    "Actividades",
    "Permisos",
    "Permisos No Remunerados",
    "Tiempo Actividades",
]

PERMIT_HEADERS = [
    "Fecha",
    "Operario",
    "Cédula",
    "Hora Inicio",
    "Hora Fin",
    "Tipo Permiso",
    "Minutos",
    "Observaciones",
]

PERMIT_TYPE_LABELS = {
    PermitType.PAID: "Remunerado",
    PermitType.UNPAID: "No remunerado",
}

HEADER_FILL = PatternFill(fill_type="solid", fgColor="0B4F73")
ZEBRA_FILL = PatternFill(fill_type="solid", fgColor="F7FBFE")
UNPAID_FILL = PatternFill(fill_type="solid", fgColor="FDE2E4")

HEADER_FONT = Font(bold=True, color="FFFFFF")
TITLE_FONT = Font(bold=True, color="0B4F73", size=14)

THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)


def _date_bounds(
    start_date: str | None,
    end_date: str | None,
) -> tuple[datetime | None, datetime | None]:
    lower = day_range(start_date, field="start_date").start if start_date else None
    upper = day_range(end_date, field="end_date").end if end_date else None
    return lower, upper


def build_permit_report(
    db: Session,
    *,
    operator_id: int | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
) -> PermitReportResponse:
    """Shifts that have activities, with their labor-permit entries, newest first."""
    lower, upper = _date_bounds(start_date, end_date)

    stmt = select(Shift).options(selectinload(Shift.operator)).order_by(Shift.date.desc(), Shift.id.asc())
    if operator_id is not None:
        stmt = stmt.where(Shift.operator_id == operator_id)
    if lower is not None:
        stmt = stmt.where(Shift.date >= lower)
    if upper is not None:
        stmt = stmt.where(Shift.date <= upper)
    shifts = list(db.scalars(stmt).all())

    wanted_ids = unique_identifiers(ref for shift in shifts for ref in (shift.activity_ids or []))
    by_id = {record.id: record for record in load_activities(db, wanted_ids)}

    items: list[PermitReportItem] = []
    for shift in shifts:
        activities = [by_id[ref] for ref in unique_identifiers(shift.activity_ids or []) if ref in by_id]
        if not activities:
            continue

        shift_minutes = 0
        if shift.start_time is not None and shift.end_time is not None:
            shift_minutes = elapsed_minutes(shift.start_time, shift.end_time)

        permits = [item for item in activities if item.time_category is TimeCategory.LABOR_PERMIT]
        operator = shift.operator
        cached = cached_activity_time(shift)
        items.append(
            PermitReportItem(
                shift_id=shift.id,
                date=shift.date,
                operator_id=shift.operator_id,
                operator_name=operator.name if operator is not None else None,
                document_number=operator.document_number if operator is not None else None,
                start_time=shift.start_time,
                end_time=shift.end_time,
                shift_total_minutes=shift_minutes,
                activity_count=len(activities),
                permits=[
                    PermitEntryRead(
                        id=permit.id,
                        start_time=permit.start_time,
                        end_time=permit.end_time,
                        permit_type=permit.permit_type,
                        duration_minutes=permit.duration_minutes,
                        notes=permit.notes,
                    )
                    for permit in permits
                ],
                total_activity_time=TimeAmountRead(hours=cached.hours, minutes=cached.minutes),
            )
        )

    return PermitReportResponse(total=len(items), items=items)


def _to_excel_datetime(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return as_utc(value).replace(tzinfo=None)


def _minutes_to_hhmm(minutes: int) -> str:
    value = max(0, int(minutes))
    return f"{value // 60:02d}:{value % 60:02d}"


def _style_header(ws: Worksheet, row: int) -> None:
    for cell in ws[row]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _style_rows(ws: Worksheet, *, header_row: int, highlight_rows: set[int] | None = None) -> None:
    last_row = ws.max_row
    ws.freeze_panes = f"A{header_row + 1}"
    if last_row <= header_row:
        return

    ws.auto_filter.ref = f"A{header_row}:{get_column_letter(ws.max_column)}{last_row}"
    for row_idx in range(header_row + 1, last_row + 1):
        if highlight_rows and row_idx in highlight_rows:
            row_fill = UNPAID_FILL
        elif row_idx % 2 == 0:
            row_fill = ZEBRA_FILL
        else:
            row_fill = None
        for col_idx in range(1, ws.max_column + 1):
            cell = ws.cell(row=row_idx, column=col_idx)
            cell.border = THIN_BORDER
            if row_fill is not None:
                cell.fill = row_fill
            if isinstance(cell.value, (int, float)):
                cell.alignment = Alignment(horizontal="center", vertical="center")
            else:
                cell.alignment = Alignment(horizontal="left", vertical="center")


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        max_len = 0
        col_letter = get_column_letter(column_cells[0].column)
        for cell in column_cells:
            if cell.coordinate in ws.merged_cells:
                continue
            value = "" if cell.value is None else str(cell.value)
            max_len = max(max_len, len(value))
        ws.column_dimensions[col_letter].width = min(max_len + 2, 45)


def _write_title(ws: Worksheet, text: str, width: int) -> None:
    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=width)
    cell = ws.cell(row=1, column=1, value=text)
    cell.font = TITLE_FONT
    cell.alignment = Alignment(horizontal="left", vertical="center")


def build_permit_report_xlsx_bytes(report: PermitReportResponse) -> bytes:
    wb = Workbook()
    shifts_ws = wb.active
    shifts_ws.title = "Jornadas"
    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    _write_title(shifts_ws, f"Reporte de jornadas y permisos ({generated})", len(SHIFT_HEADERS))
    shifts_ws.append(SHIFT_HEADERS)
    _style_header(shifts_ws, 2)

    permits_ws = wb.create_sheet("Permisos")
    _write_title(permits_ws, "Permisos laborales", len(PERMIT_HEADERS))
    permits_ws.append(PERMIT_HEADERS)
    _style_header(permits_ws, 2)

    unpaid_rows: set[int] = set()
    for item in report.items:
        unpaid_minutes = sum(
            permit.duration_minutes for permit in item.permits if permit.permit_type is PermitType.UNPAID
        )
        shifts_ws.append(
            [
                normalize_day(item.date).date(),
                item.operator_name or "-",
                item.document_number or "-",
                _to_excel_datetime(item.start_time),
                _to_excel_datetime(item.end_time),
                _minutes_to_hhmm(item.shift_total_minutes),
                item.activity_count,
                len(item.permits),
                unpaid_minutes,
                _minutes_to_hhmm(item.total_activity_time.hours * 60 + item.total_activity_time.minutes),
            ]
        )

        for permit in item.permits:
            permits_ws.append(
                [
                    normalize_day(item.date).date(),
                    item.operator_name or "-",
                    item.document_number or "-",
                    _to_excel_datetime(permit.start_time),
                    _to_excel_datetime(permit.end_time),
                    PERMIT_TYPE_LABELS.get(permit.permit_type, "-") if permit.permit_type else "-",
                    permit.duration_minutes,
                    permit.notes or "",
                ]
            )
            if permit.permit_type is PermitType.UNPAID:
                unpaid_rows.add(permits_ws.max_row)

    _style_rows(shifts_ws, header_row=2)
    _style_rows(permits_ws, header_row=2, highlight_rows=unpaid_rows)
    _auto_width(shifts_ws)
    _auto_width(permits_ws)

    stream = BytesIO()
    wb.save(stream)
    return stream.getvalue()


def list_labor_day_summaries(
    db: Session,
    *,
    page: int = 1,
    limit: int = 10,
    operator_name: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    include_activities: bool = False,
    max_page_size: int = 100,
) -> LaborDaySummaryPage:
    """Per operator and day summaries built from work-schedule and labor-permit records.

    These summaries are grouped straight from activity records and never read
    or write shift rows. Records detached from a deleted shift are left out.
    """
    page = max(1, page)
    limit = max(1, min(limit, max_page_size))
    lower, upper = _date_bounds(start_date, end_date)

    stmt = (
        select(ActivityRecord)
        .options(
            selectinload(ActivityRecord.operator),
            selectinload(ActivityRecord.work_order),
            selectinload(ActivityRecord.production_area),
            selectinload(ActivityRecord.machines),
            selectinload(ActivityRecord.processes),
            selectinload(ActivityRecord.supplies),
        )
        .where(
            ActivityRecord.time_category.in_(LABOR_CATEGORIES),
            ActivityRecord.shift_id.is_not(None),
        )
        .order_by(ActivityRecord.id.asc())
    )
    if lower is not None:
        stmt = stmt.where(ActivityRecord.date >= lower)
    if upper is not None:
        stmt = stmt.where(ActivityRecord.date <= upper)
    if operator_name and operator_name.strip():
        stmt = stmt.join(Operator, Operator.id == ActivityRecord.operator_id).where(
            Operator.name.ilike(f"%{operator_name.strip()}%")
        )
    records = list(db.scalars(stmt).all())

    groups: dict[tuple[int, str], list[ActivityRecord]] = defaultdict(list)
    for record in records:
        groups[(record.operator_id, day_key(record.date).isoformat())].append(record)

    ordered_keys = sorted(groups, key=lambda key: (key[1], -key[0]), reverse=True)
    total = len(ordered_keys)
    page_keys = ordered_keys[(page - 1) * limit : page * limit]

    items = [
        _summarize_labor_day(operator_id, day, groups[(operator_id, day)], include_activities=include_activities)
        for operator_id, day in page_keys
    ]
    return LaborDaySummaryPage(
        items=items,
        pagination=PaginationRead(
            current_page=page,
            total_pages=math.ceil(total / limit),
            total_items=total,
            items_per_page=limit,
            has_next_page=page * limit < total,
            has_previous_page=page > 1,
        ),
    )


def _summarize_labor_day(
    operator_id: int,
    day: str,
    records: Sequence[ActivityRecord],
    *,
    include_activities: bool,
) -> LaborDaySummaryRead:
    window = derive_work_window(records)
    effective = compute_category_restricted_time(records)
    operator = records[0].operator
    return LaborDaySummaryRead(
        key=f"{operator_id}-{day}",
        operator_id=operator_id,
        operator_name=operator.name if operator is not None else None,
        date=normalize_day(day),
        start_time=window.start if window is not None else None,
        end_time=window.end if window is not None else None,
        effective_payable_time=TimeAmountRead(hours=effective.hours, minutes=effective.minutes),
        activities=[to_activity_read(record) for record in records] if include_activities else [],
    )

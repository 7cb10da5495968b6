from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from app.audit import AuditAction, log_audit
from app.db import get_db
from app.models import AuditActorType
from app.schemas import (
    ActivityAddResponse,
    ActivityInput,
    DeleteResponse,
    LaborDaySummaryPage,
    PermitReportResponse,
    RecalculationStatsRead,
    ShiftCompleteRequest,
    ShiftCreateRequest,
    ShiftRead,
    ShiftSaveResponse,
    ShiftUpdateRequest,
)
from app.services.activity_ingest import ingest_single, save_complete_shift
from app.services.identifiers import parse_identifier
from app.services.reports import (
    build_permit_report,
    build_permit_report_xlsx_bytes,
    list_labor_day_summaries,
)
from app.services.shifts import (
    create_shift,
    delete_shift,
    get_shift_or_404,
    list_operator_day_shifts,
    list_operator_shifts,
    list_shifts,
    read_shift,
    recalculate_all_shifts,
    update_shift,
)
from app.settings import get_settings

router = APIRouter(prefix="/api/shifts", tags=["shifts"])
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


@router.get("", response_model=list[ShiftRead])
def get_shifts(
    limit: int | None = Query(default=None, ge=1, le=1000),
    sort: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[ShiftRead]:
    return list_shifts(db, limit=limit, sort=sort)


@router.post("", response_model=ShiftRead, status_code=status.HTTP_201_CREATED)
def post_shift(payload: ShiftCreateRequest, db: Session = Depends(get_db)) -> ShiftRead:
    shift = create_shift(db, payload)
    return read_shift(db, shift)


@router.post("/complete", response_model=ShiftSaveResponse, status_code=status.HTTP_201_CREATED)
def post_complete_shift(
    payload: ShiftCompleteRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ShiftSaveResponse:
    result = save_complete_shift(db, payload, request_id=_request_id(request))
    return ShiftSaveResponse(shift=read_shift(db, result.shift), created_activity_ids=result.created_ids)


@router.post("/recalculate", response_model=RecalculationStatsRead)
def post_recalculate(request: Request, db: Session = Depends(get_db)) -> RecalculationStatsRead:
    return recalculate_all_shifts(db, request_id=_request_id(request))


@router.get("/permit-report", response_model=PermitReportResponse)
def get_permit_report(
    operator_id: int | None = Query(default=None, ge=1),
    start_date: str | None = Query(default=None),
    end_date: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> PermitReportResponse:
    return build_permit_report(db, operator_id=operator_id, start_date=start_date, end_date=end_date)


@router.get("/permit-report/export")
def export_permit_report(
    request: Request,
    operator_id: int | None = Query(default=None, ge=1),
    start_date: str | None = Query(default=None),
    end_date: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> Response:
    report = build_permit_report(db, operator_id=operator_id, start_date=start_date, end_date=end_date)
    payload = build_permit_report_xlsx_bytes(report)

    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id="admin",
        action=AuditAction.PERMIT_REPORT_EXPORT_XLSX,
        success=True,
        entity_type="export",
        details={
            "operator_id": operator_id,
            "start_date": start_date,
            "end_date": end_date,
            "rows": report.total,
        },
        request_id=_request_id(request),
    )

    filename_suffix = "all"
    if start_date and end_date:
        filename_suffix = f"{start_date}-{end_date}"
    return Response(
        content=payload,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="permit-report-{filename_suffix}.xlsx"'},
    )


@router.get("/labor-summaries", response_model=LaborDaySummaryPage)
def get_labor_summaries(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    operator: str | None = Query(default=None, max_length=255),
    start_date: str | None = Query(default=None),
    end_date: str | None = Query(default=None),
    include_activities: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> LaborDaySummaryPage:
    return list_labor_day_summaries(
        db,
        page=page,
        limit=limit,
        operator_name=operator,
        start_date=start_date,
        end_date=end_date,
        include_activities=include_activities,
        max_page_size=get_settings().labor_summary_max_page_size,
    )


@router.get("/operator/{operator_id}", response_model=list[ShiftRead])
def get_operator_shifts(
    operator_id: str,
    request: Request,
    day: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[ShiftRead]:
    return list_operator_shifts(
        db,
        operator_id=parse_identifier(operator_id, field="operator_id"),
        day=day,
        request_id=_request_id(request),
    )


@router.get("/operator/{operator_id}/date/{day}", response_model=list[ShiftRead])
def get_operator_day_shifts(
    operator_id: str,
    day: str,
    request: Request,
    db: Session = Depends(get_db),
) -> list[ShiftRead]:
    return list_operator_day_shifts(
        db,
        operator_id=parse_identifier(operator_id, field="operator_id"),
        day=day,
        request_id=_request_id(request),
    )


@router.post(
    "/{shift_id}/activities",
    response_model=ActivityAddResponse,
    status_code=status.HTTP_201_CREATED,
)
def post_shift_activity(
    shift_id: str,
    payload: ActivityInput,
    request: Request,
    db: Session = Depends(get_db),
) -> ActivityAddResponse:
    result = ingest_single(
        db,
        parse_identifier(shift_id, field="shift_id"),
        payload,
        request_id=_request_id(request),
    )
    return ActivityAddResponse(activity_id=result.created_ids[0], shift=read_shift(db, result.shift))


@router.get("/{shift_id}", response_model=ShiftRead)
def get_shift(shift_id: str, db: Session = Depends(get_db)) -> ShiftRead:
    shift = get_shift_or_404(db, parse_identifier(shift_id, field="shift_id"))
    return read_shift(db, shift)


@router.put("/{shift_id}", response_model=ShiftRead)
def put_shift(
    shift_id: str,
    payload: ShiftUpdateRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ShiftRead:
    shift = update_shift(
        db,
        parse_identifier(shift_id, field="shift_id"),
        payload,
        request_id=_request_id(request),
    )
    return read_shift(db, shift)


@router.delete("/{shift_id}", response_model=DeleteResponse)
def remove_shift(shift_id: str, request: Request, db: Session = Depends(get_db)) -> DeleteResponse:
    identifier = parse_identifier(shift_id, field="shift_id")
    delete_shift(db, identifier, request_id=_request_id(request))
    return DeleteResponse(ok=True, id=identifier)

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.models import PermitType, TimeCategory


class TimeAmountRead(BaseModel):
    hours: int
    minutes: int

    model_config = ConfigDict(from_attributes=True)


class NamedRefRead(BaseModel):
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True)


class ActivityInput(BaseModel):
    # Reference fields stay loosely typed here; the ingest service reports
    # malformed values with the offending field path.
    work_order: int | str | None = None
    production_area: int | str | None = None
    machines: list[int | str] | int | str | None = None
    processes: list[int | str] | int | str | None = None
    supplies: list[int | str] | int | str | None = None
    time_category: str | None = None
    permit_type: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration_minutes: int | None = None
    notes: str | None = Field(default=None, max_length=2000)


class ShiftCreateRequest(BaseModel):
    operator_id: int | str
    date: str = Field(min_length=1)


class ShiftCompleteRequest(BaseModel):
    operator_id: int | str
    date: str = Field(min_length=1)
    start_time: datetime | None = None
    end_time: datetime | None = None
    activities: list[ActivityInput] = Field(default_factory=list)


class ShiftUpdateRequest(BaseModel):
    start_time: datetime | None = None
    end_time: datetime | None = None
    activity_ids: list[int | str | dict[str, Any]] | None = None


class ActivityRecordRead(BaseModel):
    id: int
    operator_id: int
    shift_id: int | None
    date: datetime
    work_order_id: int
    work_order_code: str | None = None
    production_area_id: int
    production_area_name: str | None = None
    machines: list[NamedRefRead] = Field(default_factory=list)
    processes: list[NamedRefRead] = Field(default_factory=list)
    supplies: list[NamedRefRead] = Field(default_factory=list)
    time_category: TimeCategory
    permit_type: PermitType | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration_minutes: int
    notes: str | None = None


class ShiftRead(BaseModel):
    id: int
    operator_id: int
    operator_name: str | None = None
    date: datetime
    start_time: datetime | None = None
    end_time: datetime | None = None
    activity_ids: list[int] = Field(default_factory=list)
    activities: list[ActivityRecordRead] = Field(default_factory=list)
    total_activity_time: TimeAmountRead
    summed_activity_minutes: int = 0
    has_overlaps: bool = False
    effective_payable_time: TimeAmountRead


class ShiftSaveResponse(BaseModel):
    shift: ShiftRead
    created_activity_ids: list[int]


class ActivityAddResponse(BaseModel):
    activity_id: int
    shift: ShiftRead


class DeleteResponse(BaseModel):
    ok: bool
    id: int


class RecalculationStatsRead(BaseModel):
    total_shifts: int
    updated_shifts: int
    errors: int
    shifts_with_overlaps: int
    recovered_minutes: int
    recovered_time: TimeAmountRead


class PermitEntryRead(BaseModel):
    id: int
    start_time: datetime | None = None
    end_time: datetime | None = None
    permit_type: PermitType | None = None
    duration_minutes: int
    notes: str | None = None


class PermitReportItem(BaseModel):
    shift_id: int
    date: datetime
    operator_id: int
    operator_name: str | None = None
    document_number: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    shift_total_minutes: int
    activity_count: int
    permits: list[PermitEntryRead] = Field(default_factory=list)
    total_activity_time: TimeAmountRead


class PermitReportResponse(BaseModel):
    total: int
    items: list[PermitReportItem]


class LaborDaySummaryRead(BaseModel):
    key: str
    operator_id: int
    operator_name: str | None = None
    date: datetime
    start_time: datetime | None = None
    end_time: datetime | None = None
    effective_payable_time: TimeAmountRead
    activities: list[ActivityRecordRead] = Field(default_factory=list)


class PaginationRead(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next_page: bool
    has_previous_page: bool


class LaborDaySummaryPage(BaseModel):
    items: list[LaborDaySummaryRead]
    pagination: PaginationRead

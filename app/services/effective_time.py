from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from math import floor
from typing import Any, Literal

from app.models import PermitType, Shift, TimeCategory
from app.services.calendar_days import as_utc

CalculationMode = Literal["boundary", "category_restricted"]

ROLLOVER = timedelta(days=1)


@dataclass(frozen=True)
class TimeAmount:
    hours: int
    minutes: int

    @classmethod
    def from_minutes(cls, total_minutes: int) -> TimeAmount:
        safe_minutes = max(0, int(total_minutes))
        return cls(hours=safe_minutes // 60, minutes=safe_minutes % 60)

    @property
    def total_minutes(self) -> int:
        return self.hours * 60 + self.minutes

    def to_dict(self) -> dict[str, int]:
        return {"hours": self.hours, "minutes": self.minutes}


ZERO_TIME = TimeAmount(hours=0, minutes=0)


@dataclass(frozen=True)
class WorkWindow:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class ShiftTotals:
    summed_minutes: int
    effective_minutes: int
    has_overlaps: bool

    @property
    def total_activity_time(self) -> TimeAmount:
        return TimeAmount.from_minutes(self.effective_minutes)

    @property
    def overlap_minutes(self) -> int:
        return max(0, self.summed_minutes - self.effective_minutes)


def round_minutes(delta: timedelta) -> int:
    # Half-up, so 90 seconds is 2 minutes.
    return int(floor(delta.total_seconds() / 60 + 0.5))


def rolled_over_interval(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    start_utc = as_utc(start)
    end_utc = as_utc(end)
    if end_utc <= start_utc:
        end_utc = end_utc + ROLLOVER
    return start_utc, end_utc


def elapsed_minutes(start: datetime, end: datetime) -> int:
    start_utc, end_utc = rolled_over_interval(start, end)
    return round_minutes(end_utc - start_utc)


def _time_category(activity: Any) -> TimeCategory | None:
    raw = getattr(activity, "time_category", None)
    if raw is None:
        return None
    try:
        return TimeCategory.parse(raw)
    except ValueError:
        return None


def _permit_type(activity: Any) -> PermitType | None:
    raw = getattr(activity, "permit_type", None)
    if raw is None:
        return None
    try:
        return PermitType.parse(raw)
    except ValueError:
        return None


def _stored_duration(activity: Any) -> int:
    return max(0, int(getattr(activity, "duration_minutes", None) or 0))


def _has_times(activity: Any) -> bool:
    return getattr(activity, "start_time", None) is not None and getattr(activity, "end_time", None) is not None


def unpaid_permit_minutes(activities: Iterable[Any]) -> int:
    return sum(
        _stored_duration(activity)
        for activity in activities
        if _permit_type(activity) is PermitType.UNPAID
    )


def cached_activity_time(shift: Shift) -> TimeAmount:
    return TimeAmount(
        hours=int(shift.total_activity_hours or 0),
        minutes=int(shift.total_activity_minutes or 0),
    )


def compute_boundary_effective_time(shift: Shift, activities: Sequence[Any]) -> TimeAmount:
    """Payable time from the shift boundaries, the activity sum, or the cached total.

    The first strategy whose inputs are present wins. Boundary times always
    decide the result when both are set, even when it comes out as zero.
    """
    unpaid = unpaid_permit_minutes(activities)

    if shift.start_time is not None and shift.end_time is not None:
        elapsed = elapsed_minutes(shift.start_time, shift.end_time)
        return TimeAmount.from_minutes(elapsed - unpaid)

    net_activity_minutes = sum(_stored_duration(activity) for activity in activities) - unpaid
    if net_activity_minutes > 0:
        return TimeAmount.from_minutes(net_activity_minutes)

    return cached_activity_time(shift)


def derive_work_window(activities: Iterable[Any]) -> WorkWindow | None:
    timed = [
        (as_utc(activity.start_time), as_utc(activity.end_time))
        for activity in activities
        if _time_category(activity) is TimeCategory.WORK_SCHEDULE and _has_times(activity)
    ]
    if not timed:
        return None

    start = min(item[0] for item in timed)
    end = max(item[1] for item in timed)
    if end <= start:
        end = end + ROLLOVER
    return WorkWindow(start=start, end=end)


def compute_category_restricted_time(activities: Sequence[Any]) -> TimeAmount:
    """Payable time counting only work-schedule and labor-permit entries.

    With a work schedule present the payable time is its window minus unpaid
    permits. Without one, only paid permits count.
    """
    work_entries = [item for item in activities if _time_category(item) is TimeCategory.WORK_SCHEDULE]
    permit_entries = [item for item in activities if _time_category(item) is TimeCategory.LABOR_PERMIT]

    if work_entries:
        window = derive_work_window(work_entries)
        if window is None:
            return ZERO_TIME
        elapsed = round_minutes(window.end - window.start)
        return TimeAmount.from_minutes(elapsed - unpaid_permit_minutes(permit_entries))

    if permit_entries:
        paid_minutes = 0
        for permit in permit_entries:
            if _permit_type(permit) is not PermitType.PAID:
                continue
            if _has_times(permit):
                paid_minutes += elapsed_minutes(permit.start_time, permit.end_time)
            else:
                paid_minutes += _stored_duration(permit)
        return TimeAmount.from_minutes(paid_minutes)

    return ZERO_TIME


def compute_effective_time(
    shift: Shift,
    activities: Iterable[Any],
    *,
    mode: CalculationMode = "boundary",
) -> TimeAmount:
    items = list(activities)
    if mode == "boundary":
        return compute_boundary_effective_time(shift, items)
    if mode == "category_restricted":
        return compute_category_restricted_time(items)
    raise ValueError(f"Unknown calculation mode: {mode!r}")


def recompute_shift_totals(activities: Iterable[Any]) -> ShiftTotals:
    """Cached totals for a shift's activities.

    Without overlapping intervals the stored durations are summed as recorded.
    When timed activities overlap, the overlapping stretches count once and
    untimed activities add their stored duration.
    """
    items = list(activities)
    summed = sum(_stored_duration(item) for item in items)

    intervals = sorted(rolled_over_interval(item.start_time, item.end_time) for item in items if _has_times(item))
    untimed = sum(_stored_duration(item) for item in items if not _has_times(item))

    if not intervals:
        return ShiftTotals(summed_minutes=summed, effective_minutes=summed, has_overlaps=False)

    has_overlaps = False
    covered = 0
    current_start, current_end = intervals[0]
    for start, end in intervals[1:]:
        if start < current_end:
            has_overlaps = True
            current_end = max(current_end, end)
            continue
        covered += round_minutes(current_end - current_start)
        current_start, current_end = start, end
    covered += round_minutes(current_end - current_start)

    if not has_overlaps:
        return ShiftTotals(summed_minutes=summed, effective_minutes=summed, has_overlaps=False)
    return ShiftTotals(summed_minutes=summed, effective_minutes=covered + untimed, has_overlaps=True)


def apply_shift_totals(shift: Shift, totals: ShiftTotals) -> Shift:
    total = totals.total_activity_time
    shift.total_activity_hours = total.hours
    shift.total_activity_minutes = total.minutes
    shift.summed_activity_minutes = totals.summed_minutes
    shift.has_overlaps = totals.has_overlaps
    return shift

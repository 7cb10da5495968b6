from datetime import datetime, timedelta, timezone
import unittest

from app.models import ActivityRecord, PermitType, Shift, TimeCategory
from app.services.effective_time import (
    TimeAmount,
    compute_category_restricted_time,
    compute_effective_time,
    recompute_shift_totals,
    round_minutes,
)

DAY = datetime(2026, 3, 2, tzinfo=timezone.utc)


def _at(hour: int, minute: int = 0) -> datetime:
    return DAY.replace(hour=hour, minute=minute)


def _activity(
    category: TimeCategory | str = TimeCategory.OPERATION,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    minutes: int = 0,
    permit: PermitType | str | None = None,
) -> ActivityRecord:
    return ActivityRecord(
        time_category=category,
        permit_type=permit,
        start_time=start,
        end_time=end,
        duration_minutes=minutes,
    )


class BoundaryEffectiveTimeTests(unittest.TestCase):
    def test_same_day_boundaries_minus_unpaid_permits(self) -> None:
        shift = Shift(start_time=_at(8), end_time=_at(17))
        activities = [
            _activity(minutes=300),
            _activity(TimeCategory.LABOR_PERMIT, minutes=45, permit=PermitType.UNPAID),
            _activity(TimeCategory.LABOR_PERMIT, minutes=30, permit=PermitType.PAID),
        ]

        result = compute_effective_time(shift, activities)

        self.assertEqual(result, TimeAmount(hours=8, minutes=15))

    def test_overnight_boundaries_roll_over(self) -> None:
        shift = Shift(start_time=_at(22), end_time=_at(2))

        result = compute_effective_time(shift, [])

        self.assertEqual(result.total_minutes, 240)
        self.assertEqual(result.to_dict(), {"hours": 4, "minutes": 0})

    def test_boundary_result_is_final_even_when_floored_to_zero(self) -> None:
        shift = Shift(
            start_time=_at(9),
            end_time=_at(9, 30),
            total_activity_hours=5,
            total_activity_minutes=0,
        )
        activities = [
            _activity(minutes=300),
            _activity(TimeCategory.LABOR_PERMIT, minutes=60, permit="permiso NO remunerado"),
        ]

        result = compute_effective_time(shift, activities)

        self.assertEqual(result, TimeAmount(hours=0, minutes=0))

    def test_activity_sum_used_without_boundaries(self) -> None:
        shift = Shift(start_time=_at(8), end_time=None)
        activities = [
            _activity(minutes=120),
            _activity(minutes=90),
            _activity(TimeCategory.LABOR_PERMIT, minutes=30, permit=PermitType.UNPAID),
        ]

        result = compute_effective_time(shift, activities)

        self.assertEqual(result, TimeAmount(hours=3, minutes=0))

    def test_cached_total_used_without_boundaries_or_activities(self) -> None:
        shift = Shift(total_activity_hours=2, total_activity_minutes=15)

        result = compute_effective_time(shift, [])

        self.assertEqual(result, TimeAmount(hours=2, minutes=15))

    def test_cached_total_used_when_activity_sum_is_not_positive(self) -> None:
        shift = Shift(total_activity_hours=1, total_activity_minutes=40)
        activities = [_activity(TimeCategory.LABOR_PERMIT, minutes=30, permit=PermitType.UNPAID)]

        result = compute_effective_time(shift, activities)

        self.assertEqual(result, TimeAmount(hours=1, minutes=40))

    def test_unknown_mode_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            compute_effective_time(Shift(), [], mode="weekly")  # type: ignore[arg-type]


class CategoryRestrictedTimeTests(unittest.TestCase):
    def test_only_paid_permits_count_without_work_schedule(self) -> None:
        activities = [
            _activity(
                TimeCategory.LABOR_PERMIT,
                start=_at(10),
                end=_at(10, 30),
                minutes=30,
                permit=PermitType.PAID,
            ),
            _activity(TimeCategory.LABOR_PERMIT, minutes=45, permit=PermitType.UNPAID),
        ]

        result = compute_category_restricted_time(activities)

        self.assertEqual(result, TimeAmount(hours=0, minutes=30))

    def test_paid_permit_without_times_uses_stored_duration(self) -> None:
        activities = [_activity("Permiso Laboral", minutes=25, permit="permiso remunerado")]

        self.assertEqual(compute_category_restricted_time(activities), TimeAmount(hours=0, minutes=25))

    def test_work_schedule_window_minus_unpaid_permits(self) -> None:
        activities = [
            _activity(TimeCategory.WORK_SCHEDULE, start=_at(7), end=_at(12), minutes=300),
            _activity(TimeCategory.WORK_SCHEDULE, start=_at(13), end=_at(16), minutes=180),
            _activity(TimeCategory.LABOR_PERMIT, minutes=60, permit=PermitType.UNPAID),
            _activity(TimeCategory.OPERATION, minutes=500),
        ]

        result = compute_category_restricted_time(activities)

        self.assertEqual(result, TimeAmount(hours=8, minutes=0))

    def test_overnight_work_schedule_window_rolls_over(self) -> None:
        activities = [_activity("Horario Laboral", start=_at(22), end=_at(6), minutes=480)]

        result = compute_category_restricted_time(activities)

        self.assertEqual(result.total_minutes, 480)

    def test_untimed_work_schedule_yields_zero(self) -> None:
        activities = [
            _activity(TimeCategory.WORK_SCHEDULE, minutes=480),
            _activity(TimeCategory.LABOR_PERMIT, minutes=30, permit=PermitType.PAID),
        ]

        self.assertEqual(compute_category_restricted_time(activities), TimeAmount(hours=0, minutes=0))

    def test_other_categories_only_yield_zero(self) -> None:
        activities = [_activity(TimeCategory.OPERATION, minutes=120), _activity(TimeCategory.IDLE, minutes=15)]

        result = compute_effective_time(Shift(), activities, mode="category_restricted")

        self.assertEqual(result, TimeAmount(hours=0, minutes=0))


class ShiftTotalsTests(unittest.TestCase):
    def test_totals_without_overlap_keep_stored_durations(self) -> None:
        activities = [
            _activity(start=_at(8), end=_at(9), minutes=60),
            _activity(start=_at(9), end=_at(10, 30), minutes=90),
            _activity(minutes=15),
        ]

        totals = recompute_shift_totals(activities)

        self.assertFalse(totals.has_overlaps)
        self.assertEqual(totals.summed_minutes, 165)
        self.assertEqual(totals.effective_minutes, 165)
        self.assertEqual(totals.total_activity_time, TimeAmount(hours=2, minutes=45))

    def test_overlapping_intervals_count_once(self) -> None:
        activities = [
            _activity(start=_at(8), end=_at(10), minutes=120),
            _activity(start=_at(9), end=_at(11), minutes=120),
            _activity(minutes=10),
        ]

        totals = recompute_shift_totals(activities)

        self.assertTrue(totals.has_overlaps)
        self.assertEqual(totals.summed_minutes, 250)
        self.assertEqual(totals.effective_minutes, 190)
        self.assertEqual(totals.overlap_minutes, 60)

    def test_no_activities_give_zero_totals(self) -> None:
        totals = recompute_shift_totals([])

        self.assertEqual(totals.summed_minutes, 0)
        self.assertEqual(totals.total_activity_time, TimeAmount(hours=0, minutes=0))


class RoundingTests(unittest.TestCase):
    def test_minutes_round_half_up(self) -> None:
        self.assertEqual(round_minutes(timedelta(seconds=90)), 2)
        self.assertEqual(round_minutes(timedelta(seconds=89)), 1)
        self.assertEqual(round_minutes(timedelta(seconds=29)), 0)

    def test_time_amount_floors_negative_minutes(self) -> None:
        self.assertEqual(TimeAmount.from_minutes(-5), TimeAmount(hours=0, minutes=0))
        self.assertEqual(TimeAmount.from_minutes(135).to_dict(), {"hours": 2, "minutes": 15})


if __name__ == "__main__":
    unittest.main()

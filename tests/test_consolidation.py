from __future__ import annotations

from datetime import datetime, timezone
import unittest
from unittest.mock import patch

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.errors import ShiftConsolidationError
from app.models import ActivityRecord, AuditLog, Shift, TimeCategory
from app.services.calendar_days import as_utc
from app.services.consolidation import consolidate_operator_shifts, group_shifts_by_day
from app.services.shifts import list_operator_shifts

from db_support import Catalog, make_session_factory, seed_catalog


def _moment(day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 3, day, hour, minute, tzinfo=timezone.utc)


class ShiftConsolidationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.catalog: Catalog = seed_catalog(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def _add_shift(self, date: datetime, activity_ids: list[int]) -> Shift:
        shift = Shift(
            operator_id=self.catalog.operator_id,
            date=date,
            activity_ids=activity_ids,
            total_activity_hours=0,
            total_activity_minutes=0,
            summed_activity_minutes=0,
            has_overlaps=False,
        )
        self.db.add(shift)
        self.db.commit()
        return shift

    def _add_activity(self, shift_id: int | None, minutes: int) -> ActivityRecord:
        record = ActivityRecord(
            operator_id=self.catalog.operator_id,
            shift_id=shift_id,
            date=_moment(2, 0),
            work_order_id=self.catalog.work_order_id,
            production_area_id=self.catalog.production_area_id,
            time_category=TimeCategory.OPERATION,
            duration_minutes=minutes,
        )
        self.db.add(record)
        self.db.commit()
        return record

    def test_same_day_shifts_merge_into_one_with_union_of_activities(self) -> None:
        first = self._add_shift(_moment(2, 8), [])
        second = self._add_shift(_moment(2, 12, 30), [])
        third = self._add_shift(_moment(2, 23, 15), [])
        a = self._add_activity(first.id, 30)
        b = self._add_activity(first.id, 45)
        c = self._add_activity(second.id, 60)
        d = self._add_activity(third.id, 15)
        first.activity_ids = [a.id, b.id]
        second.activity_ids = [b.id, c.id]
        third.activity_ids = [d.id]
        self.db.commit()
        original_ids = {first.id, second.id, third.id}

        result = consolidate_operator_shifts(self.db, self.catalog.operator_id, [first, second, third])

        self.assertEqual(len(result), 1)
        merged = result[0]
        self.assertNotIn(merged.id, original_ids)
        self.assertEqual(merged.activity_ids, [a.id, b.id, c.id, d.id])
        self.assertEqual(as_utc(merged.date), _moment(2, 0))

        remaining = self.db.scalars(
            select(Shift.id).where(Shift.operator_id == self.catalog.operator_id)
        ).all()
        self.assertEqual(list(remaining), [merged.id])

        back_refs = self.db.scalars(
            select(ActivityRecord.shift_id).where(ActivityRecord.id.in_([a.id, b.id, c.id, d.id]))
        ).all()
        self.assertEqual(set(back_refs), {merged.id})

        audit = self.db.scalar(select(AuditLog).where(AuditLog.action == "SHIFTS_CONSOLIDATED"))
        self.assertIsNotNone(audit)
        self.assertEqual(sorted(audit.details["superseded_shift_ids"]), sorted(original_ids))

    def _assert_merge_rolled_back(self, failing_method: str) -> None:
        first = self._add_shift(_moment(2, 8), [])
        second = self._add_shift(_moment(2, 14), [])
        record = self._add_activity(second.id, 30)
        second.activity_ids = [record.id]
        self.db.commit()

        with patch.object(self.db, failing_method, side_effect=SQLAlchemyError("database is locked")):
            with self.assertRaises(ShiftConsolidationError) as ctx:
                consolidate_operator_shifts(self.db, self.catalog.operator_id, [first, second])

        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.code, "SHIFT_CONSOLIDATION_FAILED")
        remaining = self.db.scalars(
            select(Shift.id).where(Shift.operator_id == self.catalog.operator_id).order_by(Shift.id.asc())
        ).all()
        self.assertEqual(list(remaining), [first.id, second.id])
        back_ref = self.db.scalar(select(ActivityRecord.shift_id).where(ActivityRecord.id == record.id))
        self.assertEqual(back_ref, second.id)
        self.assertIsNone(self.db.scalar(select(AuditLog).where(AuditLog.action == "SHIFTS_CONSOLIDATED")))

    def test_merge_failing_before_insert_keeps_original_shifts(self) -> None:
        self._assert_merge_rolled_back("flush")

    def test_merge_failing_at_commit_keeps_original_shifts(self) -> None:
        self._assert_merge_rolled_back("commit")

    def test_single_shift_per_day_only_gets_date_normalized(self) -> None:
        morning = self._add_shift(_moment(3, 15, 30), [])
        other_day = self._add_shift(_moment(4, 0), [])

        result = consolidate_operator_shifts(self.db, self.catalog.operator_id, [morning, other_day])

        self.assertEqual([item.id for item in result], [other_day.id, morning.id])
        self.assertEqual(as_utc(result[1].date), _moment(3, 0))
        self.assertEqual(as_utc(result[0].date), _moment(4, 0))
        self.assertIsNone(self.db.scalar(select(AuditLog).where(AuditLog.action == "SHIFTS_CONSOLIDATED")))

    def test_grouping_uses_utc_calendar_day(self) -> None:
        late = Shift(date=_moment(2, 23, 59))
        early = Shift(date=_moment(3, 0, 1))
        same_day = Shift(date=_moment(2, 0))

        groups = group_shifts_by_day([late, early, same_day])

        self.assertEqual(len(groups), 2)
        self.assertEqual(sorted(len(members) for members in groups.values()), [1, 2])

    def test_operator_listing_consolidates_before_returning(self) -> None:
        first = self._add_shift(_moment(5, 7), [])
        second = self._add_shift(_moment(5, 18), [])
        record = self._add_activity(first.id, 90)
        first.activity_ids = [record.id]
        self.db.commit()
        self._add_shift(_moment(6, 0), [])

        reads = list_operator_shifts(self.db, operator_id=self.catalog.operator_id)

        self.assertEqual(len(reads), 2)
        self.assertEqual(reads[0].date.date().isoformat(), "2026-03-06")
        self.assertEqual(reads[1].activity_ids, [record.id])
        self.assertIsNone(self.db.get(Shift, second.id))


if __name__ == "__main__":
    unittest.main()

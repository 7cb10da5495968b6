from __future__ import annotations

from io import BytesIO
import unittest

from openpyxl import load_workbook

from app.models import PermitType
from app.schemas import ShiftCompleteRequest, ShiftCreateRequest
from app.services.activity_ingest import save_complete_shift
from app.services.reports import (
    build_permit_report,
    build_permit_report_xlsx_bytes,
    list_labor_day_summaries,
)
from app.services.shifts import create_shift

from db_support import Catalog, activity_payload, make_session_factory, seed_catalog


class ReportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.catalog: Catalog = seed_catalog(self.db)

        save_complete_shift(
            self.db,
            ShiftCompleteRequest.model_validate(
                {
                    "operator_id": self.catalog.operator_id,
                    "date": "2026-03-02",
                    "start_time": "2026-03-02T07:00:00Z",
                    "end_time": "2026-03-02T16:00:00Z",
                    "activities": [
                        activity_payload(
                            self.catalog,
                            time_category="Horario Laboral",
                            start_time="2026-03-02T07:00:00Z",
                            end_time="2026-03-02T12:00:00Z",
                        ),
                        activity_payload(
                            self.catalog,
                            time_category="Horario Laboral",
                            start_time="2026-03-02T13:00:00Z",
                            end_time="2026-03-02T16:00:00Z",
                        ),
                        activity_payload(
                            self.catalog,
                            time_category="Permiso Laboral",
                            permit_type="permiso no remunerado",
                            start_time="2026-03-02T09:00:00Z",
                            end_time="2026-03-02T10:00:00Z",
                            notes="Cita medica",
                        ),
                        activity_payload(self.catalog, time_category="OPERATION"),
                    ],
                }
            ),
        )
        save_complete_shift(
            self.db,
            ShiftCompleteRequest.model_validate(
                {
                    "operator_id": self.catalog.second_operator_id,
                    "date": "2026-03-03",
                    "activities": [
                        activity_payload(
                            self.catalog,
                            time_category="LABOR_PERMIT",
                            permit_type="PAID",
                            start_time="2026-03-03T10:00:00Z",
                            end_time="2026-03-03T10:30:00Z",
                        ),
                        activity_payload(
                            self.catalog,
                            time_category="LABOR_PERMIT",
                            permit_type="UNPAID",
                            start_time="2026-03-03T11:00:00Z",
                            end_time="2026-03-03T11:45:00Z",
                        ),
                    ],
                }
            ),
        )
        create_shift(
            self.db,
            ShiftCreateRequest(operator_id=self.catalog.operator_id, date="2026-03-04"),
        )

    def tearDown(self) -> None:
        self.db.close()

    def test_permit_report_lists_shifts_with_activities_newest_first(self) -> None:
        report = build_permit_report(self.db)

        self.assertEqual(report.total, 2)
        second, first = report.items
        self.assertEqual(second.operator_name, "Luis Mejia")
        self.assertEqual(second.shift_total_minutes, 0)
        self.assertEqual(len(second.permits), 2)

        self.assertEqual(first.document_number, "1020304050")
        self.assertEqual(first.shift_total_minutes, 540)
        self.assertEqual(first.activity_count, 4)
        self.assertEqual(len(first.permits), 1)
        self.assertEqual(first.permits[0].permit_type, PermitType.UNPAID)
        self.assertEqual(first.permits[0].duration_minutes, 60)
        self.assertEqual(first.permits[0].notes, "Cita medica")

    def test_permit_report_filters_by_operator_and_dates(self) -> None:
        by_operator = build_permit_report(self.db, operator_id=self.catalog.second_operator_id)
        by_dates = build_permit_report(self.db, start_date="2026-03-02", end_date="2026-03-02")
        outside = build_permit_report(self.db, start_date="2026-04-01")

        self.assertEqual([item.operator_id for item in by_operator.items], [self.catalog.second_operator_id])
        self.assertEqual([item.operator_id for item in by_dates.items], [self.catalog.operator_id])
        self.assertEqual(outside.total, 0)

    def test_permit_report_export_builds_workbook(self) -> None:
        payload = build_permit_report_xlsx_bytes(build_permit_report(self.db))

        workbook = load_workbook(BytesIO(payload))
        self.assertEqual(workbook.sheetnames, ["Jornadas", "Permisos"])
        shifts_ws = workbook["Jornadas"]
        self.assertEqual(shifts_ws["A2"].value, "Fecha")
        self.assertEqual(shifts_ws.max_row, 4)
        operators = {shifts_ws.cell(row=row, column=2).value for row in (3, 4)}
        self.assertEqual(operators, {"Ana Torres", "Luis Mejia"})

        permits_ws = workbook["Permisos"]
        self.assertEqual(permits_ws.max_row, 5)
        permit_types = sorted(permits_ws.cell(row=row, column=6).value for row in range(3, 6))
        self.assertEqual(permit_types, ["No remunerado", "No remunerado", "Remunerado"])

    def test_labor_summaries_use_work_schedule_and_permits_only(self) -> None:
        page = list_labor_day_summaries(self.db, include_activities=True)

        self.assertEqual(page.pagination.total_items, 2)
        permits_only, scheduled = page.items

        self.assertEqual(permits_only.key, f"{self.catalog.second_operator_id}-2026-03-03")
        self.assertEqual(permits_only.effective_payable_time.model_dump(), {"hours": 0, "minutes": 30})
        self.assertIsNone(permits_only.start_time)

        self.assertEqual(scheduled.operator_name, "Ana Torres")
        self.assertEqual(scheduled.effective_payable_time.model_dump(), {"hours": 8, "minutes": 0})
        self.assertEqual(scheduled.start_time.hour, 7)
        self.assertEqual(scheduled.end_time.hour, 16)
        self.assertEqual(len(scheduled.activities), 3)

    def test_labor_summaries_filter_and_paginate(self) -> None:
        by_name = list_labor_day_summaries(self.db, operator_name="ana")
        second_page = list_labor_day_summaries(self.db, page=2, limit=1)
        capped = list_labor_day_summaries(self.db, limit=500, max_page_size=50)

        self.assertEqual([item.operator_id for item in by_name.items], [self.catalog.operator_id])
        self.assertEqual(by_name.items[0].activities, [])

        self.assertEqual(len(second_page.items), 1)
        self.assertEqual(second_page.items[0].operator_id, self.catalog.operator_id)
        self.assertEqual(second_page.pagination.total_pages, 2)
        self.assertTrue(second_page.pagination.has_previous_page)
        self.assertFalse(second_page.pagination.has_next_page)

        self.assertEqual(capped.pagination.items_per_page, 50)

    def test_labor_summaries_do_not_touch_shift_totals(self) -> None:
        before = build_permit_report(self.db)

        list_labor_day_summaries(self.db)

        after = build_permit_report(self.db)
        self.assertEqual(
            [item.total_activity_time for item in before.items],
            [item.total_activity_time for item in after.items],
        )


if __name__ == "__main__":
    unittest.main()

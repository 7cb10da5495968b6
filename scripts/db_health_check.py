#!/usr/bin/env python
from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, text

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.settings import get_settings

EXPECTED_HEAD = "0002_shift_overlap_totals"
REQUIRED_TABLES = [
    "operators",
    "work_orders",
    "production_areas",
    "machines",
    "processes",
    "supplies",
    "shifts",
    "activity_records",
    "audit_logs",
]


def run() -> dict:
    database_url = get_settings().database_url
    engine = create_engine(database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "database_url": engine.url.render_as_string(hide_password=True),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    with engine.connect() as conn:
        tables = set(
            conn.execute(
                text(
                    """
                    select table_name
                    from information_schema.tables
                    where table_schema='public'
                    """
                )
            ).scalars()
        )

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        missing_tables = [table for table in REQUIRED_TABLES if table not in tables]
        add("missing_tables", "fail" if missing_tables else "ok", {"tables": missing_tables})

        if "shifts" in tables:
            # Reads consolidate these on demand; a large count points at a client retry loop.
            duplicate_shift_days = conn.execute(
                text(
                    """
                    select operator_id, (date at time zone 'UTC')::date as day, count(*)
                    from shifts
                    group by operator_id, (date at time zone 'UTC')::date
                    having count(*) > 1
                    order by count(*) desc
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "duplicate_operator_day_shifts",
                "warn" if duplicate_shift_days else "ok",
                {"rows": [[row[0], row[1].isoformat(), row[2]] for row in duplicate_shift_days]},
            )

            unnormalized_dates = conn.execute(
                text(
                    """
                    select id
                    from shifts
                    where date <> date_trunc('day', date at time zone 'UTC') at time zone 'UTC'
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "shift_date_not_midnight_utc",
                "warn" if unnormalized_dates else "ok",
                {"sample_ids": [row[0] for row in unnormalized_dates]},
            )

        if "shifts" in tables and "activity_records" in tables:
            dangling_refs = conn.execute(
                text(
                    """
                    select s.id, ref.value
                    from shifts s
                    cross join lateral jsonb_array_elements_text(s.activity_ids) as ref(value)
                    left join activity_records a on a.id = ref.value::int
                    where a.id is null
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "shift_dangling_activity_ref",
                "warn" if dangling_refs else "ok",
                {"rows": [[row[0], row[1]] for row in dangling_refs]},
            )

            detached_activities = conn.execute(
                text(
                    """
                    select id
                    from activity_records
                    where shift_id is null
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "activity_without_shift",
                "warn" if detached_activities else "ok",
                {"sample_ids": [row[0] for row in detached_activities]},
            )

            stale_totals = conn.execute(
                text(
                    """
                    select s.id
                    from shifts s
                    left join activity_records a on a.shift_id = s.id
                    group by s.id, s.summed_activity_minutes
                    having coalesce(sum(a.duration_minutes), 0) <> s.summed_activity_minutes
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "shift_totals_stale",
                "warn" if stale_totals else "ok",
                {
                    "sample_ids": [row[0] for row in stale_totals],
                    "hint": "POST /api/shifts/recalculate",
                },
            )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))

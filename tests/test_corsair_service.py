import csv
import io
import re

from models.enums import UserStatus
from models.sql.user import UserModel
from services.corsair_service import (
    CSV_HEADERS,
    AttributionIds,
    CorsairExportRecord,
    convert_to_csv,
    export_all_certified_users,
    export_pending_certified_users,
    generate_corsair_id,
    get_corsair_export_stats,
)
from services.cron_service import run_daily_tasks, run_monthly_tasks
from services.report_service import get_impact_report
from services.wallet_service import create_transaction


def make_record(**fields) -> CorsairExportRecord:
    defaults = dict(
        corsair_id="CSR26-ABC-123456",
        email="ada@example.com",
        total_impact_kg=100.123456,
        matured_impact_kg=5.0,
        pending_impact_kg=95.123456,
        wallet_balance=11.0,
        certification_date="2026-10-01",
        transaction_count=2,
        attribution_ids=AttributionIds(merchant_ids=["m1", "m2"], partner_ids=[]),
    )
    defaults.update(fields)
    return CorsairExportRecord(**defaults)


def test_generate_corsair_id_format():
    corsair_id = generate_corsair_id()

    assert re.fullmatch(r"CSR26-[0-9A-Z]+-[0-9A-Z]{6}", corsair_id)
    assert generate_corsair_id("acme").startswith("ACME-")


def test_convert_to_csv_quotes_special_characters():
    record = make_record(last_name='O"Brien', street="Via Roma 1, Scala B", city="Line\nBreak")

    rows = list(csv.reader(io.StringIO(convert_to_csv([record]))))

    assert rows[0] == CSV_HEADERS
    row = dict(zip(CSV_HEADERS, rows[1]))
    assert row["Last Name"] == 'O"Brien'
    assert row["Street"] == "Via Roma 1, Scala B"
    assert row["City"] == "Line\nBreak"
    assert row["Total Impact (kg)"] == "100.1235"
    assert row["Wallet Balance (EUR)"] == "11.00"
    assert row["Merchant IDs"] == "m1;m2"
    assert row["Partner IDs"] == ""


def test_convert_to_csv_empty():
    assert convert_to_csv([]) == ""


async def test_pending_export_marks_users_and_full_export_reuses_ids(sql_session):
    sql_session.add_all(
        [
            UserModel(email="cert@example.com", status=UserStatus.CERTIFIED.value, wallet_balance=12.0),
            UserModel(email="acc@example.com"),
        ]
    )
    await sql_session.commit()

    stats = await get_corsair_export_stats(sql_session)
    assert stats == {"total_certified": 1, "total_exported": 0, "pending_export": 1, "threshold": 10.0}

    pending = await export_pending_certified_users(sql_session)
    assert [record.email for record in pending] == ["cert@example.com"]
    assert await export_pending_certified_users(sql_session) == []

    full = await export_all_certified_users(sql_session)
    assert [record.corsair_id for record in full] == [pending[0].corsair_id]

    stats = await get_corsair_export_stats(sql_session)
    assert stats["pending_export"] == 0


async def test_cron_runs_record_each_task(sql_session):
    daily = await run_daily_tasks(sql_session)
    assert daily["tasks_run"] == 1
    assert daily["tasks_succeeded"] == 1
    assert daily["results"][0]["task"] == "daily-maturation"
    assert daily["run_id"].startswith("daily-")

    monthly = await run_monthly_tasks(sql_session)
    assert [result["task"] for result in monthly["results"]] == ["monthly-billing", "monthly-corsair-export"]
    assert monthly["tasks_failed"] == 0
    assert monthly["results"][1]["result"]["record_count"] == 0


async def test_impact_report(sql_session):
    await create_transaction(sql_session, {"payment_mode": "CLAIM", "amount": 1.1, "email": "r@example.com"})
    await create_transaction(sql_session, {"payment_mode": "PAY", "amount": 5, "email": "r@example.com"})

    report = await get_impact_report(sql_session)

    assert report["total_transactions"] == 2
    assert report["completed_transactions"] == 1
    assert report["total_revenue"] == 1.1
    assert report["equivalent_bottles"] == 250
    assert abs(report["matured_impact_kg"] - 0.5) < 1e-9

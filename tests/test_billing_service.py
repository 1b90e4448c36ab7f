from datetime import datetime, timezone

import pytest
from fastapi import HTTPException

from models.sql.merchant import MerchantModel
from services.billing_service import (
    billing_period,
    generate_merchant_invoice,
    get_billing_stats,
    get_invoice_details,
    get_merchants_with_balance,
    mark_invoice_paid,
    run_monthly_billing,
)
from services.wallet_service import create_transaction
from utils.datetime_utils import utc_now


def current_period():
    now = utc_now()
    return billing_period(now.year, now.month)


async def fund_merchant(sql_session, merchant, amount, email="buyer@example.com", mode="CLAIM"):
    return await create_transaction(
        sql_session,
        {"payment_mode": mode, "amount": amount, "merchant_id": merchant.id, "email": email},
    )


def test_billing_period_defaults_to_previous_month():
    start, end = billing_period(now=datetime(2026, 1, 15, tzinfo=timezone.utc))

    assert start == datetime(2025, 12, 1, tzinfo=timezone.utc)
    assert end == datetime(2025, 12, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)


def test_billing_period_handles_february():
    start, end = billing_period(2028, 2)

    assert start.day == 1
    assert end.day == 29


def test_billing_period_rejects_invalid_month():
    with pytest.raises(HTTPException) as exc:
        billing_period(2026, 13)
    assert exc.value.status_code == 400


async def test_invoice_bills_balance_and_resets_it(sql_session, merchant):
    await fund_merchant(sql_session, merchant, 15)
    # PAY transactions add to the balance but are not counted as merchant-funded.
    await fund_merchant(sql_session, merchant, 5, email="payer@example.com", mode="PAY")
    start, end = current_period()

    invoice = await generate_merchant_invoice(sql_session, merchant.id, start, end)

    assert invoice is not None
    assert invoice.amount == pytest.approx(20)
    assert invoice.transaction_count == 1
    assert invoice.total_impact_kg == pytest.approx(15 / 0.11)

    row = await sql_session.get(MerchantModel, merchant.id)
    assert row.current_balance == 0
    assert row.last_billing_date is not None


async def test_balance_below_minimum_carries_forward(sql_session, merchant):
    await fund_merchant(sql_session, merchant, 5)
    start, end = current_period()

    assert await generate_merchant_invoice(sql_session, merchant.id, start, end) is None

    row = await sql_session.get(MerchantModel, merchant.id)
    assert row.current_balance == pytest.approx(5)


async def test_disabled_or_unknown_merchants_are_skipped(sql_session, merchant):
    row = await sql_session.get(MerchantModel, merchant.id)
    row.monthly_billing = False
    row.current_balance = 50.0
    sql_session.add(row)
    await sql_session.commit()
    start, end = current_period()

    assert await generate_merchant_invoice(sql_session, merchant.id, start, end) is None
    assert await generate_merchant_invoice(sql_session, "missing", start, end) is None


async def test_monthly_run_summarises_results(sql_session, merchant):
    sql_session.add(MerchantModel(name="Tiny Shop", email="tiny@example.com"))
    await sql_session.commit()
    await fund_merchant(sql_session, merchant, 11)
    now = utc_now()

    result = await run_monthly_billing(sql_session, now.year, now.month)

    assert result["merchants_processed"] == 2
    assert result["invoices_generated"] == 1
    assert result["total_billed"] == pytest.approx(11)
    by_name = {entry["merchant_name"]: entry for entry in result["results"]}
    assert by_name["Tiny Shop"]["invoice"] is None
    assert by_name["Ocean Foods"]["invoice"]["amount"] == pytest.approx(11)


async def test_mark_paid_and_stats(sql_session, merchant):
    await fund_merchant(sql_session, merchant, 12)
    start, end = current_period()
    invoice = await generate_merchant_invoice(sql_session, merchant.id, start, end)

    outstanding = await get_merchants_with_balance(sql_session)
    assert [entry["merchant"]["id"] for entry in outstanding] == [merchant.id]
    assert outstanding[0]["unpaid_invoices"] == 1

    details = await get_invoice_details(sql_session, invoice.id)
    assert details["merchant"]["name"] == "Ocean Foods"
    assert len(details["transactions"]) == 1

    paid = await mark_invoice_paid(sql_session, invoice.id, "SEPA-42")
    assert paid.paid is True
    assert paid.payment_reference == "SEPA-42"

    with pytest.raises(HTTPException) as exc:
        await mark_invoice_paid(sql_session, invoice.id)
    assert exc.value.status_code == 409

    stats = await get_billing_stats(sql_session)
    assert stats["total_invoices"] == 1
    assert stats["paid_invoices"] == 1
    assert stats["total_outstanding"] == pytest.approx(0)
    assert await get_merchants_with_balance(sql_session) == []


async def test_unknown_invoice_is_404(sql_session):
    with pytest.raises(HTTPException) as exc:
        await get_invoice_details(sql_session, "missing")
    assert exc.value.status_code == 404

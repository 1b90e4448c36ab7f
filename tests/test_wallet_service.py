from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from models.enums import PaymentStatus, UserStatus
from models.sql.merchant import MerchantModel
from models.sql.user import UserModel
from services.settings_service import CERTIFICATION_THRESHOLD, update_setting
from services.user_service import get_user_by_email
from services.wallet_service import (
    adjust_wallet,
    calculate_maturation_breakdown,
    create_manual_transaction,
    create_transaction,
    get_wallet_summary_by_email,
    list_user_transactions,
    process_matured_impacts,
    update_transaction_status,
)


def test_maturation_breakdown_splits_five_forty_five_fifty():
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)

    breakdown = calculate_maturation_breakdown(100.0, start)

    assert breakdown["immediate_kg"] == pytest.approx(5.0)
    assert breakdown["mid_term_kg"] == pytest.approx(45.0)
    assert breakdown["final_kg"] == pytest.approx(50.0)
    assert breakdown["mid_term_matures_at"] == start + timedelta(weeks=40)
    assert breakdown["final_matures_at"] == start + timedelta(weeks=80)


async def test_claim_creates_user_and_credits_wallet(sql_session, claim_sku, merchant):
    result = await create_transaction(
        sql_session,
        {"payment_mode": "claim", "sku_code": claim_sku.code, "email": "Ada@Example.com"},
    )

    assert result["payment_status"] == PaymentStatus.COMPLETED.value
    assert result["merchant_id"] == merchant.id
    assert result["impact"]["impact_kg"] == pytest.approx(0.0)

    user = await get_user_by_email(sql_session, "ada@example.com")
    assert user is not None
    assert user.status == UserStatus.ACCUMULATION.value


async def test_completed_transaction_updates_wallet_and_merchant_balance(sql_session, merchant):
    result = await create_transaction(
        sql_session,
        {"payment_mode": "CLAIM", "amount": 1.1, "merchant_id": merchant.id, "email": "eve@example.com"},
    )

    assert result["impact_kg"] == pytest.approx(10.0)
    wallet = await get_wallet_summary_by_email(sql_session, "eve@example.com")
    assert wallet["balance"] == pytest.approx(1.1)
    assert wallet["impact_kg"] == pytest.approx(10.0)
    assert wallet["matured_impact_kg"] == pytest.approx(0.5)
    assert wallet["pending_impact_kg"] == pytest.approx(9.5)
    assert wallet["threshold_progress"] == pytest.approx(11.0)

    refreshed = await sql_session.get(MerchantModel, merchant.id)
    await sql_session.refresh(refreshed)
    assert refreshed.current_balance == pytest.approx(1.1)


async def test_merchant_price_per_kg_overrides_setting(sql_session, merchant):
    row = await sql_session.get(MerchantModel, merchant.id)
    row.price_per_kg = 0.5
    sql_session.add(row)
    await sql_session.commit()

    result = await create_transaction(
        sql_session,
        {"payment_mode": "CLAIM", "amount": 1.0, "merchant_id": merchant.id, "email": "max@example.com"},
    )

    assert result["impact_kg"] == pytest.approx(2.0)


async def test_weight_based_transaction(sql_session):
    result = await create_transaction(
        sql_session,
        {"payment_mode": "ALLOCATION", "weight_grams": 500, "multiplier": 2, "email": "w@example.com"},
    )

    assert result["impact_kg"] == pytest.approx(1.0)
    assert result["impact"]["display_value"] == "1.00 kg"


async def test_crossing_threshold_certifies_and_exports(sql_session):
    await create_transaction(sql_session, {"payment_mode": "CLAIM", "amount": 6, "email": "c@example.com"})
    user = await get_user_by_email(sql_session, "c@example.com")
    assert user.status == UserStatus.ACCUMULATION.value

    await create_transaction(sql_session, {"payment_mode": "CLAIM", "amount": 4, "email": "c@example.com"})

    await sql_session.refresh(user)
    assert user.status == UserStatus.CERTIFIED.value
    assert user.corsair_exported is True
    assert user.corsair_id.startswith("CSR26-")


async def test_threshold_follows_setting(sql_session):
    await update_setting(sql_session, CERTIFICATION_THRESHOLD, "2")

    await create_transaction(sql_session, {"payment_mode": "CLAIM", "amount": 2, "email": "t@example.com"})

    user = await get_user_by_email(sql_session, "t@example.com")
    assert user.status == UserStatus.CERTIFIED.value


async def test_missing_payment_mode_or_email_is_rejected(sql_session):
    with pytest.raises(HTTPException) as missing_mode:
        await create_transaction(sql_session, {"amount": 1, "email": "x@example.com"})
    assert missing_mode.value.status_code == 400

    with pytest.raises(HTTPException) as missing_email:
        await create_transaction(sql_session, {"payment_mode": "CLAIM", "amount": 1})
    assert missing_email.value.status_code == 400


async def test_pay_starts_pending_and_completes_once(sql_session):
    result = await create_transaction(sql_session, {"payment_mode": "PAY", "amount": 12, "email": "p@example.com"})
    assert result["payment_status"] == PaymentStatus.PENDING.value

    wallet = await get_wallet_summary_by_email(sql_session, "p@example.com")
    assert wallet["balance"] == 0

    await update_transaction_status(sql_session, result["id"], "completed")
    # Repeating the same status is a no-op.
    await update_transaction_status(sql_session, result["id"], "COMPLETED")

    wallet = await get_wallet_summary_by_email(sql_session, "p@example.com")
    assert wallet["balance"] == pytest.approx(12)
    assert wallet["status"] == UserStatus.CERTIFIED.value

    with pytest.raises(HTTPException) as exc:
        await update_transaction_status(sql_session, result["id"], "FAILED")
    assert exc.value.status_code == 400


async def test_invalid_status_is_rejected(sql_session):
    result = await create_transaction(sql_session, {"payment_mode": "PAY", "amount": 1, "email": "s@example.com"})

    with pytest.raises(HTTPException) as exc:
        await update_transaction_status(sql_session, result["id"], "REFUNDED")
    assert exc.value.status_code == 400


async def test_process_matured_impacts_is_idempotent(sql_session):
    created = await create_transaction(sql_session, {"payment_mode": "CLAIM", "amount": 1.1, "email": "m@example.com"})
    created_at = datetime.fromisoformat(created["created_at"].replace("Z", "+00:00"))

    after_mid_term = created_at + timedelta(weeks=41)
    first = await process_matured_impacts(sql_session, now=after_mid_term)
    again = await process_matured_impacts(sql_session, now=after_mid_term)

    assert first["mid_term_matured"] == 1
    assert first["final_matured"] == 0
    assert first["matured_kg"] == pytest.approx(4.5)
    assert again["mid_term_matured"] == 0
    assert again["matured_kg"] == 0

    wallet = await get_wallet_summary_by_email(sql_session, "m@example.com")
    assert wallet["matured_impact_kg"] == pytest.approx(5.0)
    assert wallet["pending_impact_kg"] == pytest.approx(5.0)

    final = await process_matured_impacts(sql_session, now=created_at + timedelta(weeks=81))
    assert final["final_matured"] == 1
    wallet = await get_wallet_summary_by_email(sql_session, "m@example.com")
    assert wallet["matured_impact_kg"] == pytest.approx(10.0)
    assert wallet["pending_impact_kg"] == pytest.approx(0.0, abs=1e-9)


async def test_adjust_wallet_requires_reason_and_number(sql_session):
    user = UserModel(email="adj@example.com")
    sql_session.add(user)
    await sql_session.commit()

    with pytest.raises(HTTPException):
        await adjust_wallet(sql_session, user.id, 5, "   ")
    with pytest.raises(HTTPException):
        await adjust_wallet(sql_session, user.id, None, "bonus")

    adjusted = await adjust_wallet(sql_session, user.id, 5, "goodwill bonus")
    assert adjusted.wallet_balance == pytest.approx(5)

    history = await list_user_transactions(sql_session, user.id)
    assert history["total"] == 1
    assert history["transactions"][0]["note"] == "ADMIN_ADJUSTMENT: goodwill bonus"
    assert history["transactions"][0]["payment_mode"] == "CLAIM"


async def test_manual_transaction_records_reason(sql_session):
    result = await create_manual_transaction(
        sql_session,
        {"email": "manual@example.com", "amount": 3, "payment_mode": "pay", "reason": "bank transfer"},
    )

    assert result["payment_status"] == PaymentStatus.COMPLETED.value
    assert result["note"] == "MANUAL: bank transfer"
    assert result["user"]["email"] == "manual@example.com"

    with pytest.raises(HTTPException) as exc:
        await create_manual_transaction(
            sql_session, {"email": "manual@example.com", "amount": 3, "payment_mode": "PAY"}
        )
    assert exc.value.status_code == 400


async def test_unknown_email_has_empty_wallet(sql_session):
    wallet = await get_wallet_summary_by_email(sql_session, "nobody@example.com")

    assert wallet["balance"] == 0
    assert wallet["status"] == UserStatus.ACCUMULATION.value
    assert wallet["transaction_count"] == 0

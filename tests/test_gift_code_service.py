import pytest
from fastapi import HTTPException

from models.enums import GiftCodeStatus
from models.sql.gift_code import GiftCodeModel
from services.gift_code_service import (
    activate_gift_code,
    batch_upload_gift_codes,
    deactivate_gift_code,
    list_gift_codes,
    validate_gift_code,
)
from services.wallet_service import create_transaction


async def test_batch_upload_trims_dedupes_and_skips_existing(sql_session, gift_sku):
    first = await batch_upload_gift_codes(sql_session, gift_sku.code, [" AAA ", "BBB", "AAA", ""])
    assert first == {"created": 2, "skipped": 2}

    second = await batch_upload_gift_codes(sql_session, gift_sku.code, ["BBB", "CCC"])
    assert second == {"created": 1, "skipped": 1}

    listing = await list_gift_codes(sql_session, sku_code=gift_sku.code)
    assert listing["total"] == 3
    assert {code["code"] for code in listing["gift_codes"]} == {"AAA", "BBB", "CCC"}


async def test_batch_upload_rejects_nothing_new(sql_session, gift_sku):
    await batch_upload_gift_codes(sql_session, gift_sku.code, ["AAA"])

    with pytest.raises(HTTPException) as exc:
        await batch_upload_gift_codes(sql_session, gift_sku.code, ["AAA", " AAA"])
    assert exc.value.status_code == 400
    assert exc.value.detail == "All codes already exist."


async def test_batch_upload_requires_gift_card_sku(sql_session, claim_sku):
    with pytest.raises(HTTPException) as wrong_type:
        await batch_upload_gift_codes(sql_session, claim_sku.code, ["AAA"])
    assert wrong_type.value.status_code == 400

    with pytest.raises(HTTPException) as missing:
        await batch_upload_gift_codes(sql_session, "NOPE", ["AAA"])
    assert missing.value.status_code == 404


async def test_validate_reports_amount_and_impact(sql_session, gift_sku):
    await batch_upload_gift_codes(sql_session, gift_sku.code, ["GIFT-001"])

    result = await validate_gift_code(sql_session, "GIFT-001", gift_sku.code)

    assert result["valid"] is True
    assert result["amount"] == 25.0
    assert result["impact_kg"] == pytest.approx(227.2727, rel=1e-4)
    assert result["impact_display"] == "227.27 kg"
    assert result["message"] == "Code valid for €25 (227.27 kg plastic removal)"


@pytest.mark.parametrize(
    "code,sku_code,message",
    [
        ("UNKNOWN", "GIFT-25", "Invalid gift code"),
        ("GIFT-001", "OTHER", "Code does not match this product"),
    ],
)
async def test_validate_rejections(sql_session, gift_sku, code, sku_code, message):
    await batch_upload_gift_codes(sql_session, gift_sku.code, ["GIFT-001"])

    assert await validate_gift_code(sql_session, code, sku_code) == {"valid": False, "message": message}


async def test_redeeming_through_transaction_marks_code_used(sql_session, gift_sku):
    await batch_upload_gift_codes(sql_session, gift_sku.code, ["GIFT-001"])

    result = await create_transaction(
        sql_session,
        {"payment_mode": "GIFT_CARD", "gift_code": "GIFT-001", "sku_code": gift_sku.code, "email": "g@example.com"},
    )

    assert result["amount"] == 25.0
    assert result["gift_code_used"] == "GIFT-001"
    gift_code = await sql_session.get(GiftCodeModel, "GIFT-001")
    await sql_session.refresh(gift_code)
    assert gift_code.status == GiftCodeStatus.USED.value
    assert gift_code.used_by_user_id == result["user_id"]
    assert gift_code.used_at is not None

    validation = await validate_gift_code(sql_session, "GIFT-001", gift_sku.code)
    assert validation == {"valid": False, "message": "Code already used"}

    with pytest.raises(HTTPException) as exc:
        await create_transaction(
            sql_session,
            {"payment_mode": "GIFT_CARD", "gift_code": "GIFT-001", "email": "h@example.com"},
        )
    assert exc.value.status_code == 400
    assert exc.value.detail == "Code already used"


async def test_deactivate_and_activate(sql_session, gift_sku):
    await batch_upload_gift_codes(sql_session, gift_sku.code, ["GIFT-001"])

    with pytest.raises(HTTPException):
        await activate_gift_code(sql_session, "GIFT-001")

    deactivated = await deactivate_gift_code(sql_session, "GIFT-001")
    assert deactivated.status == GiftCodeStatus.DEACTIVATED.value
    assert (await validate_gift_code(sql_session, "GIFT-001", gift_sku.code))["message"] == "Code deactivated"

    activated = await activate_gift_code(sql_session, "GIFT-001")
    assert activated.status == GiftCodeStatus.UNUSED.value


async def test_used_code_cannot_be_deactivated(sql_session, gift_sku):
    await batch_upload_gift_codes(sql_session, gift_sku.code, ["GIFT-001"])
    await create_transaction(
        sql_session, {"payment_mode": "GIFT_CARD", "gift_code": "GIFT-001", "email": "g@example.com"}
    )

    with pytest.raises(HTTPException) as exc:
        await deactivate_gift_code(sql_session, "GIFT-001")
    assert exc.value.status_code == 400

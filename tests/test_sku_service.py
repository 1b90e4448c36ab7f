import pytest
from fastapi import HTTPException

from models.sql.sku import SkuModel
from services.sku_service import (
    create_sku,
    deactivate_sku,
    find_active_sku,
    get_public_sku,
    list_skus,
    update_sku,
)


async def test_create_normalises_code_and_mode(sql_session):
    sku = await create_sku(
        sql_session, {"code": " PAY-3 ", "name": "Pay three", "payment_mode": "pay", "price": 3}
    )

    assert sku.code == "PAY-3"
    assert sku.payment_mode == "PAY"
    assert sku.price == 3.0
    assert sku.multiplier == 1.0
    assert sku.active is True


async def test_duplicate_code_is_rejected(sql_session, claim_sku):
    with pytest.raises(HTTPException) as exc:
        await create_sku(sql_session, {"code": claim_sku.code, "name": "Again", "payment_mode": "CLAIM"})

    assert exc.value.status_code == 400
    assert exc.value.detail == "SKU code already exists."


@pytest.mark.parametrize(
    "data,status_code",
    [
        ({"code": "X-1", "payment_mode": "CLAIM"}, 400),
        ({"code": "X-1", "name": "X", "payment_mode": "BARTER"}, 400),
        ({"code": "X-1", "name": "X", "payment_mode": "CLAIM", "merchant_id": "missing"}, 404),
    ],
)
async def test_create_rejects_bad_input(sql_session, data, status_code):
    with pytest.raises(HTTPException) as exc:
        await create_sku(sql_session, data)
    assert exc.value.status_code == status_code


async def test_update_applies_known_fields_only(sql_session, claim_sku):
    sku = await update_sku(
        sql_session, claim_sku.code, {"price": 2.2, "payment_mode": "allocation", "code": "RENAMED"}
    )

    assert sku.code == claim_sku.code
    assert sku.price == 2.2
    assert sku.payment_mode == "ALLOCATION"

    with pytest.raises(HTTPException) as exc:
        await update_sku(sql_session, "NOPE", {"price": 1})
    assert exc.value.status_code == 404


async def test_soft_delete_hides_sku_from_public_lookups(sql_session, claim_sku):
    public = await get_public_sku(sql_session, claim_sku.code)
    assert public["merchant"]["name"] == "Ocean Foods"

    await deactivate_sku(sql_session, claim_sku.code)

    row = await sql_session.get(SkuModel, claim_sku.code)
    assert row.active is False
    assert await find_active_sku(sql_session, claim_sku.code) is None
    with pytest.raises(HTTPException) as exc:
        await get_public_sku(sql_session, claim_sku.code)
    assert exc.value.status_code == 404

    listed = await list_skus(sql_session)
    assert [(sku["code"], sku["active"]) for sku in listed] == [(claim_sku.code, False)]


async def test_list_filters_by_merchant(sql_session, claim_sku, gift_sku, merchant):
    assert [sku["code"] for sku in await list_skus(sql_session, merchant_id=merchant.id)] == [claim_sku.code]
    assert len(await list_skus(sql_session)) == 2

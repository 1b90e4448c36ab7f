import pytest
from fastapi import HTTPException

from models.enums import UserRole
from models.sql.merchant import MerchantModel
from models.sql.user import UserModel
from services.merchant_service import (
    create_partner,
    ensure_partner_access,
    get_partner_summary,
    list_partners,
    update_partner,
)
from services.wallet_service import create_transaction


async def make_partner(sql_session, **fields):
    data = {"name": "Blue Coast", "email": "Team@BlueCoast.example", "commission_rate": 0.1}
    data.update(fields)
    return await create_partner(sql_session, data)


async def test_create_partner(sql_session):
    partner = await make_partner(sql_session, contact_person="Lia")

    assert partner.email == "team@bluecoast.example"
    assert partner.commission_rate == 0.1
    assert partner.active is True

    with pytest.raises(HTTPException) as duplicate:
        await make_partner(sql_session, name="Other")
    assert duplicate.value.status_code == 409


@pytest.mark.parametrize(
    "fields",
    [{"name": ""}, {"email": None}, {"commission_rate": 1.5}, {"commission_rate": -0.1}],
)
async def test_create_partner_rejects_bad_input(sql_session, fields):
    with pytest.raises(HTTPException) as exc:
        await make_partner(sql_session, **fields)
    assert exc.value.status_code == 400


async def test_update_partner(sql_session):
    partner = await make_partner(sql_session)

    updated = await update_partner(sql_session, partner.id, {"commission_rate": 0.25, "active": False, "id": "x"})

    assert updated.id == partner.id
    assert updated.commission_rate == 0.25
    assert updated.active is False

    with pytest.raises(HTTPException) as bad_rate:
        await update_partner(sql_session, partner.id, {"commission_rate": 2})
    assert bad_rate.value.status_code == 400

    with pytest.raises(HTTPException) as missing:
        await update_partner(sql_session, "missing", {"name": "x"})
    assert missing.value.status_code == 404


async def test_partner_summary_totals_and_commission(sql_session, merchant):
    partner = await make_partner(sql_session)
    row = await sql_session.get(MerchantModel, merchant.id)
    row.partner_id = partner.id
    sql_session.add(row)
    await sql_session.commit()

    await create_transaction(
        sql_session,
        {"payment_mode": "CLAIM", "amount": 11, "merchant_id": merchant.id, "email": "buyer@example.com"},
    )
    await create_transaction(
        sql_session,
        {"payment_mode": "ALLOCATION", "amount": 1.1, "partner_id": partner.id, "email": "shop@example.com"},
    )

    summary = await get_partner_summary(sql_session, partner.id)

    assert summary["partner"]["id"] == partner.id
    assert [m["name"] for m in summary["merchants"]] == ["Ocean Foods"]
    assert summary["merchants"][0]["transaction_count"] == 1
    stats = summary["stats"]
    assert stats["total_merchants"] == 1
    assert stats["total_transactions"] == 2
    assert stats["monthly_transactions"] == 2
    assert stats["total_revenue"] == pytest.approx(12.1)
    assert stats["total_commission"] == pytest.approx(1.21)

    listing = await list_partners(sql_session)
    assert listing[0]["merchant_count"] == 1


async def test_unknown_partner_summary_is_404(sql_session):
    with pytest.raises(HTTPException) as exc:
        await get_partner_summary(sql_session, "missing")
    assert exc.value.status_code == 404


def test_partner_access_rules():
    ensure_partner_access(UserModel(email="a@example.com", role=UserRole.ADMIN.value), "p1")
    ensure_partner_access(UserModel(email="p@example.com", role=UserRole.PARTNER.value, partner_id="p1"), "p1")

    denied = [
        UserModel(email="p@example.com", role=UserRole.PARTNER.value, partner_id="p2"),
        UserModel(email="m@example.com", role=UserRole.MERCHANT.value, partner_id="p1"),
    ]
    for user in denied:
        with pytest.raises(HTTPException) as exc:
            ensure_partner_access(user, "p1")
        assert exc.value.status_code == 403

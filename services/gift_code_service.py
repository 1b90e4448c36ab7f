import logging
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from models.enums import GiftCodeStatus, PaymentMode
from models.sql.gift_code import GiftCodeModel
from models.sql.sku import SkuModel
from services.landing_service import calculate_impact
from services.settings_service import get_certification_threshold, get_price_per_kg
from utils.datetime_utils import iso_utc, utc_now

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500


def serialize_gift_code(gift_code: GiftCodeModel, sku: SkuModel | None = None) -> dict:
    payload = {
        "code": gift_code.code,
        "sku_code": gift_code.sku_code,
        "status": gift_code.status,
        "used_by_user_id": gift_code.used_by_user_id,
        "used_at": iso_utc(gift_code.used_at),
        "created_at": iso_utc(gift_code.created_at),
    }
    if sku is not None:
        payload["sku"] = {"code": sku.code, "name": sku.name, "price": float(sku.price)}
    return payload


def _invalid(message: str) -> dict:
    return {"valid": False, "message": message}


def _rejection_reason(gift_code: GiftCodeModel | None, sku_code: str | None) -> str | None:
    if gift_code is None:
        return "Invalid gift code"
    if sku_code and gift_code.sku_code != sku_code:
        return "Code does not match this product"
    if gift_code.status != GiftCodeStatus.UNUSED.value:
        if gift_code.status == GiftCodeStatus.USED.value:
            return "Code already used"
        return "Code deactivated"
    return None


async def validate_gift_code(sql_session: AsyncSession, code: str, sku_code: str) -> dict:
    normalized_code = (code or "").strip()
    normalized_sku = (sku_code or "").strip()
    if not normalized_code or not normalized_sku:
        raise HTTPException(status_code=400, detail="Code and sku_code are required.")

    gift_code = await sql_session.get(GiftCodeModel, normalized_code)
    reason = _rejection_reason(gift_code, normalized_sku)
    if reason:
        return _invalid(reason)

    sku = await sql_session.get(SkuModel, gift_code.sku_code)
    amount = float(sku.price) if sku else 0.0
    impact = calculate_impact(
        amount,
        await get_price_per_kg(sql_session),
        await get_certification_threshold(sql_session),
    )
    return {
        "valid": True,
        "amount": amount,
        "impact_kg": impact.impact_kg,
        "impact_display": impact.display_value,
        "message": f"Code valid for €{amount:g} ({impact.display_value} plastic removal)",
    }


async def list_gift_codes(
    sql_session: AsyncSession,
    status: Optional[str] = None,
    sku_code: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    filters = []
    if status:
        filters.append(GiftCodeModel.status == status.strip().upper())
    if sku_code:
        filters.append(GiftCodeModel.sku_code == sku_code.strip())

    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = max(0, offset)

    query = (
        select(GiftCodeModel, SkuModel)
        .join(SkuModel, SkuModel.code == GiftCodeModel.sku_code)
        .where(*filters)
        .order_by(GiftCodeModel.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    rows = (await sql_session.execute(query)).all()

    count_query = select(func.count()).select_from(GiftCodeModel).where(*filters)
    total = int((await sql_session.execute(count_query)).scalar() or 0)

    return {
        "gift_codes": [serialize_gift_code(gift_code, sku) for gift_code, sku in rows],
        "total": total,
    }


async def batch_upload_gift_codes(sql_session: AsyncSession, sku_code: str, codes: list[str]) -> dict:
    normalized_sku = (sku_code or "").strip()
    if not normalized_sku or not codes:
        raise HTTPException(status_code=400, detail="sku_code and codes array are required.")

    sku = await sql_session.get(SkuModel, normalized_sku)
    if sku is None:
        raise HTTPException(status_code=404, detail="SKU not found.")
    if sku.payment_mode != PaymentMode.GIFT_CARD.value:
        raise HTTPException(status_code=400, detail="SKU must be a GIFT_CARD type.")

    # Trimmed, de-duplicated, first occurrence order kept.
    unique_codes = list(dict.fromkeys(code.strip() for code in codes if code and code.strip()))
    if not unique_codes:
        raise HTTPException(status_code=400, detail="sku_code and codes array are required.")

    existing_query = select(GiftCodeModel.code).where(GiftCodeModel.code.in_(unique_codes))
    existing = set((await sql_session.execute(existing_query)).scalars().all())
    new_codes = [code for code in unique_codes if code not in existing]

    if not new_codes:
        raise HTTPException(status_code=400, detail="All codes already exist.")

    for code in new_codes:
        sql_session.add(GiftCodeModel(code=code, sku_code=normalized_sku))
    await sql_session.commit()

    logger.info(f"Uploaded {len(new_codes)} gift codes for SKU {normalized_sku}")
    return {"created": len(new_codes), "skipped": len(codes) - len(new_codes)}


async def _get_gift_code_or_404(sql_session: AsyncSession, code: str) -> GiftCodeModel:
    gift_code = await sql_session.get(GiftCodeModel, (code or "").strip())
    if gift_code is None:
        raise HTTPException(status_code=404, detail="Gift code not found.")
    return gift_code


async def deactivate_gift_code(sql_session: AsyncSession, code: str) -> GiftCodeModel:
    gift_code = await _get_gift_code_or_404(sql_session, code)
    if gift_code.status == GiftCodeStatus.USED.value:
        raise HTTPException(status_code=400, detail="Cannot deactivate an already used code.")

    gift_code.status = GiftCodeStatus.DEACTIVATED.value
    sql_session.add(gift_code)
    await sql_session.commit()
    await sql_session.refresh(gift_code)
    return gift_code


async def activate_gift_code(sql_session: AsyncSession, code: str) -> GiftCodeModel:
    gift_code = await _get_gift_code_or_404(sql_session, code)
    if gift_code.status == GiftCodeStatus.USED.value:
        raise HTTPException(status_code=400, detail="Cannot activate an already used code.")
    if gift_code.status == GiftCodeStatus.UNUSED.value:
        raise HTTPException(status_code=400, detail="Code is already active.")

    gift_code.status = GiftCodeStatus.UNUSED.value
    sql_session.add(gift_code)
    await sql_session.commit()
    await sql_session.refresh(gift_code)
    return gift_code


async def redeem_gift_code(
    sql_session: AsyncSession,
    code: str,
    user_id: str,
    sku_code: Optional[str] = None,
) -> tuple[GiftCodeModel, SkuModel | None]:
    """
    Mark a gift code USED by `user_id`.

    Changes are staged on the session only; the caller commits them together
    with the transaction that consumes the code.
    """
    query = (
        select(GiftCodeModel)
        .where(GiftCodeModel.code == (code or "").strip())
        .with_for_update()
    )
    gift_code = (await sql_session.execute(query)).scalars().first()
    reason = _rejection_reason(gift_code, (sku_code or "").strip() or None)
    if reason:
        raise HTTPException(status_code=400, detail=reason)

    gift_code.status = GiftCodeStatus.USED.value
    gift_code.used_by_user_id = user_id
    gift_code.used_at = utc_now()
    sql_session.add(gift_code)

    sku = await sql_session.get(SkuModel, gift_code.sku_code)
    logger.info(f"Gift code {gift_code.code} redeemed by user {user_id}")
    return gift_code, sku

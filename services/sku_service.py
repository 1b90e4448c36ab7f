import logging
from typing import Any

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from models.enums import PaymentMode
from models.sql.merchant import MerchantModel
from models.sql.sku import SkuModel
from utils.datetime_utils import iso_utc, utc_now

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "name",
    "description",
    "payment_mode",
    "price",
    "weight_grams",
    "multiplier",
    "payment_required",
    "validation_required",
    "active",
    "merchant_id",
}


def normalize_payment_mode(raw_mode: Any) -> str:
    mode = (str(raw_mode) if raw_mode is not None else "").strip().upper()
    try:
        return PaymentMode(mode).value
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid payment mode. Must be one of: {', '.join(m.value for m in PaymentMode)}",
        )


def serialize_sku(sku: SkuModel, merchant: MerchantModel | None = None) -> dict:
    payload = {
        "code": sku.code,
        "name": sku.name,
        "description": sku.description,
        "payment_mode": sku.payment_mode,
        "price": float(sku.price),
        "weight_grams": sku.weight_grams,
        "multiplier": float(sku.multiplier),
        "payment_required": sku.payment_required,
        "validation_required": sku.validation_required,
        "active": sku.active,
        "merchant_id": sku.merchant_id,
        "created_at": iso_utc(sku.created_at),
        "updated_at": iso_utc(sku.updated_at),
    }
    if merchant is not None:
        payload["merchant"] = {
            "id": merchant.id,
            "name": merchant.name,
            "multiplier": float(merchant.multiplier),
        }
    return payload


async def find_active_sku(sql_session: AsyncSession, code: str | None) -> SkuModel | None:
    normalized = (code or "").strip()
    if not normalized:
        return None
    sku = await sql_session.get(SkuModel, normalized)
    if sku is None or not sku.active:
        return None
    return sku


async def get_public_sku(sql_session: AsyncSession, code: str) -> dict:
    sku = await find_active_sku(sql_session, code)
    if sku is None:
        raise HTTPException(status_code=404, detail="SKU not found.")
    merchant = await sql_session.get(MerchantModel, sku.merchant_id) if sku.merchant_id else None
    return serialize_sku(sku, merchant)


async def list_skus(sql_session: AsyncSession, merchant_id: str | None = None) -> list[dict]:
    query = select(SkuModel).order_by(SkuModel.created_at.desc())
    if merchant_id:
        query = query.where(SkuModel.merchant_id == merchant_id)
    result = await sql_session.execute(query)
    return [serialize_sku(sku) for sku in result.scalars().all()]


async def create_sku(sql_session: AsyncSession, data: dict) -> SkuModel:
    code = (data.get("code") or "").strip()
    name = (data.get("name") or "").strip()
    if not code or not name or not data.get("payment_mode"):
        raise HTTPException(status_code=400, detail="Code, name, and payment_mode are required.")

    if await sql_session.get(SkuModel, code) is not None:
        raise HTTPException(status_code=400, detail="SKU code already exists.")

    merchant_id = data.get("merchant_id")
    if merchant_id and await sql_session.get(MerchantModel, merchant_id) is None:
        raise HTTPException(status_code=404, detail="Merchant not found.")

    sku = SkuModel(
        code=code,
        name=name,
        description=data.get("description"),
        payment_mode=normalize_payment_mode(data.get("payment_mode")),
        price=float(data.get("price") or 0),
        weight_grams=data.get("weight_grams"),
        multiplier=float(data.get("multiplier") or 1),
        payment_required=bool(data.get("payment_required") or False),
        validation_required=bool(data.get("validation_required") or False),
        merchant_id=merchant_id,
    )
    sql_session.add(sku)
    await sql_session.commit()
    await sql_session.refresh(sku)
    logger.info(f"SKU {sku.code} created ({sku.payment_mode})")
    return sku


async def update_sku(sql_session: AsyncSession, code: str, data: dict) -> SkuModel:
    sku = await sql_session.get(SkuModel, code)
    if sku is None:
        raise HTTPException(status_code=404, detail="SKU not found.")

    for field, value in data.items():
        if field not in UPDATABLE_FIELDS:
            continue
        if field == "payment_mode":
            value = normalize_payment_mode(value)
        setattr(sku, field, value)

    sku.updated_at = utc_now()
    sql_session.add(sku)
    await sql_session.commit()
    await sql_session.refresh(sku)
    return sku


async def deactivate_sku(sql_session: AsyncSession, code: str) -> None:
    sku = await sql_session.get(SkuModel, code)
    if sku is None:
        raise HTTPException(status_code=404, detail="SKU not found.")

    sku.active = False
    sku.updated_at = utc_now()
    sql_session.add(sku)
    await sql_session.commit()
    logger.info(f"SKU {code} deactivated")

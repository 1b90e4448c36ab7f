import calendar
import logging
from datetime import datetime, time, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import false, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from models.enums import PaymentStatus, UserRole
from models.sql.invoice import InvoiceModel
from models.sql.merchant import MerchantModel
from models.sql.partner import PartnerModel
from models.sql.sku import SkuModel
from models.sql.transaction import TransactionModel
from models.sql.user import UserModel
from services.settings_service import get_default_multiplier
from services.wallet_service import MAX_PAGE_SIZE, serialize_transaction
from utils.datetime_utils import as_utc, iso_utc, parse_iso, utc_now

logger = logging.getLogger(__name__)

MERCHANT_UPDATABLE_FIELDS = {"name", "email", "multiplier", "price_per_kg", "monthly_billing", "partner_id"}
PARTNER_UPDATABLE_FIELDS = {"name", "email", "contact_person", "commission_rate", "active"}


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def start_of_month(value: datetime) -> datetime:
    return value.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def serialize_merchant(merchant: MerchantModel, **extra) -> dict:
    return {
        "id": merchant.id,
        "name": merchant.name,
        "email": merchant.email,
        "multiplier": float(merchant.multiplier),
        "price_per_kg": merchant.price_per_kg,
        "monthly_billing": merchant.monthly_billing,
        "current_balance": float(merchant.current_balance),
        "last_billing_date": iso_utc(merchant.last_billing_date),
        "partner_id": merchant.partner_id,
        "created_at": iso_utc(merchant.created_at),
        "updated_at": iso_utc(merchant.updated_at),
        **extra,
    }


def serialize_invoice(invoice: InvoiceModel) -> dict:
    return {
        "id": invoice.id,
        "merchant_id": invoice.merchant_id,
        "period_start": iso_utc(invoice.period_start),
        "period_end": iso_utc(invoice.period_end),
        "transaction_count": invoice.transaction_count,
        "total_impact_kg": float(invoice.total_impact_kg),
        "amount": float(invoice.amount),
        "paid": invoice.paid,
        "paid_at": iso_utc(invoice.paid_at),
        "payment_reference": invoice.payment_reference,
        "created_at": iso_utc(invoice.created_at),
    }


def serialize_partner(partner: PartnerModel, **extra) -> dict:
    return {
        "id": partner.id,
        "name": partner.name,
        "email": partner.email,
        "contact_person": partner.contact_person,
        "commission_rate": float(partner.commission_rate),
        "active": partner.active,
        "created_at": iso_utc(partner.created_at),
        **extra,
    }


async def get_merchant_or_404(sql_session: AsyncSession, merchant_id: str) -> MerchantModel:
    merchant = await sql_session.get(MerchantModel, merchant_id)
    if merchant is None:
        raise HTTPException(status_code=404, detail="Merchant not found.")
    return merchant


def ensure_merchant_access(user: UserModel, merchant_id: str) -> None:
    if user.role == UserRole.ADMIN.value:
        return
    if user.role == UserRole.MERCHANT.value and user.merchant_id == merchant_id:
        return
    raise HTTPException(status_code=403, detail="Insufficient permissions.")


def merchant_id_for_user(user: UserModel) -> str:
    if not user.merchant_id:
        raise HTTPException(status_code=404, detail="No merchant is linked to this account.")
    return user.merchant_id


async def _count_by(sql_session: AsyncSession, column, ids: list[str]) -> dict[str, int]:
    if not ids:
        return {}
    query = select(column, func.count()).where(column.in_(ids)).group_by(column)
    return {key: int(count) for key, count in (await sql_session.execute(query)).all()}


async def list_merchants(sql_session: AsyncSession) -> list[dict]:
    merchants = (
        await sql_session.execute(select(MerchantModel).order_by(MerchantModel.created_at.desc()))
    ).scalars().all()
    ids = [merchant.id for merchant in merchants]
    transaction_counts = await _count_by(sql_session, TransactionModel.merchant_id, ids)
    sku_counts = await _count_by(sql_session, SkuModel.merchant_id, ids)
    return [
        serialize_merchant(
            merchant,
            transaction_count=transaction_counts.get(merchant.id, 0),
            sku_count=sku_counts.get(merchant.id, 0),
        )
        for merchant in merchants
    ]


async def _ensure_partner_exists(sql_session: AsyncSession, partner_id: Optional[str]) -> None:
    if partner_id and await sql_session.get(PartnerModel, partner_id) is None:
        raise HTTPException(status_code=404, detail="Partner not found.")


async def create_merchant(sql_session: AsyncSession, data: dict) -> MerchantModel:
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    if not name or not email:
        raise HTTPException(status_code=400, detail="Name and email are required.")

    existing = await sql_session.execute(select(MerchantModel).where(MerchantModel.email == email))
    if existing.scalars().first():
        raise HTTPException(status_code=409, detail="Merchant with this email already exists.")
    await _ensure_partner_exists(sql_session, data.get("partner_id"))

    merchant = MerchantModel(
        name=name,
        email=email,
        multiplier=float(data.get("multiplier") or await get_default_multiplier(sql_session)),
        price_per_kg=data.get("price_per_kg"),
        monthly_billing=data.get("monthly_billing") is not False,
        partner_id=data.get("partner_id"),
    )
    sql_session.add(merchant)
    await sql_session.commit()
    await sql_session.refresh(merchant)
    logger.info(f"Merchant {merchant.id} created ({merchant.name})")
    return merchant


async def update_merchant(sql_session: AsyncSession, merchant_id: str, data: dict) -> MerchantModel:
    merchant = await get_merchant_or_404(sql_session, merchant_id)
    if "partner_id" in data:
        await _ensure_partner_exists(sql_session, data["partner_id"])
    if data.get("multiplier") is not None and data["multiplier"] <= 0:
        raise HTTPException(status_code=400, detail="Multiplier must be greater than 0.")

    for field, value in data.items():
        if field in MERCHANT_UPDATABLE_FIELDS:
            setattr(merchant, field, value)
    merchant.updated_at = utc_now()
    sql_session.add(merchant)
    await sql_session.commit()
    await sql_session.refresh(merchant)
    return merchant


async def _completed_totals(sql_session: AsyncSession, *filters) -> dict:
    query = select(
        func.count(TransactionModel.id),
        func.coalesce(func.sum(TransactionModel.amount), 0.0),
        func.coalesce(func.sum(TransactionModel.impact_kg), 0.0),
    ).where(TransactionModel.payment_status == PaymentStatus.COMPLETED.value, *filters)
    count, amount, impact_kg = (await sql_session.execute(query)).one()
    return {"count": int(count or 0), "amount": float(amount or 0), "impact_kg": float(impact_kg or 0)}


def _next_billing_date(merchant: MerchantModel) -> Optional[datetime]:
    if merchant.last_billing_date is None:
        return None
    return add_months(as_utc(merchant.last_billing_date), 1)


async def get_merchant_summary(sql_session: AsyncSession, merchant_id: str) -> dict:
    merchant = await get_merchant_or_404(sql_session, merchant_id)
    totals = await _completed_totals(sql_session, TransactionModel.merchant_id == merchant_id)
    sku_count = (await _count_by(sql_session, SkuModel.merchant_id, [merchant_id])).get(merchant_id, 0)
    return {
        "id": merchant.id,
        "name": merchant.name,
        "multiplier": float(merchant.multiplier),
        "transaction_count": totals["count"],
        "total_impact_kg": totals["impact_kg"],
        "total_revenue": totals["amount"],
        "current_balance": float(merchant.current_balance),
        "sku_count": sku_count,
        "next_billing_date": iso_utc(_next_billing_date(merchant)),
    }


async def get_merchant_transactions(
    sql_session: AsyncSession,
    merchant_id: str,
    limit: int = 50,
    offset: int = 0,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
) -> dict:
    await get_merchant_or_404(sql_session, merchant_id)
    filters = [TransactionModel.merchant_id == merchant_id]
    start = parse_iso(date_from)
    if start:
        filters.append(TransactionModel.created_at >= start)
    end = parse_iso(date_to)
    if end:
        # Date-only bounds include the whole day.
        if end.time() == time(0, 0):
            end = end + timedelta(days=1) - timedelta(microseconds=1)
        filters.append(TransactionModel.created_at <= end)

    query = (
        select(TransactionModel, UserModel, SkuModel)
        .join(UserModel, UserModel.id == TransactionModel.user_id)
        .outerjoin(SkuModel, SkuModel.code == TransactionModel.sku_code)
        .where(*filters)
        .order_by(TransactionModel.created_at.desc())
        .limit(max(1, min(limit, MAX_PAGE_SIZE)))
        .offset(max(0, offset))
    )
    rows = (await sql_session.execute(query)).all()
    count_query = select(func.count()).select_from(TransactionModel).where(*filters)
    total = int((await sql_session.execute(count_query)).scalar() or 0)
    return {
        "transactions": [serialize_transaction(t, user=user, sku=sku) for t, user, sku in rows],
        "total": total,
    }


async def get_merchant_billing_info(sql_session: AsyncSession, merchant_id: str) -> dict:
    merchant = await get_merchant_or_404(sql_session, merchant_id)
    now = utc_now()

    month_count_query = select(func.count()).select_from(TransactionModel).where(
        TransactionModel.merchant_id == merchant_id,
        TransactionModel.created_at >= start_of_month(now),
    )
    invoices_query = (
        select(InvoiceModel)
        .where(InvoiceModel.merchant_id == merchant_id)
        .order_by(InvoiceModel.created_at.desc())
        .limit(12)
    )
    invoices = (await sql_session.execute(invoices_query)).scalars().all()

    return {
        "current_balance": float(merchant.current_balance),
        "pending_transactions": int((await sql_session.execute(month_count_query)).scalar() or 0),
        "next_billing_date": iso_utc(_next_billing_date(merchant) or add_months(now, 1)),
        "last_billing_date": iso_utc(merchant.last_billing_date),
        "invoices": [serialize_invoice(invoice) for invoice in invoices],
    }


async def list_partners(sql_session: AsyncSession) -> list[dict]:
    partners = (
        await sql_session.execute(select(PartnerModel).order_by(PartnerModel.created_at.desc()))
    ).scalars().all()
    merchant_counts = await _count_by(sql_session, MerchantModel.partner_id, [p.id for p in partners])
    return [serialize_partner(p, merchant_count=merchant_counts.get(p.id, 0)) for p in partners]


async def create_partner(sql_session: AsyncSession, data: dict) -> PartnerModel:
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    if not name or not email:
        raise HTTPException(status_code=400, detail="Name and email are required.")

    existing = await sql_session.execute(select(PartnerModel).where(PartnerModel.email == email))
    if existing.scalars().first():
        raise HTTPException(status_code=409, detail="Partner with this email already exists.")

    commission_rate = float(data.get("commission_rate") or 0)
    if commission_rate < 0 or commission_rate > 1:
        raise HTTPException(status_code=400, detail="Commission rate must be between 0 and 1.")

    partner = PartnerModel(
        name=name,
        email=email,
        contact_person=data.get("contact_person"),
        commission_rate=commission_rate,
        active=data.get("active") is not False,
    )
    sql_session.add(partner)
    await sql_session.commit()
    await sql_session.refresh(partner)
    logger.info(f"Partner {partner.id} created ({partner.name})")
    return partner


async def update_partner(sql_session: AsyncSession, partner_id: str, data: dict) -> PartnerModel:
    partner = await sql_session.get(PartnerModel, partner_id)
    if partner is None:
        raise HTTPException(status_code=404, detail="Partner not found.")
    rate = data.get("commission_rate")
    if rate is not None and (rate < 0 or rate > 1):
        raise HTTPException(status_code=400, detail="Commission rate must be between 0 and 1.")

    for field, value in data.items():
        if field in PARTNER_UPDATABLE_FIELDS:
            setattr(partner, field, value)
    sql_session.add(partner)
    await sql_session.commit()
    await sql_session.refresh(partner)
    return partner


def ensure_partner_access(user: UserModel, partner_id: str) -> None:
    if user.role == UserRole.ADMIN.value:
        return
    if user.role == UserRole.PARTNER.value and user.partner_id == partner_id:
        return
    raise HTTPException(status_code=403, detail="Insufficient permissions.")


async def get_partner_summary(sql_session: AsyncSession, partner_id: str) -> dict:
    partner = await sql_session.get(PartnerModel, partner_id)
    if partner is None:
        raise HTTPException(status_code=404, detail="Partner not found.")

    merchants = (
        await sql_session.execute(
            select(MerchantModel).where(MerchantModel.partner_id == partner_id).order_by(MerchantModel.name)
        )
    ).scalars().all()
    merchant_ids = [merchant.id for merchant in merchants]
    transaction_counts = await _count_by(sql_session, TransactionModel.merchant_id, merchant_ids)

    # A transaction counts once even when it is both partner- and merchant-attributed.
    attributed = or_(
        TransactionModel.partner_id == partner_id,
        TransactionModel.merchant_id.in_(merchant_ids) if merchant_ids else false(),
    )
    totals = await _completed_totals(sql_session, attributed)
    monthly = await _completed_totals(
        sql_session, attributed, TransactionModel.created_at >= start_of_month(utc_now())
    )
    commission_rate = float(partner.commission_rate)

    return {
        "partner": serialize_partner(partner),
        "merchants": [
            {
                "id": merchant.id,
                "name": merchant.name,
                "email": merchant.email,
                "multiplier": float(merchant.multiplier),
                "current_balance": float(merchant.current_balance),
                "transaction_count": transaction_counts.get(merchant.id, 0),
            }
            for merchant in merchants
        ],
        "stats": {
            "total_merchants": len(merchants),
            "total_transactions": totals["count"],
            "total_revenue": totals["amount"],
            "total_impact_kg": totals["impact_kg"],
            "monthly_transactions": monthly["count"],
            "monthly_revenue": monthly["amount"],
            "monthly_impact_kg": monthly["impact_kg"],
            "commission_rate": commission_rate,
            "total_commission": totals["amount"] * commission_rate,
        },
    }

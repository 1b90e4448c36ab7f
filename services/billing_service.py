"""
Monthly merchant billing.

Merchant-funded transactions (CLAIM and ALLOCATION) accrue on the merchant's
`current_balance`. Each month the balance is invoiced and reset; balances
under the MONTHLY_BILLING_MINIMUM setting carry forward to the next run.
"""

import calendar
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from models.enums import PaymentMode, PaymentStatus
from models.sql.invoice import InvoiceModel
from models.sql.merchant import MerchantModel
from models.sql.transaction import TransactionModel
from services.merchant_service import serialize_invoice, serialize_merchant
from services.settings_service import get_monthly_billing_minimum
from utils.datetime_utils import iso_utc, utc_now

logger = logging.getLogger(__name__)

MERCHANT_BILLED_MODES = (PaymentMode.CLAIM.value, PaymentMode.ALLOCATION.value)


def billing_period(year: Optional[int] = None, month: Optional[int] = None, now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """First and last instant of a calendar month in UTC; defaults to the previous month."""
    now = now or utc_now()
    if year is None or month is None:
        if now.month == 1:
            default_year, default_month = now.year - 1, 12
        else:
            default_year, default_month = now.year, now.month - 1
        year = year if year is not None else default_year
        month = month if month is not None else default_month

    if not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="Month must be between 1 and 12.")

    last_day = calendar.monthrange(year, month)[1]
    period_start = datetime(year, month, 1, tzinfo=timezone.utc)
    period_end = datetime(year, month, last_day, 23, 59, 59, 999999, tzinfo=timezone.utc)
    return period_start, period_end


def _period_filters(merchant_id: str, period_start: datetime, period_end: datetime) -> list:
    return [
        TransactionModel.merchant_id == merchant_id,
        TransactionModel.created_at >= period_start,
        TransactionModel.created_at <= period_end,
        TransactionModel.payment_status == PaymentStatus.COMPLETED.value,
        TransactionModel.payment_mode.in_(MERCHANT_BILLED_MODES),
    ]


async def generate_merchant_invoice(
    sql_session: AsyncSession,
    merchant_id: str,
    period_start: datetime,
    period_end: datetime,
    minimum: Optional[float] = None,
) -> Optional[InvoiceModel]:
    merchant = await sql_session.get(MerchantModel, merchant_id)
    if merchant is None:
        logger.error(f"Billing: merchant not found: {merchant_id}")
        return None
    if not merchant.monthly_billing:
        logger.info(f"Billing: monthly billing disabled for {merchant.name}")
        return None

    current_balance = float(merchant.current_balance)
    if current_balance <= 0:
        logger.info(f"Billing: no balance for {merchant.name}")
        return None

    if minimum is None:
        minimum = await get_monthly_billing_minimum(sql_session)
    if current_balance < minimum:
        logger.info(
            f"Billing: balance {current_balance:.2f} for {merchant.name} below minimum "
            f"{minimum:.2f}, carried forward"
        )
        return None

    totals_query = select(
        func.count(TransactionModel.id),
        func.coalesce(func.sum(TransactionModel.impact_kg), 0.0),
    ).where(*_period_filters(merchant_id, period_start, period_end))
    transaction_count, total_impact_kg = (await sql_session.execute(totals_query)).one()

    invoice = InvoiceModel(
        merchant_id=merchant_id,
        period_start=period_start,
        period_end=period_end,
        transaction_count=int(transaction_count or 0),
        total_impact_kg=float(total_impact_kg or 0),
        amount=current_balance,
    )
    sql_session.add(invoice)

    merchant.current_balance = 0.0
    merchant.last_billing_date = utc_now()
    merchant.updated_at = merchant.last_billing_date
    sql_session.add(merchant)

    await sql_session.commit()
    await sql_session.refresh(invoice)
    logger.info(f"Billing: invoice {invoice.id} generated for {merchant.name}: €{current_balance:.2f}")
    return invoice


async def run_monthly_billing(
    sql_session: AsyncSession,
    year: Optional[int] = None,
    month: Optional[int] = None,
) -> dict:
    period_start, period_end = billing_period(year, month)
    logger.info(f"Billing: starting run for {iso_utc(period_start)} - {iso_utc(period_end)}")

    merchants = (
        await sql_session.execute(select(MerchantModel).where(MerchantModel.monthly_billing == True))  # noqa: E712
    ).scalars().all()
    minimum = await get_monthly_billing_minimum(sql_session)

    results = []
    invoices_generated = 0
    total_billed = 0.0
    total_impact_kg = 0.0

    for merchant in merchants:
        # Read before the loop body can roll back and expire the instance.
        merchant_id, merchant_name = merchant.id, merchant.name
        try:
            invoice = await generate_merchant_invoice(sql_session, merchant_id, period_start, period_end, minimum)
        except Exception as exc:
            await sql_session.rollback()
            logger.exception(f"Billing: error processing merchant {merchant_name}")
            results.append({"merchant_id": merchant_id, "merchant_name": merchant_name, "invoice": None, "error": str(exc)})
            continue

        if invoice is not None:
            invoices_generated += 1
            total_billed += float(invoice.amount)
            total_impact_kg += float(invoice.total_impact_kg)
        results.append(
            {
                "merchant_id": merchant_id,
                "merchant_name": merchant_name,
                "invoice": serialize_invoice(invoice) if invoice else None,
            }
        )

    logger.info(f"Billing: run completed, {invoices_generated} invoices, €{total_billed:.2f} total")
    return {
        "processed_at": iso_utc(utc_now()),
        "period_start": iso_utc(period_start),
        "period_end": iso_utc(period_end),
        "merchants_processed": len(merchants),
        "invoices_generated": invoices_generated,
        "total_billed": total_billed,
        "total_impact_kg": total_impact_kg,
        "results": results,
    }


async def get_invoice_details(sql_session: AsyncSession, invoice_id: str) -> dict:
    invoice = await sql_session.get(InvoiceModel, invoice_id)
    if invoice is None:
        raise HTTPException(status_code=404, detail="Invoice not found.")

    merchant = await sql_session.get(MerchantModel, invoice.merchant_id)
    transactions_query = select(TransactionModel).where(
        *_period_filters(invoice.merchant_id, invoice.period_start, invoice.period_end)
    )
    transactions = (await sql_session.execute(transactions_query)).scalars().all()

    return {
        **serialize_invoice(invoice),
        "merchant": {"id": merchant.id, "name": merchant.name, "email": merchant.email} if merchant else None,
        "transactions": [
            {
                "id": t.id,
                "amount": float(t.amount),
                "impact_kg": float(t.impact_kg),
                "payment_mode": t.payment_mode,
                "created_at": iso_utc(t.created_at),
            }
            for t in transactions
        ],
    }


async def get_merchant_invoices(sql_session: AsyncSession, merchant_id: str, limit: int = 12) -> list[dict]:
    query = (
        select(InvoiceModel)
        .where(InvoiceModel.merchant_id == merchant_id)
        .order_by(InvoiceModel.created_at.desc())
        .limit(limit)
    )
    return [serialize_invoice(invoice) for invoice in (await sql_session.execute(query)).scalars().all()]


async def mark_invoice_paid(
    sql_session: AsyncSession,
    invoice_id: str,
    payment_reference: Optional[str] = None,
) -> InvoiceModel:
    invoice = await sql_session.get(InvoiceModel, invoice_id)
    if invoice is None:
        raise HTTPException(status_code=404, detail="Invoice not found.")
    if invoice.paid:
        raise HTTPException(status_code=409, detail="Invoice already paid.")

    invoice.paid = True
    invoice.paid_at = utc_now()
    invoice.payment_reference = payment_reference
    sql_session.add(invoice)
    await sql_session.commit()
    await sql_session.refresh(invoice)
    logger.info(f"Billing: invoice {invoice.id} marked paid")
    return invoice


async def get_billing_stats(sql_session: AsyncSession) -> dict:
    query = select(
        func.count(InvoiceModel.id),
        func.coalesce(func.sum(InvoiceModel.amount), 0.0),
    )
    total_invoices, total_billed = (await sql_session.execute(query)).one()
    paid_invoices, total_paid = (
        await sql_session.execute(query.where(InvoiceModel.paid == True))  # noqa: E712
    ).one()

    total_billed = float(total_billed or 0)
    total_paid = float(total_paid or 0)
    return {
        "total_invoices": int(total_invoices or 0),
        "paid_invoices": int(paid_invoices or 0),
        "unpaid_invoices": int(total_invoices or 0) - int(paid_invoices or 0),
        "total_billed": total_billed,
        "total_paid": total_paid,
        "total_outstanding": total_billed - total_paid,
    }


async def get_merchants_with_balance(sql_session: AsyncSession) -> list[dict]:
    unpaid = (
        select(
            InvoiceModel.merchant_id,
            func.count(InvoiceModel.id).label("unpaid_invoices"),
            func.sum(InvoiceModel.amount).label("total_unpaid"),
        )
        .where(InvoiceModel.paid == False)  # noqa: E712
        .group_by(InvoiceModel.merchant_id)
        .subquery()
    )
    query = (
        select(MerchantModel, unpaid.c.unpaid_invoices, unpaid.c.total_unpaid)
        .outerjoin(unpaid, unpaid.c.merchant_id == MerchantModel.id)
        .where(or_(MerchantModel.current_balance > 0, unpaid.c.unpaid_invoices > 0))
        .order_by(MerchantModel.name)
    )
    rows = (await sql_session.execute(query)).all()
    return [
        {
            "merchant": serialize_merchant(merchant),
            "current_balance": float(merchant.current_balance),
            "unpaid_invoices": int(unpaid_invoices or 0),
            "total_unpaid": float(total_unpaid or 0),
        }
        for merchant, unpaid_invoices, total_unpaid in rows
    ]

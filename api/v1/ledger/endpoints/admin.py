from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from services.auth_service import require_admin
from services.billing_service import (
    get_billing_stats,
    get_invoice_details,
    get_merchants_with_balance,
    mark_invoice_paid,
    run_monthly_billing,
)
from services.corsair_service import (
    batch_result,
    convert_to_csv,
    export_all_certified_users,
    export_pending_certified_users,
    get_corsair_export_stats,
)
from services.cron_service import run_all_tasks, run_daily_tasks, run_monthly_tasks
from services.database import get_async_session
from services.merchant_service import serialize_invoice
from services.report_service import get_impact_report
from services.wallet_service import (
    create_manual_transaction,
    list_all_transactions,
    update_transaction_status,
)
from utils.datetime_utils import iso_date, utc_now


ADMIN_ROUTER = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


class UpdateTransactionStatusRequest(BaseModel):
    payment_status: Optional[str] = None


class ManualTransactionRequest(BaseModel):
    email: Optional[str] = None
    amount: Optional[float] = None
    payment_mode: Optional[str] = None
    reason: Optional[str] = None


class RunBillingRequest(BaseModel):
    year: Optional[int] = None
    month: Optional[int] = None


class PayInvoiceRequest(BaseModel):
    payment_reference: Optional[str] = None


# Transactions


@ADMIN_ROUTER.get("/transactions")
async def get_all_transactions(
    payment_mode: Optional[str] = None,
    payment_status: Optional[str] = None,
    merchant_id: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    sql_session: AsyncSession = Depends(get_async_session),
):
    return await list_all_transactions(
        sql_session,
        payment_mode=payment_mode,
        payment_status=payment_status,
        merchant_id=merchant_id,
        start_date=start_date,
        end_date=end_date,
        search=search,
        limit=limit,
        offset=offset,
    )


@ADMIN_ROUTER.post("/transactions/manual", status_code=201)
async def post_manual_transaction(
    payload: ManualTransactionRequest,
    sql_session: AsyncSession = Depends(get_async_session),
):
    return {"transaction": await create_manual_transaction(sql_session, payload.model_dump())}


@ADMIN_ROUTER.patch("/transactions/{transaction_id}")
async def patch_transaction(
    transaction_id: str,
    payload: UpdateTransactionStatusRequest,
    sql_session: AsyncSession = Depends(get_async_session),
):
    transaction = await update_transaction_status(sql_session, transaction_id, payload.payment_status)
    return {"transaction": transaction}


# Billing


@ADMIN_ROUTER.get("/billing/stats")
async def billing_stats(sql_session: AsyncSession = Depends(get_async_session)):
    return await get_billing_stats(sql_session)


@ADMIN_ROUTER.get("/billing/outstanding")
async def billing_outstanding(sql_session: AsyncSession = Depends(get_async_session)):
    return {"merchants": await get_merchants_with_balance(sql_session)}


@ADMIN_ROUTER.post("/billing/run")
async def billing_run(
    payload: Optional[RunBillingRequest] = None,
    sql_session: AsyncSession = Depends(get_async_session),
):
    payload = payload or RunBillingRequest()
    return await run_monthly_billing(sql_session, payload.year, payload.month)


@ADMIN_ROUTER.get("/billing/invoices/{invoice_id}")
async def billing_invoice(
    invoice_id: str,
    sql_session: AsyncSession = Depends(get_async_session),
):
    return {"invoice": await get_invoice_details(sql_session, invoice_id)}


@ADMIN_ROUTER.post("/billing/invoices/{invoice_id}/pay")
async def billing_pay_invoice(
    invoice_id: str,
    payload: Optional[PayInvoiceRequest] = None,
    sql_session: AsyncSession = Depends(get_async_session),
):
    payment_reference = payload.payment_reference if payload else None
    invoice = await mark_invoice_paid(sql_session, invoice_id, payment_reference)
    return {"invoice": serialize_invoice(invoice)}


# Registry export


@ADMIN_ROUTER.get("/corsair/stats")
async def corsair_stats(sql_session: AsyncSession = Depends(get_async_session)):
    return await get_corsair_export_stats(sql_session)


@ADMIN_ROUTER.post("/corsair/export-pending")
async def corsair_export_pending(sql_session: AsyncSession = Depends(get_async_session)):
    return batch_result(await export_pending_certified_users(sql_session))


@ADMIN_ROUTER.post("/corsair/export-all")
async def corsair_export_all(sql_session: AsyncSession = Depends(get_async_session)):
    return batch_result(await export_all_certified_users(sql_session))


@ADMIN_ROUTER.get("/corsair/download")
async def corsair_download(
    type: Literal["all", "pending"] = "all",
    sql_session: AsyncSession = Depends(get_async_session),
):
    if type == "pending":
        records = await export_pending_certified_users(sql_session)
    else:
        records = await export_all_certified_users(sql_session)

    filename = f"corsair-export-{type}-{iso_date(utc_now())}.csv"
    return Response(
        content=convert_to_csv(records),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# Scheduled tasks


@ADMIN_ROUTER.post("/cron/daily")
async def cron_daily(sql_session: AsyncSession = Depends(get_async_session)):
    return await run_daily_tasks(sql_session)


@ADMIN_ROUTER.post("/cron/monthly")
async def cron_monthly(sql_session: AsyncSession = Depends(get_async_session)):
    return await run_monthly_tasks(sql_session)


@ADMIN_ROUTER.post("/cron/all")
async def cron_all(sql_session: AsyncSession = Depends(get_async_session)):
    return await run_all_tasks(sql_session)


# Reports


@ADMIN_ROUTER.get("/reports/impact")
async def impact_report(sql_session: AsyncSession = Depends(get_async_session)):
    return await get_impact_report(sql_session)

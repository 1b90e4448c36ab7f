from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from models.enums import UserRole
from models.sql.user import UserModel
from services.auth_service import require_admin, require_roles
from services.billing_service import get_invoice_details
from services.database import get_async_session
from services.merchant_service import (
    create_merchant,
    ensure_merchant_access,
    get_merchant_billing_info,
    get_merchant_summary,
    get_merchant_transactions,
    list_merchants,
    merchant_id_for_user,
    serialize_merchant,
    update_merchant,
)
from services.sku_service import list_skus


MERCHANTS_ROUTER = APIRouter(prefix="/merchants", tags=["Merchants"])

require_merchant_or_admin = require_roles(UserRole.MERCHANT, UserRole.ADMIN)


class CreateMerchantRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    multiplier: Optional[float] = None
    price_per_kg: Optional[float] = None
    monthly_billing: Optional[bool] = None
    partner_id: Optional[str] = None


class UpdateMerchantRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    multiplier: Optional[float] = None
    price_per_kg: Optional[float] = None
    monthly_billing: Optional[bool] = None
    partner_id: Optional[str] = None


# /me routes are declared before /{merchant_id} so "me" is not taken for an id.
@MERCHANTS_ROUTER.get("/me")
async def get_my_merchant(
    user: UserModel = Depends(require_merchant_or_admin),
    sql_session: AsyncSession = Depends(get_async_session),
):
    return {"merchant": await get_merchant_summary(sql_session, merchant_id_for_user(user))}


@MERCHANTS_ROUTER.get("/me/transactions")
async def get_my_transactions(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    user: UserModel = Depends(require_merchant_or_admin),
    sql_session: AsyncSession = Depends(get_async_session),
):
    return await get_merchant_transactions(
        sql_session, merchant_id_for_user(user), limit, offset, date_from, date_to
    )


@MERCHANTS_ROUTER.get("/me/billing")
async def get_my_billing(
    user: UserModel = Depends(require_merchant_or_admin),
    sql_session: AsyncSession = Depends(get_async_session),
):
    return {"billing": await get_merchant_billing_info(sql_session, merchant_id_for_user(user))}


@MERCHANTS_ROUTER.get("/me/invoices/{invoice_id}")
async def get_my_invoice(
    invoice_id: str,
    user: UserModel = Depends(require_merchant_or_admin),
    sql_session: AsyncSession = Depends(get_async_session),
):
    invoice = await get_invoice_details(sql_session, invoice_id)
    if invoice["merchant_id"] != merchant_id_for_user(user):
        raise HTTPException(status_code=404, detail="Invoice not found.")
    return {"invoice": invoice}


@MERCHANTS_ROUTER.get("/me/skus")
async def get_my_skus(
    user: UserModel = Depends(require_merchant_or_admin),
    sql_session: AsyncSession = Depends(get_async_session),
):
    return {"skus": await list_skus(sql_session, merchant_id_for_user(user))}


@MERCHANTS_ROUTER.get("", dependencies=[Depends(require_admin)])
async def get_merchants(sql_session: AsyncSession = Depends(get_async_session)):
    return {"merchants": await list_merchants(sql_session)}


@MERCHANTS_ROUTER.post("", status_code=201, dependencies=[Depends(require_admin)])
async def post_merchant(
    payload: CreateMerchantRequest,
    sql_session: AsyncSession = Depends(get_async_session),
):
    merchant = await create_merchant(sql_session, payload.model_dump())
    return {"merchant": serialize_merchant(merchant)}


@MERCHANTS_ROUTER.put("/{merchant_id}", dependencies=[Depends(require_admin)])
async def put_merchant(
    merchant_id: str,
    payload: UpdateMerchantRequest,
    sql_session: AsyncSession = Depends(get_async_session),
):
    merchant = await update_merchant(sql_session, merchant_id, payload.model_dump(exclude_unset=True))
    return {"merchant": serialize_merchant(merchant)}


@MERCHANTS_ROUTER.get("/{merchant_id}")
async def get_merchant(
    merchant_id: str,
    user: UserModel = Depends(require_merchant_or_admin),
    sql_session: AsyncSession = Depends(get_async_session),
):
    ensure_merchant_access(user, merchant_id)
    return {"merchant": await get_merchant_summary(sql_session, merchant_id)}


@MERCHANTS_ROUTER.get("/{merchant_id}/transactions")
async def get_transactions_for_merchant(
    merchant_id: str,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    user: UserModel = Depends(require_merchant_or_admin),
    sql_session: AsyncSession = Depends(get_async_session),
):
    ensure_merchant_access(user, merchant_id)
    return await get_merchant_transactions(sql_session, merchant_id, limit, offset, date_from, date_to)


@MERCHANTS_ROUTER.get("/{merchant_id}/billing")
async def get_billing_for_merchant(
    merchant_id: str,
    user: UserModel = Depends(require_merchant_or_admin),
    sql_session: AsyncSession = Depends(get_async_session),
):
    ensure_merchant_access(user, merchant_id)
    return {"billing": await get_merchant_billing_info(sql_session, merchant_id)}

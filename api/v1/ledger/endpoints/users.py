from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from services.auth_service import require_admin
from services.database import get_async_session
from services.user_service import (
    count_user_transactions,
    export_users_csv,
    get_user_or_404,
    list_users,
    serialize_user,
    update_user,
)
from services.wallet_service import adjust_wallet, list_user_transactions
from utils.datetime_utils import iso_date, utc_now


USERS_ROUTER = APIRouter(prefix="/users", tags=["Users"], dependencies=[Depends(require_admin)])


class UpdateUserRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    status: Optional[str] = None
    role: Optional[str] = None
    merchant_id: Optional[str] = None
    partner_id: Optional[str] = None
    corsair_exported: Optional[bool] = None


class AdjustWalletRequest(BaseModel):
    amount: Optional[float] = None
    reason: Optional[str] = None


@USERS_ROUTER.get("")
async def get_users(
    status: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    sort_by: str = "created_at",
    sort_order: str = "desc",
    sql_session: AsyncSession = Depends(get_async_session),
):
    return await list_users(sql_session, status, search, limit, offset, sort_by, sort_order)


# Declared before /{user_id} so "export" is not taken for an id.
@USERS_ROUTER.get("/export/csv")
async def export_csv(
    status: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    sql_session: AsyncSession = Depends(get_async_session),
):
    content = await export_users_csv(sql_session, status, start_date, end_date)
    filename = f"users-export-{iso_date(utc_now())}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@USERS_ROUTER.get("/{user_id}")
async def get_user(
    user_id: str,
    sql_session: AsyncSession = Depends(get_async_session),
):
    user = await get_user_or_404(sql_session, user_id)
    transactions = await list_user_transactions(sql_session, user_id, limit=10)
    return {
        "user": serialize_user(user, await count_user_transactions(sql_session, user_id)),
        "recent_transactions": transactions["transactions"],
    }


@USERS_ROUTER.put("/{user_id}")
async def put_user(
    user_id: str,
    payload: UpdateUserRequest,
    sql_session: AsyncSession = Depends(get_async_session),
):
    user = await update_user(sql_session, user_id, payload.model_dump(exclude_unset=True))
    return {"user": serialize_user(user)}


@USERS_ROUTER.post("/{user_id}/adjust-wallet")
async def post_adjust_wallet(
    user_id: str,
    payload: AdjustWalletRequest,
    sql_session: AsyncSession = Depends(get_async_session),
):
    user = await adjust_wallet(sql_session, user_id, payload.amount, payload.reason)
    return {"user": serialize_user(user), "message": "Wallet adjusted."}

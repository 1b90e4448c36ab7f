from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from models.sql.user import UserModel
from services.auth_service import get_current_user, get_optional_user
from services.database import get_async_session
from services.wallet_service import (
    create_transaction,
    get_transaction_for_user,
    list_user_transactions,
)


TRANSACTIONS_ROUTER = APIRouter(prefix="/transactions", tags=["Transactions"])


class CreateTransactionRequest(BaseModel):
    payment_mode: Optional[str] = None
    amount: Optional[float] = None
    sku_code: Optional[str] = None
    gift_code: Optional[str] = None
    merchant_id: Optional[str] = None
    partner_id: Optional[str] = None
    weight_grams: Optional[float] = None
    multiplier: Optional[float] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


@TRANSACTIONS_ROUTER.post("", status_code=201)
async def post_transaction(
    payload: CreateTransactionRequest,
    user: Optional[UserModel] = Depends(get_optional_user),
    sql_session: AsyncSession = Depends(get_async_session),
):
    return {"transaction": await create_transaction(sql_session, payload.model_dump(), user)}


@TRANSACTIONS_ROUTER.get("")
async def get_my_transactions(
    limit: int = Query(20, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: UserModel = Depends(get_current_user),
    sql_session: AsyncSession = Depends(get_async_session),
):
    result = await list_user_transactions(sql_session, user.id, limit, offset)
    return {**result, "limit": limit, "offset": offset}


@TRANSACTIONS_ROUTER.get("/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    user: UserModel = Depends(get_current_user),
    sql_session: AsyncSession = Depends(get_async_session),
):
    return {"transaction": await get_transaction_for_user(sql_session, transaction_id, user)}

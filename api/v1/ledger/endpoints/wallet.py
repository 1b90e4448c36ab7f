from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from models.sql.user import UserModel
from services.auth_service import get_current_user
from services.database import get_async_session
from services.wallet_service import (
    get_wallet_history,
    get_wallet_summary,
    get_wallet_summary_by_email,
)


WALLET_ROUTER = APIRouter(prefix="/wallet", tags=["Wallet"])


@WALLET_ROUTER.get("")
async def get_wallet(
    user: UserModel = Depends(get_current_user),
    sql_session: AsyncSession = Depends(get_async_session),
):
    return {"wallet": await get_wallet_summary(sql_session, user)}


@WALLET_ROUTER.get("/email/{email}")
async def get_wallet_by_email(
    email: str,
    sql_session: AsyncSession = Depends(get_async_session),
):
    return {"wallet": await get_wallet_summary_by_email(sql_session, email)}


@WALLET_ROUTER.get("/history")
async def get_history(
    limit: int = Query(20, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: UserModel = Depends(get_current_user),
    sql_session: AsyncSession = Depends(get_async_session),
):
    return {"history": await get_wallet_history(sql_session, user.id, limit, offset)}

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from models.sql.user import UserModel
from services.auth_service import (
    admin_login,
    auth_response,
    create_magic_link,
    get_current_user,
    verify_magic_link,
)
from services.database import get_async_session
from services.user_service import serialize_user, upsert_user_profile


AUTH_ROUTER = APIRouter(prefix="/auth", tags=["Auth"])


class RegisterRequest(BaseModel):
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None


class MagicLinkRequest(BaseModel):
    email: str


class AdminLoginRequest(BaseModel):
    secret_code: str


@AUTH_ROUTER.post("/register", status_code=201)
async def register(
    payload: RegisterRequest,
    sql_session: AsyncSession = Depends(get_async_session),
):
    user = await upsert_user_profile(sql_session, payload.model_dump())
    return auth_response(user)


@AUTH_ROUTER.post("/magic-link")
async def send_magic_link(
    payload: MagicLinkRequest,
    sql_session: AsyncSession = Depends(get_async_session),
):
    return await create_magic_link(sql_session, payload.email)


@AUTH_ROUTER.get("/verify/{token}")
async def verify(
    token: str,
    sql_session: AsyncSession = Depends(get_async_session),
):
    return await verify_magic_link(sql_session, token)


@AUTH_ROUTER.get("/me")
async def me(user: UserModel = Depends(get_current_user)):
    return {"user": serialize_user(user)}


@AUTH_ROUTER.post("/admin-login")
async def login_admin(
    payload: AdminLoginRequest,
    sql_session: AsyncSession = Depends(get_async_session),
):
    return await admin_login(sql_session, payload.secret_code)

import logging
import secrets
from datetime import timedelta
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from models.enums import UserRole
from models.sql.magic_link import MagicLinkModel
from models.sql.user import UserModel
from services.database import get_async_session
from services.settings_service import ADMIN_EMAIL, ADMIN_SECRET_CODE, get_setting_value
from services.user_service import get_user_by_email, normalize_email, serialize_user
from utils.datetime_utils import as_utc, iso_utc, utc_now
from utils.get_env import (
    get_environment_env,
    get_expose_magic_links_env,
    get_frontend_url_env,
    get_jwt_expires_days_env,
    get_jwt_secret_env,
)

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
DEV_JWT_SECRET = "development-secret-change-in-production"
MAGIC_LINK_TTL = timedelta(minutes=15)
DEFAULT_ADMIN_EMAIL = "admin@csr26.it"
DEFAULT_FRONTEND_URL = "http://localhost:5173"


def _jwt_secret() -> str:
    secret = (get_jwt_secret_env() or "").strip()
    if secret:
        return secret
    if (get_environment_env() or "").strip().lower() == "production":
        raise HTTPException(status_code=500, detail="JWT_SECRET is not configured.")
    return DEV_JWT_SECRET


def _jwt_expires_days() -> int:
    try:
        days = int(get_jwt_expires_days_env() or 7)
    except ValueError:
        return 7
    return days if days > 0 else 7


def create_access_token(user: UserModel) -> str:
    now = utc_now()
    payload = {
        "user_id": user.id,
        "email": user.email,
        "role": user.role,
        "iat": now,
        "exp": now + timedelta(days=_jwt_expires_days()),
    }
    return jwt.encode(payload, _jwt_secret(), algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(token, _jwt_secret(), algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired.")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token.")


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def auth_response(user: UserModel) -> dict:
    return {"user": serialize_user(user), "token": create_access_token(user)}


async def _user_from_token(sql_session: AsyncSession, token: str) -> UserModel:
    payload = decode_access_token(token)
    user_id = payload.get("user_id")
    user = await sql_session.get(UserModel, user_id) if user_id else None
    if user is None:
        raise HTTPException(status_code=401, detail="User not found.")
    return user


async def get_current_user(
    request: Request,
    sql_session: AsyncSession = Depends(get_async_session),
) -> UserModel:
    # Query token supports plain download links (CSV exports).
    token = _bearer_token(request) or request.query_params.get("token")
    if not token:
        raise HTTPException(status_code=401, detail="No token provided.")
    return await _user_from_token(sql_session, token)


async def get_optional_user(
    request: Request,
    sql_session: AsyncSession = Depends(get_async_session),
) -> Optional[UserModel]:
    token = _bearer_token(request)
    if not token:
        return None
    try:
        return await _user_from_token(sql_session, token)
    except HTTPException:
        logger.debug("Ignoring invalid bearer token on optional-auth route")
        return None


def require_roles(*roles: UserRole):
    allowed = {UserRole(role).value for role in roles}

    async def dependency(user: UserModel = Depends(get_current_user)) -> UserModel:
        if user.role not in allowed:
            raise HTTPException(status_code=403, detail="Insufficient permissions.")
        return user

    return dependency


require_admin = require_roles(UserRole.ADMIN)


async def create_magic_link(sql_session: AsyncSession, email: str) -> dict:
    normalized = normalize_email(email)
    if not normalized:
        raise HTTPException(status_code=400, detail="Email is required.")

    user = await get_user_by_email(sql_session, normalized)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found.")

    token = secrets.token_hex(32)
    expires_at = utc_now() + MAGIC_LINK_TTL
    sql_session.add(MagicLinkModel(user_id=user.id, token=token, expires_at=expires_at))
    await sql_session.commit()

    frontend_url = (get_frontend_url_env() or DEFAULT_FRONTEND_URL).rstrip("/")
    magic_link_url = f"{frontend_url}/auth/verify/{token}"
    logger.info(f"Magic link generated for {normalized}: {magic_link_url} (expires {iso_utc(expires_at)})")

    response = {"message": "Magic link generated. Check your email to sign in."}
    if (get_expose_magic_links_env() or "").strip().lower() in {"1", "true", "yes", "on"}:
        response["magic_link_url"] = magic_link_url
    return response


async def verify_magic_link(sql_session: AsyncSession, token: str) -> dict:
    query = select(MagicLinkModel).where(MagicLinkModel.token == (token or "").strip())
    magic_link = (await sql_session.execute(query)).scalars().first()
    if magic_link is None:
        raise HTTPException(status_code=404, detail="Invalid or expired token.")
    if magic_link.used:
        raise HTTPException(status_code=400, detail="Magic link already used.")
    if as_utc(magic_link.expires_at) < utc_now():
        raise HTTPException(status_code=400, detail="Magic link expired.")

    magic_link.used = True
    sql_session.add(magic_link)
    await sql_session.commit()

    user = await sql_session.get(UserModel, magic_link.user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found.")
    return auth_response(user)


async def admin_login(sql_session: AsyncSession, secret_code: str) -> dict:
    if not secret_code:
        raise HTTPException(status_code=400, detail="Secret code is required.")

    expected = await get_setting_value(sql_session, ADMIN_SECRET_CODE)
    if not expected:
        raise HTTPException(status_code=400, detail="Admin access not configured.")
    if not secrets.compare_digest(secret_code.encode(), expected.encode()):
        logger.warning("Rejected admin login with invalid secret code")
        raise HTTPException(status_code=400, detail="Invalid secret code.")

    admin_email = normalize_email(await get_setting_value(sql_session, ADMIN_EMAIL) or DEFAULT_ADMIN_EMAIL)
    admin_user = await get_user_by_email(sql_session, admin_email)
    if admin_user is None:
        admin_user = UserModel(
            email=admin_email,
            first_name="Admin",
            last_name="User",
            role=UserRole.ADMIN.value,
        )
        sql_session.add(admin_user)
    elif admin_user.role != UserRole.ADMIN.value:
        admin_user.role = UserRole.ADMIN.value
        admin_user.updated_at = utc_now()
        sql_session.add(admin_user)
    await sql_session.commit()
    await sql_session.refresh(admin_user)

    logger.info(f"Admin login for {admin_email}")
    return auth_response(admin_user)

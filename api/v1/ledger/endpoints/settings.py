from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from services.auth_service import require_admin
from services.database import get_async_session
from services.settings_service import (
    SECRET_SETTINGS,
    get_all_settings,
    get_setting,
    serialize_setting,
    update_setting,
)


SETTINGS_ROUTER = APIRouter(prefix="/settings", tags=["Settings"])


class UpdateSettingRequest(BaseModel):
    value: Optional[Any] = None
    description: Optional[str] = None


@SETTINGS_ROUTER.get("")
async def get_settings(sql_session: AsyncSession = Depends(get_async_session)):
    return {"settings": await get_all_settings(sql_session)}


@SETTINGS_ROUTER.get("/{key}")
async def get_one_setting(
    key: str,
    sql_session: AsyncSession = Depends(get_async_session),
):
    setting = await get_setting(sql_session, key)
    if setting is None or setting.key in SECRET_SETTINGS:
        raise HTTPException(status_code=404, detail="Setting not found.")
    return {"setting": serialize_setting(setting)}


@SETTINGS_ROUTER.put("/{key}", dependencies=[Depends(require_admin)])
async def put_setting(
    key: str,
    payload: UpdateSettingRequest,
    sql_session: AsyncSession = Depends(get_async_session),
):
    setting = await update_setting(sql_session, key, payload.value, payload.description)
    return {"setting": serialize_setting(setting)}

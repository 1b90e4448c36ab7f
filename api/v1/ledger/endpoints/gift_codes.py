from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from services.auth_service import require_admin
from services.database import get_async_session
from services.gift_code_service import (
    activate_gift_code,
    batch_upload_gift_codes,
    deactivate_gift_code,
    list_gift_codes,
    serialize_gift_code,
    validate_gift_code,
)


GIFT_CODES_ROUTER = APIRouter(prefix="/gift-codes", tags=["Gift Codes"])


class ValidateGiftCodeRequest(BaseModel):
    code: Optional[str] = None
    sku_code: Optional[str] = None


class BatchUploadRequest(BaseModel):
    sku_code: str
    codes: list[str]


@GIFT_CODES_ROUTER.post("/validate")
async def validate(
    payload: ValidateGiftCodeRequest,
    sql_session: AsyncSession = Depends(get_async_session),
):
    return await validate_gift_code(sql_session, payload.code, payload.sku_code)


@GIFT_CODES_ROUTER.get("", dependencies=[Depends(require_admin)])
async def get_gift_codes(
    status: Optional[str] = None,
    sku_code: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    sql_session: AsyncSession = Depends(get_async_session),
):
    return await list_gift_codes(sql_session, status, sku_code, limit, offset)


@GIFT_CODES_ROUTER.post("/batch", status_code=201, dependencies=[Depends(require_admin)])
async def batch_upload(
    payload: BatchUploadRequest,
    sql_session: AsyncSession = Depends(get_async_session),
):
    return await batch_upload_gift_codes(sql_session, payload.sku_code, payload.codes)


@GIFT_CODES_ROUTER.patch("/{code}/activate", dependencies=[Depends(require_admin)])
async def activate(
    code: str,
    sql_session: AsyncSession = Depends(get_async_session),
):
    gift_code = await activate_gift_code(sql_session, code)
    return {"gift_code": serialize_gift_code(gift_code)}


@GIFT_CODES_ROUTER.delete("/{code}", dependencies=[Depends(require_admin)])
async def deactivate(
    code: str,
    sql_session: AsyncSession = Depends(get_async_session),
):
    gift_code = await deactivate_gift_code(sql_session, code)
    return {"gift_code": serialize_gift_code(gift_code)}

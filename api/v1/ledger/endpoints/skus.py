from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from services.auth_service import require_admin
from services.database import get_async_session
from services.sku_service import (
    create_sku,
    deactivate_sku,
    get_public_sku,
    list_skus,
    serialize_sku,
    update_sku,
)


SKUS_ROUTER = APIRouter(prefix="/skus", tags=["SKUs"])


class CreateSkuRequest(BaseModel):
    code: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    payment_mode: Optional[str] = None
    price: Optional[float] = None
    weight_grams: Optional[int] = None
    multiplier: Optional[float] = None
    payment_required: Optional[bool] = None
    validation_required: Optional[bool] = None
    merchant_id: Optional[str] = None


class UpdateSkuRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    payment_mode: Optional[str] = None
    price: Optional[float] = None
    weight_grams: Optional[int] = None
    multiplier: Optional[float] = None
    payment_required: Optional[bool] = None
    validation_required: Optional[bool] = None
    active: Optional[bool] = None
    merchant_id: Optional[str] = None


@SKUS_ROUTER.get("/{code}")
async def get_sku(
    code: str,
    sql_session: AsyncSession = Depends(get_async_session),
):
    return {"sku": await get_public_sku(sql_session, code)}


@SKUS_ROUTER.get("", dependencies=[Depends(require_admin)])
async def get_skus(sql_session: AsyncSession = Depends(get_async_session)):
    return {"skus": await list_skus(sql_session)}


@SKUS_ROUTER.post("", status_code=201, dependencies=[Depends(require_admin)])
async def post_sku(
    payload: CreateSkuRequest,
    sql_session: AsyncSession = Depends(get_async_session),
):
    sku = await create_sku(sql_session, payload.model_dump())
    return {"sku": serialize_sku(sku)}


@SKUS_ROUTER.put("/{code}", dependencies=[Depends(require_admin)])
async def put_sku(
    code: str,
    payload: UpdateSkuRequest,
    sql_session: AsyncSession = Depends(get_async_session),
):
    sku = await update_sku(sql_session, code, payload.model_dump(exclude_unset=True))
    return {"sku": serialize_sku(sku)}


@SKUS_ROUTER.delete("/{code}", dependencies=[Depends(require_admin)])
async def delete_sku(
    code: str,
    sql_session: AsyncSession = Depends(get_async_session),
):
    await deactivate_sku(sql_session, code)
    return {"message": "SKU deactivated."}

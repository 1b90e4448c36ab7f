from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from models.landing import LandingParams
from services.database import get_async_session
from services.landing_service import resolve_landing
from services.settings_service import get_certification_threshold, get_price_per_kg
from services.sku_service import find_active_sku, serialize_sku


LANDING_ROUTER = APIRouter(prefix="/landing", tags=["Landing"])


@LANDING_ROUTER.get("")
async def get_landing(
    request: Request,
    sql_session: AsyncSession = Depends(get_async_session),
):
    params = LandingParams.from_query(request.query_params)
    sku = await find_active_sku(sql_session, params.sku)
    price_per_kg = await get_price_per_kg(sql_session)
    threshold = await get_certification_threshold(sql_session)

    landing = resolve_landing(sku, params, price_per_kg, threshold)
    return {**landing, "sku": serialize_sku(sku) if sku else None}

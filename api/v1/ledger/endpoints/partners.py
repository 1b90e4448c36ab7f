from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from models.enums import UserRole
from models.sql.user import UserModel
from services.auth_service import require_admin, require_roles
from services.database import get_async_session
from services.merchant_service import (
    create_partner,
    ensure_partner_access,
    get_partner_summary,
    list_partners,
    serialize_partner,
    update_partner,
)


PARTNERS_ROUTER = APIRouter(prefix="/partners", tags=["Partners"])


class CreatePartnerRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    contact_person: Optional[str] = None
    commission_rate: Optional[float] = None
    active: Optional[bool] = None


class UpdatePartnerRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    contact_person: Optional[str] = None
    commission_rate: Optional[float] = None
    active: Optional[bool] = None


@PARTNERS_ROUTER.get("", dependencies=[Depends(require_admin)])
async def get_partners(sql_session: AsyncSession = Depends(get_async_session)):
    return {"partners": await list_partners(sql_session)}


@PARTNERS_ROUTER.post("", status_code=201, dependencies=[Depends(require_admin)])
async def post_partner(
    payload: CreatePartnerRequest,
    sql_session: AsyncSession = Depends(get_async_session),
):
    partner = await create_partner(sql_session, payload.model_dump())
    return {"partner": serialize_partner(partner)}


@PARTNERS_ROUTER.put("/{partner_id}", dependencies=[Depends(require_admin)])
async def put_partner(
    partner_id: str,
    payload: UpdatePartnerRequest,
    sql_session: AsyncSession = Depends(get_async_session),
):
    partner = await update_partner(sql_session, partner_id, payload.model_dump(exclude_unset=True))
    return {"partner": serialize_partner(partner)}


@PARTNERS_ROUTER.get("/{partner_id}/summary")
async def get_summary(
    partner_id: str,
    user: UserModel = Depends(require_roles(UserRole.PARTNER, UserRole.ADMIN)),
    sql_session: AsyncSession = Depends(get_async_session),
):
    ensure_partner_access(user, partner_id)
    return await get_partner_summary(sql_session, partner_id)

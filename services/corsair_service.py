"""
Corsair Connect registry export.

Certified users are exported individually the moment they cross the
certification threshold, and in monthly batches for anyone missed. An
exported user keeps its Corsair ID for every later full export.
"""

import csv
import io
import logging
import secrets
import string
import time
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from models.enums import PaymentStatus, UserStatus
from models.sql.transaction import TransactionModel
from models.sql.user import UserModel
from services.settings_service import get_certification_threshold
from utils.datetime_utils import iso_date, iso_utc, utc_now
from utils.get_env import get_corsair_id_prefix_env

logger = logging.getLogger(__name__)

DEFAULT_CORSAIR_ID_PREFIX = "CSR26"
BASE36_ALPHABET = string.digits + string.ascii_lowercase

CSV_HEADERS = [
    "Corsair ID",
    "Email",
    "First Name",
    "Last Name",
    "Date of Birth",
    "Street",
    "City",
    "Postal Code",
    "Country",
    "State",
    "Total Impact (kg)",
    "Matured Impact (kg)",
    "Pending Impact (kg)",
    "Wallet Balance (EUR)",
    "Certification Date",
    "Transaction Count",
    "First Transaction Date",
    "Last Transaction Date",
    "Merchant IDs",
    "Partner IDs",
]


class AttributionIds(BaseModel):
    merchant_ids: list[str] = []
    partner_ids: list[str] = []


class CorsairExportRecord(BaseModel):
    corsair_id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    total_impact_kg: float
    matured_impact_kg: float
    pending_impact_kg: float
    wallet_balance: float
    certification_date: str
    transaction_count: int
    first_transaction_date: Optional[str] = None
    last_transaction_date: Optional[str] = None
    attribution_ids: AttributionIds


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_corsair_id(prefix: Optional[str] = None) -> str:
    prefix = (prefix or get_corsair_id_prefix_env() or DEFAULT_CORSAIR_ID_PREFIX).strip()
    timestamp = _to_base36(int(time.time() * 1000))
    random_part = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(6))
    return f"{prefix}-{timestamp}-{random_part}".upper()


async def _completed_transactions(sql_session: AsyncSession, user_id: str) -> list[TransactionModel]:
    query = (
        select(TransactionModel)
        .where(
            TransactionModel.user_id == user_id,
            TransactionModel.payment_status == PaymentStatus.COMPLETED.value,
        )
        .order_by(TransactionModel.created_at.asc())
    )
    return list((await sql_session.execute(query)).scalars().all())


def _unique(values) -> list[str]:
    return list(dict.fromkeys(value for value in values if value))


async def build_export_record(
    sql_session: AsyncSession,
    user: UserModel,
    corsair_id: str,
    certification_date: Optional[str] = None,
) -> CorsairExportRecord:
    transactions = await _completed_transactions(sql_session, user.id)
    first = transactions[0] if transactions else None
    last = transactions[-1] if transactions else None

    return CorsairExportRecord(
        corsair_id=corsair_id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        date_of_birth=iso_date(user.date_of_birth),
        street=user.street,
        city=user.city,
        postal_code=user.postal_code,
        country=user.country,
        state=user.state,
        total_impact_kg=float(user.wallet_impact_kg),
        matured_impact_kg=float(user.matured_impact_kg),
        pending_impact_kg=float(user.pending_impact_kg),
        wallet_balance=float(user.wallet_balance),
        certification_date=certification_date or iso_date(utc_now()),
        transaction_count=len(transactions),
        first_transaction_date=iso_date(first.created_at) if first else None,
        last_transaction_date=iso_date(last.created_at) if last else None,
        attribution_ids=AttributionIds(
            merchant_ids=_unique(t.merchant_id for t in transactions),
            partner_ids=_unique(t.partner_id for t in transactions),
        ),
    )


def _mark_exported(sql_session: AsyncSession, user: UserModel, corsair_id: str) -> None:
    user.corsair_id = corsair_id
    user.corsair_exported = True
    user.updated_at = utc_now()
    sql_session.add(user)


async def export_user_to_corsair(sql_session: AsyncSession, user_id: str) -> Optional[CorsairExportRecord]:
    """Export one user on certification. Returns None when there is nothing to export."""
    user = await sql_session.get(UserModel, user_id)
    if user is None:
        logger.error(f"Corsair export: user not found: {user_id}")
        return None
    if user.status != UserStatus.CERTIFIED.value:
        logger.info(f"Corsair export: user {user_id} not certified, skipping")
        return None
    if user.corsair_exported and user.corsair_id:
        logger.info(f"Corsair export: user {user_id} already exported as {user.corsair_id}")
        return None

    corsair_id = generate_corsair_id()
    record = await build_export_record(sql_session, user, corsair_id)
    _mark_exported(sql_session, user, corsair_id)
    await sql_session.commit()

    logger.info(f"Corsair export: user {user_id} exported as {corsair_id}")
    return record


def batch_result(records: list[CorsairExportRecord]) -> dict:
    return {
        "export_date": iso_utc(utc_now()),
        "record_count": len(records),
        "records": [record.model_dump() for record in records],
        "format": "json",
    }


async def export_pending_certified_users(sql_session: AsyncSession) -> list[CorsairExportRecord]:
    query = select(UserModel).where(
        UserModel.status == UserStatus.CERTIFIED.value,
        UserModel.corsair_exported == False,  # noqa: E712
    )
    users = (await sql_session.execute(query)).scalars().all()

    records = []
    for user in users:
        corsair_id = generate_corsair_id()
        records.append(await build_export_record(sql_session, user, corsair_id))
        _mark_exported(sql_session, user, corsair_id)
    await sql_session.commit()

    logger.info(f"Corsair batch export completed: {len(records)} users")
    return records


async def export_all_certified_users(sql_session: AsyncSession) -> list[CorsairExportRecord]:
    query = select(UserModel).where(UserModel.status == UserStatus.CERTIFIED.value)
    users = (await sql_session.execute(query)).scalars().all()

    records = []
    for user in users:
        corsair_id = user.corsair_id or generate_corsair_id()
        # Last update stands in for the certification date.
        certification_date = iso_date(user.updated_at) or iso_date(utc_now())
        records.append(await build_export_record(sql_session, user, corsair_id, certification_date))
        if not user.corsair_exported:
            _mark_exported(sql_session, user, corsair_id)
    await sql_session.commit()

    logger.info(f"Corsair full export completed: {len(records)} certified users")
    return records


def convert_to_csv(records: list[CorsairExportRecord]) -> str:
    if not records:
        return ""

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for record in records:
        writer.writerow(
            [
                record.corsair_id,
                record.email,
                record.first_name or "",
                record.last_name or "",
                record.date_of_birth or "",
                record.street or "",
                record.city or "",
                record.postal_code or "",
                record.country or "",
                record.state or "",
                f"{record.total_impact_kg:.4f}",
                f"{record.matured_impact_kg:.4f}",
                f"{record.pending_impact_kg:.4f}",
                f"{record.wallet_balance:.2f}",
                record.certification_date,
                str(record.transaction_count),
                record.first_transaction_date or "",
                record.last_transaction_date or "",
                ";".join(record.attribution_ids.merchant_ids),
                ";".join(record.attribution_ids.partner_ids),
            ]
        )
    return buffer.getvalue()


async def get_corsair_export_stats(sql_session: AsyncSession) -> dict:
    certified_query = select(func.count()).select_from(UserModel).where(
        UserModel.status == UserStatus.CERTIFIED.value
    )
    exported_query = select(func.count()).select_from(UserModel).where(
        UserModel.status == UserStatus.CERTIFIED.value,
        UserModel.corsair_exported == True,  # noqa: E712
    )
    total_certified = int((await sql_session.execute(certified_query)).scalar() or 0)
    total_exported = int((await sql_session.execute(exported_query)).scalar() or 0)

    return {
        "total_certified": total_certified,
        "total_exported": total_exported,
        "pending_export": total_certified - total_exported,
        "threshold": await get_certification_threshold(sql_session),
    }

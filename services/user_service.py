import csv
import io
import logging
from datetime import date, datetime
from typing import Any, Optional

from fastapi import HTTPException
from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from models.enums import UserRole, UserStatus
from models.sql.transaction import TransactionModel
from models.sql.user import UserModel
from utils.datetime_utils import iso_date, iso_utc, parse_iso, utc_now

logger = logging.getLogger(__name__)

PROFILE_FIELDS = (
    "first_name",
    "last_name",
    "street",
    "city",
    "postal_code",
    "country",
    "state",
)

SORTABLE_FIELDS = {
    "created_at": UserModel.created_at,
    "email": UserModel.email,
    "wallet_balance": UserModel.wallet_balance,
    "wallet_impact_kg": UserModel.wallet_impact_kg,
    "status": UserModel.status,
}

USERS_CSV_HEADERS = [
    "ID",
    "Email",
    "First Name",
    "Last Name",
    "Date of Birth",
    "Street",
    "City",
    "Postal Code",
    "Country",
    "State",
    "Wallet Balance (EUR)",
    "Impact (kg)",
    "Status",
    "Transaction Count",
    "Corsair Exported",
    "Created At",
]


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def parse_date_of_birth(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise HTTPException(status_code=400, detail="date_of_birth must be an ISO date (YYYY-MM-DD).")


def serialize_user(user: UserModel, transaction_count: Optional[int] = None) -> dict:
    payload = {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "date_of_birth": iso_date(user.date_of_birth),
        "street": user.street,
        "city": user.city,
        "postal_code": user.postal_code,
        "country": user.country,
        "state": user.state,
        "role": user.role,
        "status": user.status,
        "wallet_balance": float(user.wallet_balance),
        "wallet_impact_kg": float(user.wallet_impact_kg),
        "matured_impact_kg": float(user.matured_impact_kg),
        "pending_impact_kg": float(user.pending_impact_kg),
        "corsair_id": user.corsair_id,
        "corsair_exported": user.corsair_exported,
        "merchant_id": user.merchant_id,
        "partner_id": user.partner_id,
        "created_at": iso_utc(user.created_at),
        "updated_at": iso_utc(user.updated_at),
    }
    if transaction_count is not None:
        payload["transaction_count"] = transaction_count
    return payload


async def get_user_by_email(sql_session: AsyncSession, email: str) -> UserModel | None:
    query = select(UserModel).where(UserModel.email == normalize_email(email))
    result = await sql_session.execute(query)
    return result.scalars().first()


async def get_user_or_404(sql_session: AsyncSession, user_id: str) -> UserModel:
    user = await sql_session.get(UserModel, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found.")
    return user


async def get_or_create_user_by_email(
    sql_session: AsyncSession,
    email: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> UserModel:
    """Find a user by email or stage a new one on the session (flushed, not committed)."""
    normalized = normalize_email(email)
    if not normalized:
        raise HTTPException(status_code=400, detail="Email is required.")

    user = await get_user_by_email(sql_session, normalized)
    if user:
        return user

    user = UserModel(email=normalized, first_name=first_name, last_name=last_name)
    sql_session.add(user)
    await sql_session.flush()
    logger.info(f"Created user {user.id} for {normalized}")
    return user


async def upsert_user_profile(sql_session: AsyncSession, data: dict) -> UserModel:
    """Create a user from landing form data, or fill in an existing user's blanks."""
    email = normalize_email(data.get("email"))
    if not email:
        raise HTTPException(status_code=400, detail="Email is required.")

    date_of_birth = parse_date_of_birth(data.get("date_of_birth"))
    user = await get_user_by_email(sql_session, email)
    if user is None:
        user = UserModel(email=email, date_of_birth=date_of_birth)
        for field in PROFILE_FIELDS:
            setattr(user, field, data.get(field) or None)
    else:
        for field in PROFILE_FIELDS:
            if data.get(field):
                setattr(user, field, data[field])
        if date_of_birth:
            user.date_of_birth = date_of_birth
        user.updated_at = utc_now()

    sql_session.add(user)
    await sql_session.commit()
    await sql_session.refresh(user)
    return user


async def count_user_transactions(sql_session: AsyncSession, user_id: str) -> int:
    query = select(func.count()).select_from(TransactionModel).where(TransactionModel.user_id == user_id)
    return int((await sql_session.execute(query)).scalar() or 0)


def _user_filters(
    status: Optional[str] = None,
    search: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> list:
    filters = []
    if status and status.upper() in {s.value for s in UserStatus}:
        filters.append(UserModel.status == status.upper())
    if search:
        pattern = f"%{search.strip().lower()}%"
        filters.append(
            or_(
                func.lower(UserModel.email).like(pattern),
                func.lower(UserModel.first_name).like(pattern),
                func.lower(UserModel.last_name).like(pattern),
            )
        )
    start = parse_iso(start_date)
    if start:
        filters.append(UserModel.created_at >= start)
    end = parse_iso(end_date)
    if end:
        filters.append(UserModel.created_at <= end)
    return filters


async def _transaction_counts(sql_session: AsyncSession, user_ids: list[str]) -> dict[str, int]:
    if not user_ids:
        return {}
    query = (
        select(TransactionModel.user_id, func.count())
        .where(TransactionModel.user_id.in_(user_ids))
        .group_by(TransactionModel.user_id)
    )
    return {user_id: int(count) for user_id, count in (await sql_session.execute(query)).all()}


async def list_users(
    sql_session: AsyncSession,
    status: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> dict:
    filters = _user_filters(status=status, search=search)
    sort_column = SORTABLE_FIELDS.get(sort_by, UserModel.created_at)
    ordering = sort_column.asc() if sort_order == "asc" else sort_column.desc()
    limit = max(1, min(limit, 500))
    offset = max(0, offset)

    query = select(UserModel).where(*filters).order_by(ordering).limit(limit).offset(offset)
    users = (await sql_session.execute(query)).scalars().all()

    count_query = select(func.count()).select_from(UserModel).where(*filters)
    total = int((await sql_session.execute(count_query)).scalar() or 0)

    counts = await _transaction_counts(sql_session, [user.id for user in users])
    return {
        "users": [serialize_user(user, counts.get(user.id, 0)) for user in users],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


async def update_user(sql_session: AsyncSession, user_id: str, data: dict) -> UserModel:
    user = await get_user_or_404(sql_session, user_id)

    for field in PROFILE_FIELDS:
        if field in data:
            setattr(user, field, data[field])
    if "date_of_birth" in data:
        user.date_of_birth = parse_date_of_birth(data["date_of_birth"])
    if data.get("status") in {s.value for s in UserStatus}:
        user.status = data["status"]
    if data.get("role") in {r.value for r in UserRole}:
        user.role = data["role"]
    if "merchant_id" in data:
        user.merchant_id = data["merchant_id"] or None
    if "partner_id" in data:
        user.partner_id = data["partner_id"] or None
    if "corsair_exported" in data and data["corsair_exported"] is not None:
        user.corsair_exported = bool(data["corsair_exported"])

    user.updated_at = utc_now()
    sql_session.add(user)
    await sql_session.commit()
    await sql_session.refresh(user)
    return user


def _csv_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return iso_utc(value)
    return str(value)


async def export_users_csv(
    sql_session: AsyncSession,
    status: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> str:
    filters = _user_filters(status=status, start_date=start_date, end_date=end_date)
    query = select(UserModel).where(*filters).order_by(UserModel.created_at.desc())
    users = (await sql_session.execute(query)).scalars().all()
    counts = await _transaction_counts(sql_session, [user.id for user in users])

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    buffer.write(",".join(USERS_CSV_HEADERS) + "\n")
    for user in users:
        writer.writerow(
            [
                _csv_cell(user.id),
                _csv_cell(user.email),
                _csv_cell(user.first_name),
                _csv_cell(user.last_name),
                _csv_cell(iso_date(user.date_of_birth)),
                _csv_cell(user.street),
                _csv_cell(user.city),
                _csv_cell(user.postal_code),
                _csv_cell(user.country),
                _csv_cell(user.state),
                f"{float(user.wallet_balance):.2f}",
                f"{float(user.wallet_impact_kg):.2f}",
                user.status,
                str(counts.get(user.id, 0)),
                "Yes" if user.corsair_exported else "No",
                _csv_cell(user.created_at),
            ]
        )

    logger.info(f"Exported {len(users)} users to CSV")
    return buffer.getvalue()

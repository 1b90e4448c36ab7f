"""
Transactions, wallets and the 5/45/50 maturation rule.

5% of a transaction's impact matures immediately, 45% after 40 weeks and the
remaining 50% after 80 weeks. A user's `pending_impact_kg` plus
`matured_impact_kg` always equals `wallet_impact_kg`.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from models.enums import PaymentMode, PaymentStatus, UserRole, UserStatus
from models.sql.merchant import MerchantModel
from models.sql.partner import PartnerModel
from models.sql.sku import SkuModel
from models.sql.transaction import TransactionModel
from models.sql.user import UserModel
from services.corsair_service import export_user_to_corsair
from services.gift_code_service import redeem_gift_code
from services.landing_service import calculate_impact, impact_for_weight
from services.settings_service import get_certification_threshold, get_price_per_kg
from services.sku_service import normalize_payment_mode
from services.user_service import get_or_create_user_by_email, get_user_by_email, get_user_or_404
from utils.datetime_utils import as_utc, iso_utc, parse_iso, utc_now

logger = logging.getLogger(__name__)

IMMEDIATE_SHARE = 0.05
MID_TERM_SHARE = 0.45
MID_TERM_WEEKS = 40
FINAL_WEEKS = 80
MAX_PAGE_SIZE = 500


def calculate_maturation_breakdown(impact_kg: float, start: Optional[datetime] = None) -> dict:
    start = start or utc_now()
    immediate_kg = impact_kg * IMMEDIATE_SHARE
    mid_term_kg = impact_kg * MID_TERM_SHARE
    return {
        "immediate_kg": immediate_kg,
        "mid_term_kg": mid_term_kg,
        # Remainder, so the three shares always sum to the total.
        "final_kg": impact_kg - immediate_kg - mid_term_kg,
        "mid_term_matures_at": start + timedelta(weeks=MID_TERM_WEEKS),
        "final_matures_at": start + timedelta(weeks=FINAL_WEEKS),
    }


def _apply_maturation(transaction: TransactionModel, impact_kg: float) -> None:
    breakdown = calculate_maturation_breakdown(impact_kg, as_utc(transaction.created_at))
    transaction.immediate_impact_kg = breakdown["immediate_kg"]
    transaction.mid_term_impact_kg = breakdown["mid_term_kg"]
    transaction.final_impact_kg = breakdown["final_kg"]
    transaction.mid_term_matures_at = breakdown["mid_term_matures_at"]
    transaction.final_matures_at = breakdown["final_matures_at"]


def serialize_transaction(
    transaction: TransactionModel,
    user: UserModel | None = None,
    sku: SkuModel | None = None,
    merchant: MerchantModel | None = None,
) -> dict:
    payload = {
        "id": transaction.id,
        "user_id": transaction.user_id,
        "sku_code": transaction.sku_code,
        "amount": float(transaction.amount),
        "impact_kg": float(transaction.impact_kg),
        "payment_mode": transaction.payment_mode,
        "payment_status": transaction.payment_status,
        "merchant_id": transaction.merchant_id,
        "partner_id": transaction.partner_id,
        "gift_code_used": transaction.gift_code_used,
        "weight_grams": transaction.weight_grams,
        "multiplier": transaction.multiplier,
        "note": transaction.note,
        "immediate_impact_kg": float(transaction.immediate_impact_kg),
        "mid_term_impact_kg": float(transaction.mid_term_impact_kg),
        "final_impact_kg": float(transaction.final_impact_kg),
        "mid_term_matures_at": iso_utc(transaction.mid_term_matures_at),
        "final_matures_at": iso_utc(transaction.final_matures_at),
        "mid_term_matured": transaction.mid_term_matured,
        "final_matured": transaction.final_matured,
        "created_at": iso_utc(transaction.created_at),
        "updated_at": iso_utc(transaction.updated_at),
    }
    if user is not None:
        payload["user"] = {
            "id": user.id,
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
        }
    if sku is not None:
        payload["sku"] = {"code": sku.code, "name": sku.name}
    if merchant is not None:
        payload["merchant"] = {"id": merchant.id, "name": merchant.name}
    return payload


async def check_threshold_upgrade(sql_session: AsyncSession, user: UserModel) -> bool:
    """Stage ACCUMULATION -> CERTIFIED once the balance reaches the threshold."""
    if user.status == UserStatus.CERTIFIED.value:
        return False

    threshold = await get_certification_threshold(sql_session)
    if float(user.wallet_balance) >= threshold:
        user.status = UserStatus.CERTIFIED.value
        sql_session.add(user)
        logger.info(f"User {user.id} certified at balance {float(user.wallet_balance):.2f}")
        return True
    return False


async def update_user_wallet(
    sql_session: AsyncSession,
    user: UserModel,
    amount: float,
    impact_kg: float,
    immediate_kg: Optional[float] = None,
) -> bool:
    """
    Stage a wallet credit and return whether it certified the user.

    The immediate share goes straight to matured impact, the rest waits in
    pending. Callers commit, then run `finalize_certification` when this
    returns True.
    """
    if immediate_kg is None:
        immediate_kg = impact_kg * IMMEDIATE_SHARE

    user.wallet_balance = float(user.wallet_balance) + amount
    user.wallet_impact_kg = float(user.wallet_impact_kg) + impact_kg
    user.matured_impact_kg = float(user.matured_impact_kg) + immediate_kg
    user.pending_impact_kg = float(user.pending_impact_kg) + (impact_kg - immediate_kg)
    user.updated_at = utc_now()
    sql_session.add(user)

    return await check_threshold_upgrade(sql_session, user)


async def finalize_certification(sql_session: AsyncSession, user_id: str, upgraded: bool) -> None:
    if upgraded:
        await export_user_to_corsair(sql_session, user_id)


async def _resolve_price_per_kg(sql_session: AsyncSession, merchant: MerchantModel | None) -> float:
    if merchant is not None and merchant.price_per_kg and merchant.price_per_kg > 0:
        return float(merchant.price_per_kg)
    return await get_price_per_kg(sql_session)


async def create_transaction(
    sql_session: AsyncSession,
    data: dict,
    current_user: UserModel | None = None,
) -> dict:
    if not data.get("payment_mode"):
        raise HTTPException(status_code=400, detail="payment_mode is required.")
    payment_mode = normalize_payment_mode(data["payment_mode"])

    amount = float(data.get("amount") or 0)
    if amount < 0:
        raise HTTPException(status_code=400, detail="Amount must not be negative.")

    if current_user is not None:
        user = current_user
    else:
        if not data.get("email"):
            raise HTTPException(status_code=400, detail="Email is required for new users.")
        user = await get_or_create_user_by_email(
            sql_session, data["email"], data.get("first_name"), data.get("last_name")
        )

    sku_code = (data.get("sku_code") or "").strip() or None
    gift_code = (data.get("gift_code") or "").strip() or None
    merchant_id = data.get("merchant_id") or None
    partner_id = data.get("partner_id") or None

    if payment_mode == PaymentMode.GIFT_CARD.value and gift_code:
        _, gift_sku = await redeem_gift_code(sql_session, gift_code, user.id, sku_code)
        if gift_sku is not None:
            sku_code = sku_code or gift_sku.code
            if amount <= 0:
                amount = float(gift_sku.price)

    sku = None
    if sku_code:
        sku = await sql_session.get(SkuModel, sku_code)
        if sku is None:
            raise HTTPException(status_code=404, detail="SKU not found.")
        merchant_id = merchant_id or sku.merchant_id

    merchant = None
    if merchant_id:
        merchant = await sql_session.get(MerchantModel, merchant_id)
        if merchant is None:
            raise HTTPException(status_code=404, detail="Merchant not found.")
    if partner_id and await sql_session.get(PartnerModel, partner_id) is None:
        raise HTTPException(status_code=404, detail="Partner not found.")

    price_per_kg = await _resolve_price_per_kg(sql_session, merchant)
    threshold = await get_certification_threshold(sql_session)

    weight_grams = data.get("weight_grams")
    multiplier = data.get("multiplier")
    if weight_grams and weight_grams > 0:
        effective_multiplier = multiplier if multiplier and multiplier > 0 else 1
        impact = impact_for_weight(weight_grams, effective_multiplier, price_per_kg, threshold)
    else:
        impact = calculate_impact(amount, price_per_kg, threshold)

    transaction = TransactionModel(
        user_id=user.id,
        sku_code=sku_code,
        amount=amount,
        impact_kg=impact.impact_kg,
        payment_mode=payment_mode,
        payment_status=(
            PaymentStatus.PENDING.value
            if payment_mode == PaymentMode.PAY.value
            else PaymentStatus.COMPLETED.value
        ),
        merchant_id=merchant_id,
        partner_id=partner_id,
        gift_code_used=gift_code,
        weight_grams=weight_grams,
        multiplier=multiplier,
    )
    _apply_maturation(transaction, impact.impact_kg)
    sql_session.add(transaction)

    upgraded = False
    if transaction.payment_status == PaymentStatus.COMPLETED.value:
        upgraded = await update_user_wallet(
            sql_session, user, amount, impact.impact_kg, transaction.immediate_impact_kg
        )

    if merchant is not None:
        merchant.current_balance = float(merchant.current_balance) + amount
        merchant.updated_at = utc_now()
        sql_session.add(merchant)

    await sql_session.commit()
    await sql_session.refresh(transaction)
    await finalize_certification(sql_session, user.id, upgraded)

    logger.info(
        f"Transaction {transaction.id} created: {payment_mode} {amount:.2f} EUR, "
        f"{impact.impact_kg:.4f} kg, {transaction.payment_status}"
    )
    return {**serialize_transaction(transaction, sku=sku, merchant=merchant), "impact": impact.model_dump()}


async def get_transaction_for_user(sql_session: AsyncSession, transaction_id: str, user: UserModel) -> dict:
    transaction = await sql_session.get(TransactionModel, transaction_id)
    # Other users' transactions are reported as missing.
    if transaction is None or (user.role != UserRole.ADMIN.value and transaction.user_id != user.id):
        raise HTTPException(status_code=404, detail="Transaction not found.")

    sku = await sql_session.get(SkuModel, transaction.sku_code) if transaction.sku_code else None
    merchant = await sql_session.get(MerchantModel, transaction.merchant_id) if transaction.merchant_id else None
    return serialize_transaction(transaction, sku=sku, merchant=merchant)


async def list_user_transactions(
    sql_session: AsyncSession,
    user_id: str,
    limit: int = 20,
    offset: int = 0,
    completed_only: bool = False,
) -> dict:
    filters = [TransactionModel.user_id == user_id]
    if completed_only:
        filters.append(TransactionModel.payment_status == PaymentStatus.COMPLETED.value)

    query = (
        select(TransactionModel)
        .where(*filters)
        .order_by(TransactionModel.created_at.desc())
        .limit(max(1, min(limit, MAX_PAGE_SIZE)))
        .offset(max(0, offset))
    )
    transactions = (await sql_session.execute(query)).scalars().all()
    count_query = select(func.count()).select_from(TransactionModel).where(*filters)
    total = int((await sql_session.execute(count_query)).scalar() or 0)
    return {"transactions": [serialize_transaction(t) for t in transactions], "total": total}


async def _wallet_summary(sql_session: AsyncSession, user: UserModel | None) -> dict:
    if user is None:
        return {
            "balance": 0.0,
            "impact_kg": 0.0,
            "matured_impact_kg": 0.0,
            "pending_impact_kg": 0.0,
            "status": UserStatus.ACCUMULATION.value,
            "transaction_count": 0,
            "threshold_progress": 0.0,
        }

    threshold = await get_certification_threshold(sql_session)
    balance = float(user.wallet_balance)
    count_query = select(func.count()).select_from(TransactionModel).where(TransactionModel.user_id == user.id)
    return {
        "balance": balance,
        "impact_kg": float(user.wallet_impact_kg),
        "matured_impact_kg": float(user.matured_impact_kg),
        "pending_impact_kg": float(user.pending_impact_kg),
        "status": user.status,
        "transaction_count": int((await sql_session.execute(count_query)).scalar() or 0),
        "threshold_progress": min(balance / threshold * 100, 100),
    }


async def get_wallet_summary(sql_session: AsyncSession, user: UserModel) -> dict:
    return await _wallet_summary(sql_session, user)


async def get_wallet_summary_by_email(sql_session: AsyncSession, email: str) -> dict:
    return await _wallet_summary(sql_session, await get_user_by_email(sql_session, email))


async def get_wallet_history(sql_session: AsyncSession, user_id: str, limit: int = 20, offset: int = 0) -> list[dict]:
    query = (
        select(TransactionModel, SkuModel, MerchantModel)
        .outerjoin(SkuModel, SkuModel.code == TransactionModel.sku_code)
        .outerjoin(MerchantModel, MerchantModel.id == TransactionModel.merchant_id)
        .where(
            TransactionModel.user_id == user_id,
            TransactionModel.payment_status == PaymentStatus.COMPLETED.value,
        )
        .order_by(TransactionModel.created_at.desc())
        .limit(max(1, min(limit, MAX_PAGE_SIZE)))
        .offset(max(0, offset))
    )
    rows = (await sql_session.execute(query)).all()
    return [
        {
            "id": transaction.id,
            "amount": float(transaction.amount),
            "impact_kg": float(transaction.impact_kg),
            "payment_mode": transaction.payment_mode,
            "created_at": iso_utc(transaction.created_at),
            "sku_name": sku.name if sku else None,
            "merchant_name": merchant.name if merchant else None,
        }
        for transaction, sku, merchant in rows
    ]


async def process_matured_impacts(sql_session: AsyncSession, now: Optional[datetime] = None) -> dict:
    """Move due mid-term and final shares from pending to matured. Safe to re-run."""
    now = now or utc_now()
    query = select(TransactionModel).where(
        TransactionModel.payment_status == PaymentStatus.COMPLETED.value,
        or_(
            (TransactionModel.mid_term_matured == False)  # noqa: E712
            & (TransactionModel.mid_term_matures_at <= now),
            (TransactionModel.final_matured == False)  # noqa: E712
            & (TransactionModel.final_matures_at <= now),
        ),
    )
    transactions = (await sql_session.execute(query)).scalars().all()

    mid_term_count = 0
    final_count = 0
    matured_kg = 0.0
    users: dict[str, UserModel] = {}

    for transaction in transactions:
        user = users.get(transaction.user_id) or await sql_session.get(UserModel, transaction.user_id)
        if user is None:
            continue
        users[user.id] = user

        released = 0.0
        mid_due = as_utc(transaction.mid_term_matures_at)
        if not transaction.mid_term_matured and mid_due and mid_due <= now:
            released += float(transaction.mid_term_impact_kg)
            transaction.mid_term_matured = True
            mid_term_count += 1
        final_due = as_utc(transaction.final_matures_at)
        if not transaction.final_matured and final_due and final_due <= now:
            released += float(transaction.final_impact_kg)
            transaction.final_matured = True
            final_count += 1

        if released:
            user.pending_impact_kg = float(user.pending_impact_kg) - released
            user.matured_impact_kg = float(user.matured_impact_kg) + released
            user.updated_at = now
            matured_kg += released
        transaction.updated_at = now
        sql_session.add(transaction)
        sql_session.add(user)

    await sql_session.commit()
    logger.info(
        f"Maturation run: {mid_term_count} mid-term and {final_count} final shares, "
        f"{matured_kg:.4f} kg released for {len(users)} users"
    )
    return {
        "processed_at": iso_utc(now),
        "mid_term_matured": mid_term_count,
        "final_matured": final_count,
        "matured_kg": matured_kg,
        "users_updated": len(users),
    }


async def list_all_transactions(
    sql_session: AsyncSession,
    payment_mode: Optional[str] = None,
    payment_status: Optional[str] = None,
    merchant_id: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    filters = []
    if payment_mode:
        filters.append(TransactionModel.payment_mode == payment_mode.upper())
    if payment_status:
        filters.append(TransactionModel.payment_status == payment_status.upper())
    if merchant_id:
        filters.append(TransactionModel.merchant_id == merchant_id)
    start = parse_iso(start_date)
    if start:
        filters.append(TransactionModel.created_at >= start)
    end = parse_iso(end_date)
    if end:
        filters.append(TransactionModel.created_at <= end)
    if search:
        pattern = f"%{search.strip().lower()}%"
        filters.append(
            or_(
                func.lower(UserModel.email).like(pattern),
                func.lower(UserModel.first_name).like(pattern),
                func.lower(UserModel.last_name).like(pattern),
            )
        )

    base = (
        select(TransactionModel, UserModel, SkuModel, MerchantModel)
        .join(UserModel, UserModel.id == TransactionModel.user_id)
        .outerjoin(SkuModel, SkuModel.code == TransactionModel.sku_code)
        .outerjoin(MerchantModel, MerchantModel.id == TransactionModel.merchant_id)
        .where(*filters)
    )
    rows = (
        await sql_session.execute(
            base.order_by(TransactionModel.created_at.desc())
            .limit(max(1, min(limit, MAX_PAGE_SIZE)))
            .offset(max(0, offset))
        )
    ).all()

    count_query = (
        select(func.count())
        .select_from(TransactionModel)
        .join(UserModel, UserModel.id == TransactionModel.user_id)
        .where(*filters)
    )
    total = int((await sql_session.execute(count_query)).scalar() or 0)
    return {
        "transactions": [serialize_transaction(t, user, sku, merchant) for t, user, sku, merchant in rows],
        "total": total,
    }


async def update_transaction_status(sql_session: AsyncSession, transaction_id: str, payment_status: Optional[str]) -> dict:
    if not payment_status:
        raise HTTPException(status_code=400, detail="Payment status is required.")
    try:
        new_status = PaymentStatus(payment_status.strip().upper()).value
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid payment status. Must be one of: {', '.join(s.value for s in PaymentStatus)}",
        )

    transaction = await sql_session.get(TransactionModel, transaction_id)
    if transaction is None:
        raise HTTPException(status_code=404, detail="Transaction not found.")
    if transaction.payment_status == new_status:
        return serialize_transaction(transaction)
    if transaction.payment_status == PaymentStatus.COMPLETED.value:
        raise HTTPException(status_code=400, detail="Completed transactions cannot change status.")

    upgraded = False
    user = await get_user_or_404(sql_session, transaction.user_id)
    if new_status == PaymentStatus.COMPLETED.value:
        upgraded = await update_user_wallet(
            sql_session,
            user,
            float(transaction.amount),
            float(transaction.impact_kg),
            float(transaction.immediate_impact_kg),
        )

    transaction.payment_status = new_status
    transaction.updated_at = utc_now()
    sql_session.add(transaction)
    await sql_session.commit()
    await sql_session.refresh(transaction)
    await finalize_certification(sql_session, user.id, upgraded)

    logger.info(f"Transaction {transaction.id} status changed to {new_status}")
    return serialize_transaction(transaction)


async def _record_adjustment(
    sql_session: AsyncSession,
    user: UserModel,
    amount: float,
    payment_mode: str,
    note: str,
) -> TransactionModel:
    price_per_kg = await get_price_per_kg(sql_session)
    impact_kg = amount / price_per_kg

    transaction = TransactionModel(
        user_id=user.id,
        amount=amount,
        impact_kg=impact_kg,
        payment_mode=payment_mode,
        payment_status=PaymentStatus.COMPLETED.value,
        note=note,
    )
    _apply_maturation(transaction, impact_kg)
    sql_session.add(transaction)

    upgraded = await update_user_wallet(
        sql_session, user, amount, impact_kg, transaction.immediate_impact_kg
    )
    await sql_session.commit()
    await sql_session.refresh(transaction)
    await finalize_certification(sql_session, user.id, upgraded)
    return transaction


async def create_manual_transaction(sql_session: AsyncSession, data: dict) -> dict:
    email = data.get("email")
    amount = data.get("amount")
    reason = (data.get("reason") or "").strip()

    if not email:
        raise HTTPException(status_code=400, detail="User email is required.")
    if amount is None or amount <= 0:
        raise HTTPException(status_code=400, detail="Valid amount is required.")
    if not data.get("payment_mode"):
        raise HTTPException(status_code=400, detail="Payment mode is required.")
    if not reason:
        raise HTTPException(status_code=400, detail="Reason is required for audit trail.")
    payment_mode = normalize_payment_mode(data["payment_mode"])

    user = await get_or_create_user_by_email(sql_session, email)
    transaction = await _record_adjustment(sql_session, user, float(amount), payment_mode, f"MANUAL: {reason}")

    logger.info(f"Manual transaction {transaction.id} for {user.email}: {float(amount):.2f} EUR ({reason})")
    return serialize_transaction(transaction, user=user)


async def adjust_wallet(sql_session: AsyncSession, user_id: str, amount: Optional[float], reason: Optional[str]) -> UserModel:
    if amount is None or isinstance(amount, bool) or not isinstance(amount, (int, float)) or math.isnan(amount):
        raise HTTPException(status_code=400, detail="Amount must be a valid number.")
    reason = (reason or "").strip()
    if not reason:
        raise HTTPException(status_code=400, detail="Reason is required for wallet adjustment.")

    user = await get_user_or_404(sql_session, user_id)
    await _record_adjustment(
        sql_session, user, float(amount), PaymentMode.CLAIM.value, f"ADMIN_ADJUSTMENT: {reason}"
    )
    await sql_session.refresh(user)

    logger.info(f"Wallet of user {user.id} adjusted by {float(amount):.2f} EUR ({reason})")
    return user

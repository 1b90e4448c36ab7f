from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from models.enums import PaymentStatus
from models.sql.transaction import TransactionModel
from models.sql.user import UserModel

BOTTLES_PER_KG = 25


async def get_impact_report(sql_session: AsyncSession) -> dict:
    total_transactions = (
        await sql_session.execute(select(func.count()).select_from(TransactionModel))
    ).scalar() or 0

    completed_query = select(
        func.count(TransactionModel.id),
        func.coalesce(func.sum(TransactionModel.amount), 0.0),
        func.coalesce(func.sum(TransactionModel.impact_kg), 0.0),
    ).where(TransactionModel.payment_status == PaymentStatus.COMPLETED.value)
    completed_count, total_revenue, total_impact_kg = (await sql_session.execute(completed_query)).one()

    users_query = select(
        func.coalesce(func.sum(UserModel.matured_impact_kg), 0.0),
        func.coalesce(func.sum(UserModel.pending_impact_kg), 0.0),
    )
    matured_kg, pending_kg = (await sql_session.execute(users_query)).one()

    total_impact_kg = float(total_impact_kg or 0)
    return {
        "total_transactions": int(total_transactions),
        "completed_transactions": int(completed_count or 0),
        "total_revenue": float(total_revenue or 0),
        "total_impact_kg": total_impact_kg,
        "matured_impact_kg": float(matured_kg or 0),
        "pending_impact_kg": float(pending_kg or 0),
        "equivalent_bottles": round(total_impact_kg * BOTTLES_PER_KG),
    }

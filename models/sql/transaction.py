import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


class TransactionModel(SQLModel, table=True):
    __tablename__ = "transactions"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True, nullable=False)
    sku_code: Optional[str] = Field(default=None, foreign_key="skus.code", nullable=True)
    amount: float = Field(default=0.0, nullable=False)
    impact_kg: float = Field(default=0.0, nullable=False)
    payment_mode: str = Field(nullable=False, index=True)
    payment_status: str = Field(default="PENDING", nullable=False, index=True)
    merchant_id: Optional[str] = Field(default=None, foreign_key="merchants.id", index=True, nullable=True)
    partner_id: Optional[str] = Field(default=None, foreign_key="partners.id", index=True, nullable=True)
    gift_code_used: Optional[str] = Field(default=None, nullable=True)
    weight_grams: Optional[int] = Field(default=None, nullable=True)
    multiplier: Optional[float] = Field(default=None, nullable=True)
    note: Optional[str] = Field(default=None, nullable=True)

    # 5/45/50 maturation split of impact_kg
    immediate_impact_kg: float = Field(default=0.0, nullable=False)
    mid_term_impact_kg: float = Field(default=0.0, nullable=False)
    final_impact_kg: float = Field(default=0.0, nullable=False)
    mid_term_matures_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    final_matures_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    mid_term_matured: bool = Field(default=False, nullable=False)
    final_matured: bool = Field(default=False, nullable=False)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


class MerchantModel(SQLModel, table=True):
    __tablename__ = "merchants"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str = Field(nullable=False)
    email: str = Field(unique=True, index=True, nullable=False)
    multiplier: float = Field(default=1.0, nullable=False)
    price_per_kg: Optional[float] = Field(default=None, nullable=True)
    monthly_billing: bool = Field(default=True, nullable=False)
    # Fees accrued since the last invoice.
    current_balance: float = Field(default=0.0, nullable=False)
    last_billing_date: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    partner_id: Optional[str] = Field(default=None, foreign_key="partners.id", nullable=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

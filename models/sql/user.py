import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


class UserModel(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    email: str = Field(unique=True, index=True, nullable=False)
    first_name: Optional[str] = Field(default=None, nullable=True)
    last_name: Optional[str] = Field(default=None, nullable=True)
    date_of_birth: Optional[date] = Field(default=None, nullable=True)
    street: Optional[str] = Field(default=None, nullable=True)
    city: Optional[str] = Field(default=None, nullable=True)
    postal_code: Optional[str] = Field(default=None, nullable=True)
    country: Optional[str] = Field(default=None, nullable=True)
    state: Optional[str] = Field(default=None, nullable=True)

    role: str = Field(default="USER", nullable=False)
    status: str = Field(default="ACCUMULATION", nullable=False, index=True)

    # Wallet (EUR and kg). pending + matured == wallet_impact_kg.
    wallet_balance: float = Field(default=0.0, nullable=False)
    wallet_impact_kg: float = Field(default=0.0, nullable=False)
    matured_impact_kg: float = Field(default=0.0, nullable=False)
    pending_impact_kg: float = Field(default=0.0, nullable=False)

    corsair_id: Optional[str] = Field(default=None, nullable=True)
    corsair_exported: bool = Field(default=False, nullable=False)

    merchant_id: Optional[str] = Field(default=None, foreign_key="merchants.id", nullable=True)
    partner_id: Optional[str] = Field(default=None, foreign_key="partners.id", nullable=True)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

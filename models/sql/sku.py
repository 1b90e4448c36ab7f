from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


class SkuModel(SQLModel, table=True):
    __tablename__ = "skus"

    # payment_mode is one of CLAIM, PAY, GIFT_CARD, ALLOCATION and drives
    # the landing case together with the two *_required flags.
    code: str = Field(primary_key=True, index=True, nullable=False)
    name: str = Field(nullable=False)
    description: Optional[str] = Field(default=None, nullable=True)
    payment_mode: str = Field(nullable=False, index=True)
    price: float = Field(default=0.0, nullable=False)
    weight_grams: Optional[int] = Field(default=None, nullable=True)
    multiplier: float = Field(default=1.0, nullable=False)
    payment_required: bool = Field(default=False, nullable=False)
    validation_required: bool = Field(default=False, nullable=False)
    active: bool = Field(default=True, nullable=False, index=True)
    merchant_id: Optional[str] = Field(default=None, foreign_key="merchants.id", nullable=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

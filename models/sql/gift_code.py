from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


class GiftCodeModel(SQLModel, table=True):
    __tablename__ = "gift_codes"

    code: str = Field(primary_key=True, index=True, nullable=False)
    sku_code: str = Field(foreign_key="skus.code", index=True, nullable=False)
    status: str = Field(default="UNUSED", nullable=False, index=True)
    # Both set whenever status is USED.
    used_by_user_id: Optional[str] = Field(default=None, foreign_key="users.id", nullable=True)
    used_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

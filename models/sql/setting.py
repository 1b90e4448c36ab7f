from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


class SettingModel(SQLModel, table=True):
    __tablename__ = "settings"

    key: str = Field(primary_key=True, nullable=False)
    value: str = Field(nullable=False)
    description: Optional[str] = Field(default=None, nullable=True)
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

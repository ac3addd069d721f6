"""SQLModel mapping for application profiles."""

from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, String
from sqlmodel import Field, SQLModel

from app.models.billing import Profile, utcnow


class ProfileRow(SQLModel, table=True):
    """Profile row created at registration; only ``is_premium`` is written by billing."""

    __tablename__ = "profiles"

    id: str = Field(sa_column=Column(String(length=255), primary_key=True, nullable=False))
    email: str | None = Field(
        default=None, sa_column=Column(String(length=320), unique=True, nullable=True)
    )
    is_premium: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, server_default=sa.false())
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    def to_profile(self) -> Profile:
        return Profile(
            id=self.id,
            email=self.email,
            is_premium=self.is_premium,
            updated_at=self.updated_at,
        )

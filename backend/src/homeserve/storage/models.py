"""Shared database models."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class AppConfiguration(Base):
    """Named configuration document edited from the admin console.

    One row per document key (e.g. ``referral``). Values are read inside
    the transaction that depends on them, never cached in-process.
    """

    __tablename__ = "app_configuration"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value_json: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<AppConfiguration(key={self.key})>"

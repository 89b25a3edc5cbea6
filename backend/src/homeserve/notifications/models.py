"""In-app notification models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, String

from homeserve.storage.models import Base


class NotificationType(str, Enum):
    """Notification styles shown by the storefront."""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"


class Notification(Base):
    """Notification addressed to one user."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(128), ForeignKey("user_accounts.id"), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    message = Column(String(1000), nullable=False)
    type = Column(SQLEnum(NotificationType), nullable=False, default=NotificationType.INFO)
    href = Column(String(255), nullable=True)
    read = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<Notification(id={self.id}, user={self.user_id}, title={self.title})>"

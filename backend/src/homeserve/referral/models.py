"""Referral system database models."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, Column, DateTime, Enum as SQLEnum, Float, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import relationship

from homeserve.storage.models import Base

# Stored when the signup has no email (phone-only accounts)
NO_EMAIL = "N/A"


class ReferralStatus(str, Enum):
    """Referral lifecycle states."""
    PENDING = "pending"      # Signed up, referrer bonus not yet earned
    COMPLETED = "completed"  # Referred user's first qualifying booking done
    FAILED = "failed"        # First booking did not qualify


class SignalKind(str, Enum):
    """Identity signals captured for duplicate detection."""
    EMAIL = "email"
    IP = "ip"
    DEVICE = "device"


def _new_referral_id() -> str:
    return uuid.uuid4().hex


class Referral(Base):
    """Referral ledger entry.

    Created only by signup settlement and only when a bonus is granted.
    Bonus amounts are copied from the settings at creation time and never
    recomputed. After creation only ``status``, ``booking_id``,
    ``failure_reason`` and ``updated_at`` change.
    """
    __tablename__ = "referrals"
    __table_args__ = (
        CheckConstraint("referrer_id <> referred_user_id", name="ck_referrals_no_self_referral"),
    )

    id = Column(String(32), primary_key=True, default=_new_referral_id)
    referrer_id = Column(String(128), ForeignKey("user_accounts.id"), nullable=False, index=True)
    referred_user_id = Column(String(128), ForeignKey("user_accounts.id"), nullable=False, unique=True)

    # Captured at signup for historical dedup
    referred_user_email = Column(String(255), nullable=False, index=True)
    ip_address = Column(String(64), nullable=True, index=True)
    device_id = Column(String(32), nullable=True, index=True)

    status = Column(SQLEnum(ReferralStatus), nullable=False, default=ReferralStatus.PENDING, index=True)
    referrer_bonus = Column(Float, nullable=False, default=0.0)
    referred_bonus = Column(Float, nullable=False, default=0.0)

    # Set by the completion trigger
    booking_id = Column(String(64), nullable=True)
    failure_reason = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, nullable=True)

    # Relationships
    referrer = relationship("UserAccount", foreign_keys=[referrer_id])
    referred_user = relationship("UserAccount", foreign_keys=[referred_user_id])
    signals = relationship("ReferralSignal", back_populates="referral", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Referral(id={self.id}, referrer={self.referrer_id}, referred={self.referred_user_id}, status={self.status})>"


class ReferralSignal(Base):
    """One identity signal claimed by a bonus-granting referral.

    The unique ``(kind, value)`` constraint means a signal value can back
    at most one referral. Two settlements racing on the same email, IP or
    device cannot both commit; the loser is retried and then sees the
    winner's referral in the duplicate check.
    """
    __tablename__ = "referral_signals"
    __table_args__ = (
        UniqueConstraint("kind", "value", name="uq_referral_signals_kind_value"),
    )

    id = Column(String(32), primary_key=True, default=_new_referral_id)
    referral_id = Column(String(32), ForeignKey("referrals.id"), nullable=False, index=True)
    kind = Column(SQLEnum(SignalKind), nullable=False)
    value = Column(String(255), nullable=False)

    referral = relationship("Referral", back_populates="signals")

    def __repr__(self):
        return f"<ReferralSignal(kind={self.kind}, value={self.value})>"

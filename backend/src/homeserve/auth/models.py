"""User account and wallet ledger models."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Float, ForeignKey, Integer, String, Text, inspect
from sqlalchemy.orm import relationship, validates

from homeserve.storage.models import Base

# Fields that may only be set when the document is created
WRITE_ONCE_FIELDS = ("referral_code", "referred_by_id")


class WriteOnceFieldError(ValueError):
    """Raised when a create-only field is reassigned."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Field '{field}' can only be set when the account is created")


class UserAccount(Base):
    """Marketplace customer account.

    The id is issued by the identity provider when the account is created;
    this row is the profile/wallet document created at signup settlement.
    """
    __tablename__ = "user_accounts"
    __table_args__ = (
        CheckConstraint("wallet_balance >= 0", name="ck_user_accounts_wallet_non_negative"),
    )

    id = Column(String(128), primary_key=True)

    # Profile
    email = Column(String(255), nullable=True, index=True)
    display_name = Column(String(255), nullable=True)
    mobile_number = Column(String(32), nullable=True)

    # Referral
    referral_code = Column(String(16), unique=True, nullable=False, index=True)
    referred_by_id = Column(String(128), ForeignKey("user_accounts.id"), nullable=True, index=True)

    # Wallet (mutated only through the wallet ledger)
    wallet_balance = Column(Float, nullable=False, default=0.0)

    # Status
    is_active = Column(Boolean, default=True)
    is_admin = Column(Boolean, default=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_login_at = Column(DateTime, nullable=True)

    # Relationships
    wallet_transactions = relationship("WalletTransaction", back_populates="user")

    def __repr__(self):
        return f"<UserAccount(id={self.id}, email={self.email}, code={self.referral_code})>"

    @validates(*WRITE_ONCE_FIELDS)
    def _validate_write_once(self, key: str, value):
        current = getattr(self, key)
        # Once the row exists even an unset field stays unset
        if current != value and (current is not None or inspect(self).has_identity):
            raise WriteOnceFieldError(key)
        return value

    @property
    def first_name(self) -> str | None:
        """First word of the display name."""
        if self.display_name and self.display_name.strip():
            return self.display_name.split()[0]
        return None


class WalletTransaction(Base):
    """Wallet ledger line."""
    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(128), ForeignKey("user_accounts.id"), nullable=False, index=True)

    # Transaction details
    amount = Column(Float, nullable=False)  # Positive = credit, Negative = debit
    balance_after = Column(Float, nullable=False)
    operation = Column(String(50), nullable=False)

    # Reference
    reference_id = Column(String(64), nullable=True, index=True)  # Referral/booking id
    description = Column(String(500), nullable=True)
    metadata_json = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    user = relationship("UserAccount", back_populates="wallet_transactions")

    def __repr__(self):
        return f"<WalletTransaction(id={self.id}, user={self.user_id}, amount={self.amount})>"


# Pydantic models


class SignupProfile(BaseModel):
    """Profile fields captured when a signup completes."""
    full_name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr | None = None
    mobile_number: str | None = Field(default=None, max_length=32)

    @field_validator("full_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Full name must not be blank")
        return v

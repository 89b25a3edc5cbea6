"""Referral program settings.

Stored as the ``referral`` document of ``app_configuration`` and edited
from the admin console. Settlement reads them inside its own
transaction so a policy change never applies half-way through a signup.
"""

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from homeserve.logging_config import get_logger
from homeserve.storage.models import AppConfiguration

logger = get_logger(__name__)

REFERRAL_SETTINGS_KEY = "referral"
DEFAULT_REFERRAL_CODE_LENGTH = 6


class ReferralSettings(BaseModel):
    """Referral program configuration."""
    is_referral_system_enabled: bool = False
    referrer_bonus: float = Field(default=0.0, ge=0)
    referred_user_bonus: float = Field(default=0.0, ge=0)
    referral_code_length: int = Field(default=DEFAULT_REFERRAL_CODE_LENGTH, ge=4, le=16)
    min_booking_value_for_bonus: float = Field(default=0.0, ge=0)
    max_earnings_per_referrer: float | None = Field(default=None, ge=0)


class ReferralSettingsUpdate(BaseModel):
    """Partial update of the referral settings."""
    is_referral_system_enabled: bool | None = None
    referrer_bonus: float | None = Field(default=None, ge=0)
    referred_user_bonus: float | None = Field(default=None, ge=0)
    referral_code_length: int | None = Field(default=None, ge=4, le=16)
    min_booking_value_for_bonus: float | None = Field(default=None, ge=0)
    max_earnings_per_referrer: float | None = Field(default=None, ge=0)


def load_referral_settings(session: Session) -> ReferralSettings:
    """Read the referral settings within the caller's transaction.

    A missing document yields the defaults (program disabled).

    Args:
        session: Open database session

    Returns:
        Current referral settings
    """
    row = session.get(AppConfiguration, REFERRAL_SETTINGS_KEY)
    if row is None or not row.value_json:
        return ReferralSettings()
    return ReferralSettings.model_validate(row.value_json)


def save_referral_settings(session: Session, update: ReferralSettingsUpdate) -> ReferralSettings:
    """Apply a partial update to the referral settings.

    Args:
        session: Open database session
        update: Fields to change

    Returns:
        The merged settings as stored
    """
    current = load_referral_settings(session)
    merged = current.model_copy(update=update.model_dump(exclude_unset=True))
    # Re-validate the merged document before it is written
    merged = ReferralSettings.model_validate(merged.model_dump())

    row = session.get(AppConfiguration, REFERRAL_SETTINGS_KEY)
    if row is None:
        row = AppConfiguration(key=REFERRAL_SETTINGS_KEY, value_json=merged.model_dump())
        session.add(row)
    else:
        row.value_json = merged.model_dump()
    session.flush()

    logger.info("referral_settings_updated", **update.model_dump(exclude_unset=True))
    return merged

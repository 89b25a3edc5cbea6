"""Referral code to referrer resolution."""

from sqlalchemy.orm import Session

from homeserve.auth.models import UserAccount
from homeserve.logging_config import get_logger
from homeserve.referral.codes import normalize_code
from homeserve.referral.config import ReferralSettings

logger = get_logger(__name__)


def resolve_referrer(
    session: Session,
    code: str | None,
    new_user_id: str,
    referral_settings: ReferralSettings,
) -> str | None:
    """Look up the referrer owning a referral code.

    Read-only. Returns None when the program is disabled, the code is
    blank or unknown, or the code belongs to ``new_user_id`` itself.

    Args:
        session: Session of the settlement transaction
        code: Claimed referral code
        new_user_id: Account id of the signup
        referral_settings: Settings read in the same transaction

    Returns:
        Referrer's user id, or None
    """
    if not referral_settings.is_referral_system_enabled:
        return None

    code = normalize_code(code)
    if not code:
        return None

    referrer = session.query(UserAccount).filter(
        UserAccount.referral_code == code
    ).first()

    if not referrer:
        logger.info("referral_code_not_found", code=code)
        return None

    if referrer.id == new_user_id:
        logger.warning("referral_self_attempt", user_id=new_user_id, code=code)
        return None

    return referrer.id

"""Duplicate-referral guard."""

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from homeserve.logging_config import get_logger
from homeserve.referral.models import NO_EMAIL, Referral

logger = get_logger(__name__)


def normalize_email(email: str | None) -> str | None:
    """Lower-case and strip an email; placeholders count as missing."""
    if not email:
        return None
    email = email.strip().lower()
    if not email or email == NO_EMAIL.lower():
        return None
    return email


def find_prior_referral(
    session: Session,
    email: str | None,
    ip_address: str | None,
    device_id: str | None,
) -> Referral | None:
    """Find an existing referral sharing any identity signal.

    Any single match is enough. Missing signals are left out of the
    match; with no signals at all there is nothing to compare and the
    result is None, so signups with incomplete telemetry keep their bonus.

    Args:
        session: Session of the settlement transaction
        email: Email of the new signup
        ip_address: IP captured for the signup
        device_id: Device id captured for the signup

    Returns:
        One matching referral, or None
    """
    conditions = []
    email = normalize_email(email)
    if email:
        conditions.append(func.lower(Referral.referred_user_email) == email)
    if ip_address:
        conditions.append(Referral.ip_address == ip_address)
    if device_id:
        conditions.append(Referral.device_id == device_id)

    if not conditions:
        return None

    prior = session.query(Referral).filter(or_(*conditions)).limit(1).first()
    if prior:
        # Which signal matched stays server-side
        logger.warning(
            "referral_duplicate_identity",
            prior_referral_id=prior.id,
            email_match=bool(email) and normalize_email(prior.referred_user_email) == email,
            ip_match=bool(ip_address) and prior.ip_address == ip_address,
            device_match=bool(device_id) and prior.device_id == device_id,
        )
    return prior

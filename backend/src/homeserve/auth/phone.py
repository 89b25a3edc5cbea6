"""Mobile number normalization for signup profiles."""

import phonenumbers
from phonenumbers import NumberParseException

from homeserve.logging_config import get_logger
from homeserve.settings import settings

logger = get_logger(__name__)


def normalize_mobile_number(number: str | None, default_region: str | None = None) -> str | None:
    """Normalize a mobile number to E.164.

    Numbers that cannot be parsed are kept as entered (stripped) so the
    profile is never rejected for formatting alone.

    Args:
        number: Raw number as typed or returned by the identity provider
        default_region: ISO 3166-1 alpha-2 region for national formats

    Returns:
        E.164 string, the stripped input, or None when empty
    """
    if not number or not number.strip():
        return None

    raw = number.strip()
    region = default_region or settings.default_phone_region

    try:
        parsed = phonenumbers.parse(raw, region)
    except NumberParseException:
        logger.debug("mobile_number_unparseable", number=raw)
        return raw

    if not phonenumbers.is_valid_number(parsed):
        logger.debug("mobile_number_invalid", number=raw)
        return raw

    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)

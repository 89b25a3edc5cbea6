"""Referral code generation and referral links."""

import secrets
from urllib.parse import urlencode

from homeserve.referral.config import DEFAULT_REFERRAL_CODE_LENGTH
from homeserve.settings import settings

# Upper case only, without the look-alikes 0/O, 1/I/L
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"


def generate_code(length: int = DEFAULT_REFERRAL_CODE_LENGTH) -> str:
    """Generate a short, readable referral code.

    Uniqueness is not checked here: ``user_accounts.referral_code`` has a
    unique index and settlement regenerates the code when it collides.

    Args:
        length: Number of characters

    Returns:
        Code such as ``K7QX2M``
    """
    if length < 1:
        raise ValueError("Code length must be positive")
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str | None) -> str | None:
    """Case-normalize a code typed or captured from a link.

    Returns:
        Upper-cased code, or None when blank
    """
    if not code:
        return None
    code = code.strip().upper()
    return code or None


def build_referral_link(code: str, base_url: str | None = None) -> str:
    """Build the shareable signup link for a code.

    Args:
        code: Referral code
        base_url: Storefront base URL (defaults to settings)

    Returns:
        Signup URL carrying the code as the ``ref`` query parameter
    """
    base = (base_url or settings.public_base_url).rstrip("/")
    return f"{base}/signup?{urlencode({'ref': code})}"

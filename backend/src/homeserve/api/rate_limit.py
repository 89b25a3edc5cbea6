"""Rate limiting configuration for the HomeServe API."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from homeserve.settings import settings

# Single shared limiter instance - disabled in non-production environments.
# The default covers every route; the referral capture, validate and settle
# endpoints set tighter limits of their own.
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["200/minute"],
    storage_uri="memory://",
    enabled=settings.env == "production",
)

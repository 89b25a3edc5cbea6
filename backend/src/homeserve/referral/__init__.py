"""Referral bonus system for HomeServe.

Signup with a friend's code:
- The new user gets the referred-user bonus in their wallet at signup
- The referrer gets the referrer bonus after the new user's first booking
- One bonus per person: email, IP and device are checked against earlier referrals
"""

from homeserve.referral.exceptions import (
    ReferralError,
    ReferralNotFoundError,
    SettlementConflictError,
    StoreUnavailableError,
    UserNotFoundError,
)
from homeserve.referral.models import Referral, ReferralSignal, ReferralStatus

__all__ = [
    "Referral",
    "ReferralError",
    "ReferralNotFoundError",
    "ReferralSignal",
    "ReferralStatus",
    "SettlementConflictError",
    "StoreUnavailableError",
    "UserNotFoundError",
]

"""Referral subsystem exceptions.

A disabled program, an unknown code and a duplicate-identity hit are not
errors: settlement completes as an ordinary signup in those cases.
"""

from homeserve.storage.transactions import StoreUnavailableError, TransactionConflictError


class ReferralError(Exception):
    """Base exception for referral operations."""


class SettlementConflictError(ReferralError, TransactionConflictError):
    """Settlement kept conflicting past the retry bound.

    Transient: the caller should retry the whole signup completion step.
    """

    def __init__(self, user_id: str, attempts: int):
        self.user_id = user_id
        TransactionConflictError.__init__(self, "settlement", attempts)


class ReferralNotFoundError(ReferralError):
    """Referral record does not exist."""

    def __init__(self, referral_id: str):
        self.referral_id = referral_id
        super().__init__(f"Referral {referral_id} not found")


class UserNotFoundError(ReferralError):
    """User account does not exist."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


__all__ = [
    "ReferralError",
    "ReferralNotFoundError",
    "SettlementConflictError",
    "StoreUnavailableError",
    "TransactionConflictError",
    "UserNotFoundError",
]

"""User accounts and identity-provider authentication for HomeServe."""

from homeserve.auth.models import SignupProfile, UserAccount, WalletTransaction, WriteOnceFieldError

__all__ = [
    "SignupProfile",
    "UserAccount",
    "WalletTransaction",
    "WriteOnceFieldError",
]

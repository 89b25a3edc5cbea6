"""HomeServe marketplace backend: referral bonuses and wallet ledger."""

__version__ = "0.1.0"

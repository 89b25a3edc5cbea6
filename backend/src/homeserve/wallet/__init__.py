"""Wallet ledger: the only writer of user wallet balances."""

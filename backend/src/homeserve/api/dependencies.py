"""Shared FastAPI dependencies.

Overridden in tests to point the API at a throwaway database and a
stubbed IP lookup.
"""

from homeserve.referral.fingerprint import IpLookupClient
from homeserve.storage.db import Database, db


def get_database() -> Database:
    """Database used by request handlers."""
    return db


def get_ip_lookup() -> IpLookupClient | None:
    """External IP lookup for signups from private addresses."""
    return IpLookupClient()

"""
Pytest configuration and shared fixtures.

Every test gets its own SQLite file so settlement runs against real
transactions and real unique constraints.
"""
import pytest
from tenacity import wait_none

from homeserve.auth.models import UserAccount
from homeserve.referral.completion import ReferralCompletionService
from homeserve.referral.config import ReferralSettingsUpdate, save_referral_settings
from homeserve.referral.settlement import SettlementProcessor
from homeserve.storage.db import Database
from homeserve.wallet.ledger import WalletService


@pytest.fixture
def database(tmp_path):
    """Fresh file-backed database with all tables"""
    database = Database(f"sqlite:///{tmp_path / 'test.db'}")
    database.create_tables()
    yield database
    database.engine.dispose()


@pytest.fixture
def configure_program(database):
    """Write referral settings; the program is enabled unless told otherwise"""
    def _configure(**overrides):
        values = {
            "is_referral_system_enabled": True,
            "referrer_bonus": 100.0,
            "referred_user_bonus": 50.0,
        }
        values.update(overrides)
        with database.session() as session:
            return save_referral_settings(session, ReferralSettingsUpdate(**values))
    return _configure


@pytest.fixture
def make_user(database):
    """Insert a settled user directly"""
    def _make(user_id, referral_code, display_name="Asha Verma", email=None, wallet_balance=0.0, is_admin=False):
        with database.session() as session:
            user = UserAccount(
                id=user_id,
                email=email,
                display_name=display_name,
                referral_code=referral_code,
                wallet_balance=wallet_balance,
                is_active=True,
                is_admin=is_admin,
            )
            session.add(user)
        return user
    return _make


@pytest.fixture
def referrer(make_user):
    """Existing customer owning code REFER1"""
    return make_user("referrer-1", "REFER1", display_name="Asha Verma", email="asha@example.com")


@pytest.fixture
def wallet(database):
    return WalletService(database)


@pytest.fixture
def processor(database, wallet):
    """Settlement processor without backoff between attempts"""
    return SettlementProcessor(database, wallet=wallet, max_attempts=3, wait=wait_none())


@pytest.fixture
def completion(database, wallet):
    return ReferralCompletionService(database, wallet=wallet, max_attempts=3, wait=wait_none())

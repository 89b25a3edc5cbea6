"""
Tests for atomic signup settlement.

Run against a real SQLite database: conflicts and constraint violations
come from the store, not from mocks.
"""
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.exc import OperationalError
from tenacity import wait_none

from homeserve.auth.models import SignupProfile, UserAccount, WalletTransaction, WriteOnceFieldError
from homeserve.notifications.models import Notification
from homeserve.referral import settlement as settlement_module
from homeserve.referral.exceptions import SettlementConflictError, StoreUnavailableError
from homeserve.referral.fingerprint import Fingerprint
from homeserve.referral.guard import find_prior_referral
from homeserve.referral.models import Referral, ReferralSignal, ReferralStatus, SignalKind
from homeserve.referral.settlement import SettlementProcessor

PROFILE = SignupProfile(full_name="Meera Nair", email="Meera@Example.com", mobile_number="98765 43210")
FINGERPRINT = Fingerprint(ip_address="81.2.69.160", device_id="k3x9q1")


def count(database, model, **filters):
    with database.session() as session:
        return session.query(model).filter_by(**filters).count()


def load_user(database, user_id):
    with database.session() as session:
        return session.get(UserAccount, user_id)


class TestSettlementScenarios:
    """End-to-end outcomes of Settle"""

    def test_valid_code_grants_bonus(self, database, processor, configure_program, referrer):
        """A valid code and a fresh identity earn the configured bonus"""
        configure_program(referrer_bonus=50, referred_user_bonus=100)

        user = processor.settle("new-user", PROFILE, "REFER1", FINGERPRINT)

        assert user.wallet_balance == 100
        assert user.referred_by_id == referrer.id
        assert user.email == "meera@example.com"

        with database.session() as session:
            referrals = session.query(Referral).all()
            assert len(referrals) == 1
            referral = referrals[0]
            assert referral.referrer_id == referrer.id
            assert referral.referred_user_id == "new-user"
            assert referral.referred_bonus == 100
            assert referral.referrer_bonus == 50
            assert referral.status == ReferralStatus.PENDING
            assert referral.ip_address == FINGERPRINT.ip_address
            assert referral.device_id == FINGERPRINT.device_id
            assert {signal.kind for signal in referral.signals} == {SignalKind.EMAIL, SignalKind.IP, SignalKind.DEVICE}

            ledger = session.query(WalletTransaction).filter_by(user_id="new-user").one()
            assert ledger.amount == 100
            assert ledger.balance_after == 100
            assert ledger.reference_id == referral.id

            notification = session.query(Notification).filter_by(user_id=referrer.id).one()
            assert notification.title == "New Referral Signup!"
            assert "Meera Nair" in notification.message

    def test_duplicate_email_withholds_bonus(self, database, processor, configure_program, referrer):
        """A second signup with the same email gets an account but no bonus"""
        configure_program(referrer_bonus=50, referred_user_bonus=100)
        processor.settle("first-user", PROFILE, "REFER1", FINGERPRINT)

        user = processor.settle(
            "second-user",
            SignupProfile(full_name="Meera N", email="meera@example.com"),
            "REFER1",
            Fingerprint(ip_address="81.2.69.200", device_id="other1"),
        )

        assert user.wallet_balance == 0
        assert user.referred_by_id is None
        assert count(database, Referral) == 1
        assert count(database, Referral, referred_user_id="second-user") == 0
        assert count(database, Notification, user_id=referrer.id) == 1

    @pytest.mark.parametrize("fingerprint", [
        Fingerprint(ip_address="81.2.69.160", device_id="fresh1"),
        Fingerprint(ip_address="81.2.69.201", device_id="k3x9q1"),
    ])
    def test_duplicate_network_or_device_withholds_bonus(
        self, database, processor, configure_program, referrer, fingerprint
    ):
        configure_program()
        processor.settle("first-user", PROFILE, "REFER1", FINGERPRINT)

        user = processor.settle("second-user", SignupProfile(full_name="Someone Else", email="else@example.com"), "REFER1", fingerprint)

        assert user.wallet_balance == 0
        assert count(database, Referral) == 1

    def test_no_code_is_plain_signup(self, database, processor, configure_program, referrer):
        configure_program()

        user = processor.settle("new-user", PROFILE, None, FINGERPRINT)

        assert user.wallet_balance == 0
        assert user.referred_by_id is None
        assert user.referral_code
        assert count(database, Referral) == 0
        assert count(database, WalletTransaction) == 0

    def test_unknown_code_is_plain_signup(self, database, processor, configure_program, referrer):
        configure_program()

        user = processor.settle("new-user", PROFILE, "NOPE99", FINGERPRINT)

        assert user.wallet_balance == 0
        assert user.referred_by_id is None
        assert count(database, Referral) == 0
        assert count(database, Notification) == 0

    def test_program_disabled_ignores_code(self, database, processor, configure_program, referrer):
        configure_program(is_referral_system_enabled=False)

        user = processor.settle("new-user", PROFILE, "REFER1", FINGERPRINT)

        assert user.wallet_balance == 0
        assert user.referred_by_id is None
        assert count(database, Referral) == 0

    def test_missing_settings_means_disabled(self, database, processor, referrer):
        user = processor.settle("new-user", PROFILE, "REFER1", FINGERPRINT)

        assert user.wallet_balance == 0
        assert count(database, Referral) == 0

    def test_own_code_creates_no_referral(self, database, processor, configure_program, referrer):
        """An account settling with its own code cannot refer itself"""
        configure_program()

        user = processor.settle(referrer.id, PROFILE, "REFER1", FINGERPRINT)

        assert user.referral_code == "REFER1"
        assert user.wallet_balance == 0
        assert count(database, Referral) == 0

    def test_zero_referred_bonus_still_records_referral(self, database, processor, configure_program, referrer):
        """The referrer can still earn when the new user's bonus is zero"""
        configure_program(referred_user_bonus=0.0, referrer_bonus=75.0)

        user = processor.settle("new-user", PROFILE, "REFER1", FINGERPRINT)

        assert user.wallet_balance == 0
        assert user.referred_by_id == referrer.id
        assert count(database, Referral, referrer_bonus=75.0) == 1
        assert count(database, WalletTransaction) == 0

    def test_no_signals_still_grants_bonus(self, database, processor, configure_program, referrer):
        """Incomplete telemetry never blocks a legitimate referral"""
        configure_program()

        user = processor.settle("new-user", SignupProfile(full_name="Phone Only"), "REFER1", None)

        assert user.wallet_balance == 50
        with database.session() as session:
            referral = session.query(Referral).one()
            assert referral.referred_user_email == "N/A"
            assert referral.signals == []

    def test_bonus_amounts_fixed_at_creation(self, database, processor, configure_program, referrer):
        configure_program(referrer_bonus=50, referred_user_bonus=100)
        processor.settle("new-user", PROFILE, "REFER1", FINGERPRINT)

        configure_program(referrer_bonus=500, referred_user_bonus=1000)

        with database.session() as session:
            referral = session.query(Referral).one()
            assert referral.referrer_bonus == 50
            assert referral.referred_bonus == 100

    def test_code_length_from_settings(self, processor, configure_program):
        configure_program(referral_code_length=9)

        user = processor.settle("new-user", PROFILE)

        assert len(user.referral_code) == 9

    def test_mobile_number_normalized(self, processor):
        user = processor.settle("new-user", PROFILE)
        assert user.mobile_number == "+919876543210"


class TestSettlementIdempotency:
    """Repeated Settle calls for one account"""

    def test_second_call_returns_existing_user(self, database, processor, configure_program, referrer):
        configure_program()
        first = processor.settle("new-user", PROFILE, "REFER1", FINGERPRINT)

        second = processor.settle("new-user", PROFILE, "REFER1", Fingerprint(ip_address="81.2.69.5"))

        assert second.id == first.id
        assert second.referral_code == first.referral_code
        assert second.wallet_balance == 50
        assert count(database, Referral) == 1
        assert count(database, WalletTransaction) == 1
        assert count(database, Notification) == 1

    def test_retry_after_plain_signup_does_not_add_bonus(self, database, processor, configure_program, referrer):
        configure_program()
        processor.settle("new-user", PROFILE, None, FINGERPRINT)

        user = processor.settle("new-user", PROFILE, "REFER1", FINGERPRINT)

        assert user.wallet_balance == 0
        assert count(database, Referral) == 0


class TestWriteOnceFields:
    """referral_code and referred_by_id are create-only"""

    def test_referral_code_cannot_change(self, database, processor):
        processor.settle("new-user", PROFILE)

        with pytest.raises(WriteOnceFieldError):
            with database.session() as session:
                session.get(UserAccount, "new-user").referral_code = "CHANGED"

    def test_referred_by_cannot_change(self, database, processor, configure_program, referrer, make_user):
        configure_program()
        processor.settle("new-user", PROFILE, "REFER1", FINGERPRINT)
        make_user("someone-else", "OTHER1")

        with pytest.raises(WriteOnceFieldError):
            with database.session() as session:
                session.get(UserAccount, "new-user").referred_by_id = "someone-else"

    def test_referred_by_cannot_be_added_later(self, database, processor, configure_program, referrer):
        """A plain signup never gains a referrer afterwards"""
        configure_program()
        processor.settle("new-user", PROFILE)

        with pytest.raises(WriteOnceFieldError):
            with database.session() as session:
                session.get(UserAccount, "new-user").referred_by_id = referrer.id

        assert load_user(database, "new-user").referred_by_id is None

    def test_same_value_is_allowed(self, database, processor):
        user = processor.settle("new-user", PROFILE)

        with database.session() as session:
            session.get(UserAccount, "new-user").referral_code = user.referral_code

        assert load_user(database, "new-user").referral_code == user.referral_code


class TestSettlementConcurrency:
    """Conflicts, retries and store failures"""

    def test_lost_race_on_same_identity_gets_no_bonus(
        self, database, processor, configure_program, referrer, make_user, monkeypatch
    ):
        """A competing signup commits between our dedup read and our write"""
        configure_program()
        make_user("competitor", "COMPT1", display_name="Meera Twin")
        calls = []

        def guard_then_competitor_commits(session, email, ip_address, device_id):
            result = find_prior_referral(session, email, ip_address, device_id)
            calls.append(result)
            if len(calls) == 1:
                with database.session() as other:
                    referral = Referral(
                        referrer_id=referrer.id,
                        referred_user_id="competitor",
                        referred_user_email=email,
                        status=ReferralStatus.PENDING,
                        referrer_bonus=100,
                        referred_bonus=50,
                    )
                    other.add(referral)
                    other.add(ReferralSignal(referral=referral, kind=SignalKind.EMAIL, value=email))
            return result

        monkeypatch.setattr(settlement_module, "find_prior_referral", guard_then_competitor_commits)

        user = processor.settle("new-user", PROFILE, "REFER1", FINGERPRINT)

        assert len(calls) == 2
        assert calls[0] is None
        assert calls[1] is not None
        assert user.wallet_balance == 0
        assert user.referred_by_id is None
        assert count(database, Referral) == 1
        assert count(database, Referral, referred_user_id="new-user") == 0
        assert count(database, WalletTransaction) == 0

    def test_same_code_different_people_both_earn(self, database, processor, configure_program, referrer):
        """Codes are not single-use"""
        configure_program()

        first = processor.settle("user-a", SignupProfile(full_name="A", email="a@example.com"), "REFER1",
                                 Fingerprint(ip_address="81.2.69.1", device_id="dev001"))
        second = processor.settle("user-b", SignupProfile(full_name="B", email="b@example.com"), "REFER1",
                                  Fingerprint(ip_address="81.2.69.2", device_id="dev002"))

        assert first.wallet_balance == 50
        assert second.wallet_balance == 50
        assert count(database, Referral, referrer_id=referrer.id) == 2

    def test_code_collision_regenerates(self, database, processor, referrer, monkeypatch):
        codes = iter(["REFER1", "FRESH2"])
        monkeypatch.setattr(settlement_module, "generate_code", lambda length: next(codes))

        user = processor.settle("new-user", PROFILE)

        assert user.referral_code == "FRESH2"
        assert count(database, UserAccount) == 2

    def test_persistent_conflict_is_transient_failure(self, database, processor, monkeypatch):
        def locked(session):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(settlement_module, "load_referral_settings", locked)

        with pytest.raises(SettlementConflictError) as exc_info:
            processor.settle("new-user", PROFILE)

        assert exc_info.value.attempts == 3
        assert count(database, UserAccount) == 0

    def test_store_unavailable_propagates(self, database, processor, monkeypatch):
        calls = []

        def broken(session):
            calls.append(session)
            raise OperationalError("SELECT", {}, Exception("unable to open database file"))

        monkeypatch.setattr(settlement_module, "load_referral_settings", broken)

        with pytest.raises(StoreUnavailableError):
            processor.settle("new-user", PROFILE)

        assert len(calls) == 1
        assert count(database, UserAccount) == 0

    def test_failed_settlement_can_be_retried(self, database, processor, configure_program, referrer, monkeypatch):
        """Nothing from the failed attempt is visible; the retry settles normally"""
        configure_program()

        def broken(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        with monkeypatch.context() as patch:
            patch.setattr(settlement_module, "add_notification", broken)
            with pytest.raises(StoreUnavailableError):
                processor.settle("new-user", PROFILE, "REFER1", FINGERPRINT)

        assert count(database, UserAccount, id="new-user") == 0
        assert count(database, Referral) == 0
        assert count(database, WalletTransaction) == 0

        user = processor.settle("new-user", PROFILE, "REFER1", FINGERPRINT)
        assert user.wallet_balance == 50
        assert count(database, Referral) == 1


class TestParallelSettlement:
    """Settlement called from many threads at once"""

    def test_same_identity_grants_at_most_one_bonus(self, database, wallet, configure_program, referrer):
        configure_program()
        processor = SettlementProcessor(database, wallet=wallet, max_attempts=10, wait=wait_none())
        signups = 8
        barrier = threading.Barrier(signups)

        def settle(index):
            barrier.wait()
            return processor.settle(f"twin-{index}", PROFILE, "REFER1", FINGERPRINT)

        with ThreadPoolExecutor(max_workers=signups) as executor:
            futures = [executor.submit(settle, i) for i in range(signups)]
            users = [future.result() for future in futures]

        assert len({user.id for user in users}) == signups
        assert count(database, UserAccount) == signups + 1
        assert count(database, Referral) == 1
        assert count(database, WalletTransaction) == 1
        with database.session() as session:
            bonused = session.query(UserAccount).filter(UserAccount.wallet_balance > 0).all()
            assert len(bonused) == 1
            assert bonused[0].referred_by_id == referrer.id

"""Atomic signup settlement.

Creates the user profile and, when a referral qualifies, the referral
record, the new user's wallet credit and the referrer's notification in
one transaction. Either all of it commits or none of it does.
"""

from datetime import datetime
from functools import partial

from sqlalchemy.orm import Session

from homeserve.auth.models import SignupProfile, UserAccount
from homeserve.auth.phone import normalize_mobile_number
from homeserve.logging_config import get_logger
from homeserve.notifications.models import NotificationType
from homeserve.notifications.service import add_notification
from homeserve.referral.codes import generate_code, normalize_code
from homeserve.referral.config import load_referral_settings
from homeserve.referral.exceptions import SettlementConflictError
from homeserve.referral.fingerprint import Fingerprint
from homeserve.referral.guard import find_prior_referral, normalize_email
from homeserve.referral.models import NO_EMAIL, Referral, ReferralSignal, ReferralStatus, SignalKind
from homeserve.referral.resolver import resolve_referrer
from homeserve.settings import settings
from homeserve.storage.db import Database, db
from homeserve.storage.transactions import TransactionConflictError, run_transaction
from homeserve.wallet.ledger import WalletService

logger = get_logger(__name__)


class SettlementProcessor:
    """Runs the signup settlement transaction.

    Every attempt re-reads the settings, the referrer and the prior
    referrals, so a retried attempt decides on fresh data. The unique
    ``referral_signals`` index turns a lost race between two signups of
    the same person into a write conflict; the retry then sees the
    winner's referral and withholds the bonus.
    """

    def __init__(
        self,
        database: Database | None = None,
        wallet: WalletService | None = None,
        max_attempts: int | None = None,
        isolation_level: str | None = None,
        wait=None,
    ):
        self.db = database or db
        self.wallet = wallet or WalletService(self.db)
        self.max_attempts = max_attempts or settings.settlement_max_attempts
        self.isolation_level = isolation_level or settings.settlement_isolation_level
        self.wait = wait
        self.logger = get_logger(__name__)

    def settle(
        self,
        new_user_id: str,
        profile: SignupProfile,
        claimed_code: str | None = None,
        fingerprint: Fingerprint | None = None,
    ) -> UserAccount:
        """Create the user for a freshly authenticated account.

        Calling it again for an account that already has a profile returns
        that profile untouched, so a failed signup completion can be retried.

        Args:
            new_user_id: Account id issued by the identity provider
            profile: Name, email and mobile number
            claimed_code: Referral code captured during the signup journey
            fingerprint: IP and device signals of the signup

        Returns:
            The user profile

        Raises:
            SettlementConflictError: Conflicts persisted past the retry bound
            StoreUnavailableError: The database could not be used
        """
        work = partial(
            self._apply,
            new_user_id=new_user_id,
            profile=profile,
            claimed_code=claimed_code,
            fingerprint=fingerprint or Fingerprint(),
        )
        try:
            return run_transaction(
                self.db,
                work,
                operation="settlement",
                max_attempts=self.max_attempts,
                wait=self.wait,
                isolation_level=self.isolation_level,
                user_id=new_user_id,
            )
        except TransactionConflictError as e:
            raise SettlementConflictError(new_user_id, e.attempts) from e

    def _apply(
        self,
        session: Session,
        new_user_id: str,
        profile: SignupProfile,
        claimed_code: str | None,
        fingerprint: Fingerprint,
    ) -> UserAccount:
        existing = session.get(UserAccount, new_user_id)
        if existing:
            self.logger.info("settlement_already_applied", user_id=new_user_id)
            return existing

        referral_settings = load_referral_settings(session)
        email = normalize_email(profile.email)
        code = normalize_code(claimed_code)

        referrer_id = None
        prior = None
        if code and referral_settings.is_referral_system_enabled:
            referrer_id = resolve_referrer(session, code, new_user_id, referral_settings)
            if referrer_id:
                prior = find_prior_referral(
                    session,
                    email=email,
                    ip_address=fingerprint.ip_address,
                    device_id=fingerprint.device_id,
                )

        grant_bonus = referrer_id is not None and prior is None
        referred_bonus = referral_settings.referred_user_bonus if grant_bonus else 0.0

        now = datetime.utcnow()
        user = UserAccount(
            id=new_user_id,
            email=email,
            display_name=profile.full_name,
            mobile_number=normalize_mobile_number(profile.mobile_number),
            referral_code=generate_code(referral_settings.referral_code_length),
            referred_by_id=referrer_id if grant_bonus else None,
            wallet_balance=0.0,
            is_active=True,
            created_at=now,
            last_login_at=now,
        )
        session.add(user)
        session.flush()

        if not grant_bonus:
            if referrer_id:
                self.logger.info("referral_bonus_withheld", user_id=new_user_id, referrer_id=referrer_id)
            else:
                self.logger.info("signup_settled", user_id=new_user_id, had_code=code is not None)
            return user

        referral = Referral(
            referrer_id=referrer_id,
            referred_user_id=new_user_id,
            referred_user_email=email or NO_EMAIL,
            ip_address=fingerprint.ip_address,
            device_id=fingerprint.device_id,
            status=ReferralStatus.PENDING,
            referrer_bonus=referral_settings.referrer_bonus,
            referred_bonus=referred_bonus,
            created_at=now,
        )
        session.add(referral)
        for kind, value in (
            (SignalKind.EMAIL, email),
            (SignalKind.IP, fingerprint.ip_address),
            (SignalKind.DEVICE, fingerprint.device_id),
        ):
            if value:
                session.add(ReferralSignal(referral=referral, kind=kind, value=value))
        session.flush()

        if referred_bonus > 0:
            self.wallet.credit(
                user_id=new_user_id,
                amount=referred_bonus,
                operation="referral_signup_bonus",
                reference_id=referral.id,
                description="Welcome bonus for signing up with a referral code",
                metadata={"referrer_id": referrer_id},
                session=session,
            )

        add_notification(
            session,
            user_id=referrer_id,
            title="New Referral Signup!",
            message=(
                f"{profile.full_name} has signed up using your code. "
                "You'll get your bonus when they complete their first booking."
            ),
            type=NotificationType.SUCCESS,
            href="/referral",
        )
        session.flush()

        self.logger.info(
            "referral_settled",
            user_id=new_user_id,
            referrer_id=referrer_id,
            referral_id=referral.id,
            referred_bonus=referred_bonus,
        )
        return user

"""Referrer bonus on the referred user's first completed booking."""

from datetime import datetime
from functools import partial

from sqlalchemy import func
from sqlalchemy.orm import Session

from homeserve.auth.models import UserAccount
from homeserve.logging_config import get_logger
from homeserve.notifications.models import NotificationType
from homeserve.notifications.service import add_notification
from homeserve.referral.config import load_referral_settings
from homeserve.referral.exceptions import ReferralNotFoundError
from homeserve.referral.models import Referral, ReferralStatus
from homeserve.settings import settings
from homeserve.storage.db import Database, db
from homeserve.storage.transactions import run_transaction
from homeserve.wallet.ledger import WalletService

logger = get_logger(__name__)

# failure_reason values
MIN_BOOKING_NOT_MET = "min_booking_not_met"
MAX_EARNINGS_REACHED = "max_earnings_reached"


class ReferralCompletionService:
    """Settles the referrer's side of a referral.

    Called by the booking-completion workflow. Crediting the referrer and
    moving the referral out of ``pending`` happen in one transaction, and
    the status change is a compare-and-set on ``pending`` so a referral
    pays out at most once even when completions race.
    """

    def __init__(
        self,
        database: Database | None = None,
        wallet: WalletService | None = None,
        max_attempts: int | None = None,
        wait=None,
    ):
        self.db = database or db
        self.wallet = wallet or WalletService(self.db)
        self.max_attempts = max_attempts or settings.settlement_max_attempts
        self.wait = wait
        self.logger = get_logger(__name__)

    def mark_referral_completed(
        self,
        referral_id: str,
        booking_id: str | None = None,
        booking_amount: float | None = None,
    ) -> Referral:
        """Complete a pending referral and credit the referrer.

        Completed and failed referrals are returned unchanged. While the
        program is disabled the referral stays pending.

        Args:
            referral_id: Referral to complete
            booking_id: The qualifying booking
            booking_amount: Booking total, checked against the minimum

        Returns:
            The referral after the call

        Raises:
            ReferralNotFoundError: Unknown referral id
            TransactionConflictError: Conflicts persisted past the retry bound
            StoreUnavailableError: The database could not be used
        """
        work = partial(
            self._complete,
            referral_id=referral_id,
            booking_id=booking_id,
            booking_amount=booking_amount,
        )
        return run_transaction(
            self.db,
            work,
            operation="referral_completion",
            max_attempts=self.max_attempts,
            wait=self.wait,
            referral_id=referral_id,
        )

    def handle_booking_completed(
        self,
        referred_user_id: str,
        booking_id: str,
        booking_amount: float,
    ) -> Referral | None:
        """Entry point for the booking-completion workflow.

        Returns:
            The user's referral after processing, or None if they have no
            pending referral
        """
        with self.db.session() as session:
            referral = session.query(Referral).filter(
                Referral.referred_user_id == referred_user_id,
                Referral.status == ReferralStatus.PENDING,
            ).first()
            referral_id = referral.id if referral else None

        if referral_id is None:
            self.logger.debug("no_pending_referral", user_id=referred_user_id)
            return None

        return self.mark_referral_completed(referral_id, booking_id, booking_amount)

    def _set_status(
        self,
        session: Session,
        referral_id: str,
        failure_reason: str | None,
        booking_id: str | None,
        expected: ReferralStatus | None = None,
    ) -> bool:
        query = session.query(Referral).filter(Referral.id == referral_id)
        if expected is not None:
            query = query.filter(Referral.status == expected)
        updated = query.update(
            {
                Referral.status: ReferralStatus.FAILED if failure_reason else ReferralStatus.COMPLETED,
                Referral.booking_id: booking_id,
                Referral.failure_reason: failure_reason,
                Referral.updated_at: datetime.utcnow(),
            },
            synchronize_session=False,
        )
        return updated > 0

    def _complete(
        self,
        session: Session,
        referral_id: str,
        booking_id: str | None,
        booking_amount: float | None,
    ) -> Referral:
        referral = session.get(Referral, referral_id)
        if not referral:
            raise ReferralNotFoundError(referral_id)

        if referral.status != ReferralStatus.PENDING:
            self.logger.info("referral_already_final", referral_id=referral_id, status=referral.status.value)
            return referral

        referral_settings = load_referral_settings(session)
        if not referral_settings.is_referral_system_enabled:
            self.logger.info("referral_completion_skipped_disabled", referral_id=referral_id)
            return referral

        failure_reason = None
        if booking_amount is not None and booking_amount < referral_settings.min_booking_value_for_bonus:
            failure_reason = MIN_BOOKING_NOT_MET

        # Compare-and-set: only one caller moves the referral out of pending
        if not self._set_status(session, referral_id, failure_reason, booking_id, expected=ReferralStatus.PENDING):
            session.refresh(referral)
            self.logger.info("referral_completed_concurrently", referral_id=referral_id)
            return referral

        if not failure_reason:
            # Completions for one referrer run one at a time from here on
            session.query(UserAccount).filter(
                UserAccount.id == referral.referrer_id
            ).with_for_update().populate_existing().first()

            if referral_settings.max_earnings_per_referrer is not None:
                earned = session.query(
                    func.coalesce(func.sum(Referral.referrer_bonus), 0.0)
                ).filter(
                    Referral.referrer_id == referral.referrer_id,
                    Referral.status == ReferralStatus.COMPLETED,
                    Referral.id != referral_id,
                ).scalar()
                if earned + referral.referrer_bonus > referral_settings.max_earnings_per_referrer:
                    failure_reason = MAX_EARNINGS_REACHED
                    self._set_status(session, referral_id, failure_reason, booking_id)

        if failure_reason:
            session.refresh(referral)
            self.logger.info("referral_failed", referral_id=referral_id, reason=failure_reason)
            return referral

        if referral.referrer_bonus > 0:
            self.wallet.credit(
                user_id=referral.referrer_id,
                amount=referral.referrer_bonus,
                operation="referral_referrer_bonus",
                reference_id=referral.id,
                description="Referral bonus for a referred user's first booking",
                metadata={"referred_user_id": referral.referred_user_id, "booking_id": booking_id},
                session=session,
            )

        referred_name = referral.referred_user.display_name if referral.referred_user else None
        add_notification(
            session,
            user_id=referral.referrer_id,
            title="Referral Bonus Credited!",
            message=(
                f"Your referral bonus of {referral.referrer_bonus:g} has been credited "
                f"for {referred_name or 'your friend'}'s first booking."
            ),
            type=NotificationType.SUCCESS,
            href="/referral",
        )
        session.flush()
        session.refresh(referral)

        self.logger.info(
            "referral_completed",
            referral_id=referral_id,
            referrer_id=referral.referrer_id,
            referrer_bonus=referral.referrer_bonus,
            booking_id=booking_id,
        )
        return referral

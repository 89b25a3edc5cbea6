"""Referral read-side service: links, code validation, stats and admin views."""

from dataclasses import dataclass
from typing import Any

from sqlalchemy import func

from homeserve.auth.models import UserAccount
from homeserve.referral.codes import build_referral_link, normalize_code
from homeserve.referral.config import (
    ReferralSettings,
    ReferralSettingsUpdate,
    load_referral_settings,
    save_referral_settings,
)
from homeserve.referral.exceptions import UserNotFoundError
from homeserve.referral.models import Referral, ReferralStatus
from homeserve.storage.db import Database, db


@dataclass
class ReferralCodeInfo:
    """What the signup form shows for a valid code."""
    code: str
    referrer_first_name: str | None
    referred_user_bonus: float


class ReferralService:
    """Service for referral links, statistics and program settings."""

    def __init__(self, database: Database | None = None):
        """Initialize referral service."""
        self.db = database or db

    def get_referral_link(self, user_id: str) -> str:
        """Shareable signup link carrying the user's referral code.

        Raises:
            UserNotFoundError: If the user has no profile
        """
        with self.db.session() as session:
            user = session.get(UserAccount, user_id)
            if not user:
                raise UserNotFoundError(user_id)
            return build_referral_link(user.referral_code)

    def validate_code(self, code: str | None) -> ReferralCodeInfo | None:
        """Check a code typed into the signup form.

        Returns:
            Code info if the program is enabled and the code exists, None otherwise
        """
        code = normalize_code(code)
        if not code:
            return None

        with self.db.session() as session:
            referral_settings = load_referral_settings(session)
            if not referral_settings.is_referral_system_enabled:
                return None

            referrer = session.query(UserAccount).filter(
                UserAccount.referral_code == code
            ).first()
            if not referrer:
                return None

            return ReferralCodeInfo(
                code=code,
                referrer_first_name=referrer.first_name,
                referred_user_bonus=referral_settings.referred_user_bonus,
            )

    def get_referral_stats(self, user_id: str) -> dict[str, Any]:
        """Referral statistics for the referrer's wallet page.

        Args:
            user_id: Referrer's user id

        Returns:
            Dict with code, link, counts per status and earnings

        Raises:
            UserNotFoundError: If the user has no profile
        """
        with self.db.session() as session:
            user = session.get(UserAccount, user_id)
            if not user:
                raise UserNotFoundError(user_id)

            counts = dict(
                session.query(Referral.status, func.count(Referral.id))
                .filter(Referral.referrer_id == user_id)
                .group_by(Referral.status)
                .all()
            )

            earned = session.query(
                func.coalesce(func.sum(Referral.referrer_bonus), 0.0)
            ).filter(
                Referral.referrer_id == user_id,
                Referral.status == ReferralStatus.COMPLETED,
            ).scalar()

            return {
                "code": user.referral_code,
                "link": build_referral_link(user.referral_code),
                "total_referred": sum(counts.values()),
                "completed": counts.get(ReferralStatus.COMPLETED, 0),
                "pending": counts.get(ReferralStatus.PENDING, 0),
                "failed": counts.get(ReferralStatus.FAILED, 0),
                "total_earned": float(earned),
                "wallet_balance": user.wallet_balance,
            }

    def list_referrals(
        self,
        status: ReferralStatus | None = None,
        referrer_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Referral signups for the admin console, newest first.

        Each entry carries the referred user's name next to the record.
        """
        with self.db.session() as session:
            query = session.query(Referral, UserAccount.display_name).outerjoin(
                UserAccount, UserAccount.id == Referral.referred_user_id
            )
            if status is not None:
                query = query.filter(Referral.status == status)
            if referrer_id is not None:
                query = query.filter(Referral.referrer_id == referrer_id)

            rows = query.order_by(Referral.created_at.desc()).offset(offset).limit(limit).all()

            return [
                {
                    "id": referral.id,
                    "referrer_id": referral.referrer_id,
                    "referred_user_id": referral.referred_user_id,
                    "referred_user_name": name,
                    "referred_user_email": referral.referred_user_email,
                    "status": referral.status.value,
                    "referrer_bonus": referral.referrer_bonus,
                    "referred_bonus": referral.referred_bonus,
                    "booking_id": referral.booking_id,
                    "failure_reason": referral.failure_reason,
                    "ip_address": referral.ip_address,
                    "device_id": referral.device_id,
                    "created_at": referral.created_at,
                }
                for referral, name in rows
            ]

    def get_settings(self) -> ReferralSettings:
        """Current referral program settings."""
        with self.db.session() as session:
            return load_referral_settings(session)

    def update_settings(self, update: ReferralSettingsUpdate) -> ReferralSettings:
        """Apply an admin change to the referral program settings."""
        with self.db.session() as session:
            return save_referral_settings(session, update)

"""Referral API v1 endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, EmailStr, Field, ValidationError

from homeserve.api.dependencies import get_database, get_ip_lookup
from homeserve.api.rate_limit import limiter
from homeserve.auth.identity import IdentityClaims
from homeserve.auth.middleware import get_identity, require_admin, require_auth
from homeserve.auth.models import SignupProfile, UserAccount
from homeserve.logging_config import get_logger
from homeserve.referral.codes import normalize_code
from homeserve.referral.completion import ReferralCompletionService
from homeserve.referral.config import ReferralSettings, ReferralSettingsUpdate
from homeserve.referral.exceptions import (
    ReferralNotFoundError,
    SettlementConflictError,
    StoreUnavailableError,
    TransactionConflictError,
)
from homeserve.referral.fingerprint import DeviceSignals, IpLookupClient, SignupFingerprintCollector
from homeserve.referral.models import ReferralStatus
from homeserve.referral.service import ReferralService
from homeserve.referral.settlement import SettlementProcessor
from homeserve.settings import settings
from homeserve.storage.db import Database

logger = get_logger(__name__)

router = APIRouter(prefix="/referral", tags=["referral"])


# ==================== MODELS ====================


class ReferralLinkResponse(BaseModel):
    """User's referral code and shareable link."""
    code: str
    link: str


class ReferralStatsResponse(BaseModel):
    """Referral statistics for the wallet page."""
    code: str
    link: str
    total_referred: int
    completed: int
    pending: int
    failed: int
    total_earned: float
    wallet_balance: float


class ValidateCodeRequest(BaseModel):
    """Request to validate a referral code."""
    code: str = Field(..., max_length=32)


class ValidateCodeResponse(BaseModel):
    """Response from code validation."""
    valid: bool
    referrer_name: str | None = None
    bonus: float = 0.0


class SettleRequest(BaseModel):
    """Profile completion after the identity provider created the account."""
    full_name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr | None = None
    mobile_number: str | None = Field(default=None, max_length=32)
    referral_code: str | None = Field(default=None, max_length=32)
    device: DeviceSignals | None = None


class SettledUserResponse(BaseModel):
    """The created profile.

    Deliberately omits who referred the user and whether a referral
    qualified.
    """
    id: str
    email: str | None
    display_name: str | None
    mobile_number: str | None
    referral_code: str
    wallet_balance: float
    created_at: datetime

    class Config:
        from_attributes = True


class CompleteReferralRequest(BaseModel):
    """Booking that completes a referral."""
    booking_id: str | None = Field(default=None, max_length=64)
    booking_amount: float | None = Field(default=None, ge=0)


class ReferralResponse(BaseModel):
    """Referral record."""
    id: str
    referrer_id: str
    referred_user_id: str
    status: ReferralStatus
    referrer_bonus: float
    referred_bonus: float
    booking_id: str | None = None
    failure_reason: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class ReferralSignupResponse(ReferralResponse):
    """Referral record with the referred user's details (admin)."""
    referred_user_name: str | None = None
    referred_user_email: str
    ip_address: str | None = None
    device_id: str | None = None


# ==================== ENDPOINTS ====================


@router.get("/capture/{code}")
@limiter.limit("60/minute")
async def capture_claimed_code(request: Request, response: Response, code: str):
    """Remember a referral code from a shared link until signup completes.

    The code is stored as given (case-normalized); it is only resolved at
    settlement, so this endpoint says nothing about its validity.
    """
    normalized = normalize_code(code)
    if not normalized or len(normalized) > 32:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid referral code",
        )

    response.set_cookie(
        key=settings.referral_cookie_name,
        value=normalized,
        max_age=settings.referral_cookie_max_age_days * 86400,
        httponly=True,
        samesite="lax",
        secure=settings.env == "production",
    )
    return {"captured": True}


@router.post("/validate", response_model=ValidateCodeResponse)
@limiter.limit("30/minute")
async def validate_referral_code(
    request: Request,
    body: ValidateCodeRequest,
    database: Database = Depends(get_database),
):
    """Validate a referral code typed into the signup form."""
    info = ReferralService(database).validate_code(body.code)

    if not info:
        return ValidateCodeResponse(valid=False)

    return ValidateCodeResponse(
        valid=True,
        referrer_name=info.referrer_first_name,
        bonus=info.referred_user_bonus,
    )


@router.post("/settle", response_model=SettledUserResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def settle_signup(
    request: Request,
    response: Response,
    body: SettleRequest,
    identity: IdentityClaims = Depends(get_identity),
    database: Database = Depends(get_database),
    ip_lookup: IpLookupClient | None = Depends(get_ip_lookup),
):
    """Complete signup: create the profile and settle any referral.

    Called once the identity provider has confirmed the account. Safe to
    call again after a failure; an existing profile is returned as is.
    """
    try:
        profile = SignupProfile(
            full_name=body.full_name,
            email=body.email or identity.email,
            mobile_number=body.mobile_number or identity.phone_number,
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()],
        )

    claimed_code = body.referral_code or request.cookies.get(settings.referral_cookie_name)

    collector = SignupFingerprintCollector(
        client_host=request.client.host if request.client else None,
        forwarded_for=request.headers.get("x-forwarded-for"),
        device_signals=body.device,
        ip_lookup=ip_lookup,
    )
    fingerprint = await collector.collect()

    processor = SettlementProcessor(database)
    try:
        user = await run_in_threadpool(
            processor.settle,
            identity.uid,
            profile,
            claimed_code,
            fingerprint,
        )
    except SettlementConflictError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Signup could not be completed right now. Please try again.",
            headers={"Retry-After": "1"},
        )
    except StoreUnavailableError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service temporarily unavailable",
        )

    response.delete_cookie(settings.referral_cookie_name)
    logger.info("signup_completed", user_id=user.id)

    return SettledUserResponse.model_validate(user)


@router.get("/link", response_model=ReferralLinkResponse)
async def get_referral_link(
    user: UserAccount = Depends(require_auth),
    database: Database = Depends(get_database),
):
    """Get current user's shareable referral link."""
    link = ReferralService(database).get_referral_link(user.id)
    return ReferralLinkResponse(code=user.referral_code, link=link)


@router.get("/stats", response_model=ReferralStatsResponse)
async def get_referral_stats(
    user: UserAccount = Depends(require_auth),
    database: Database = Depends(get_database),
):
    """Get referral statistics for current user."""
    stats = ReferralService(database).get_referral_stats(user.id)
    return ReferralStatsResponse(**stats)


# ==================== ADMIN ====================


@router.get("/settings", response_model=ReferralSettings)
async def get_referral_settings(
    admin: UserAccount = Depends(require_admin),
    database: Database = Depends(get_database),
):
    """Get referral program settings."""
    return ReferralService(database).get_settings()


@router.put("/settings", response_model=ReferralSettings)
async def update_referral_settings(
    body: ReferralSettingsUpdate,
    admin: UserAccount = Depends(require_admin),
    database: Database = Depends(get_database),
):
    """Update referral program settings.

    Bonus amounts apply to referrals created afterwards; existing
    referrals keep the amounts fixed when they were created.
    """
    updated = ReferralService(database).update_settings(body)
    logger.info("referral_settings_changed_by_admin", admin_id=admin.id)
    return updated


@router.get("/signups", response_model=list[ReferralSignupResponse])
async def list_referral_signups(
    status_filter: ReferralStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: UserAccount = Depends(require_admin),
    database: Database = Depends(get_database),
):
    """List referral signups, newest first."""
    return ReferralService(database).list_referrals(
        status=status_filter,
        limit=limit,
        offset=offset,
    )


@router.post("/{referral_id}/complete", response_model=ReferralResponse)
async def complete_referral(
    referral_id: str,
    body: CompleteReferralRequest,
    admin: UserAccount = Depends(require_admin),
    database: Database = Depends(get_database),
):
    """Complete a referral for a booking (booking-completion workflow)."""
    service = ReferralCompletionService(database)
    try:
        referral = await run_in_threadpool(
            service.mark_referral_completed,
            referral_id,
            body.booking_id,
            body.booking_amount,
        )
    except ReferralNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Referral not found",
        )
    except (TransactionConflictError, StoreUnavailableError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service temporarily unavailable",
            headers={"Retry-After": "1"},
        )

    logger.info("referral_completed_by_admin", referral_id=referral_id, admin_id=admin.id)
    return ReferralResponse.model_validate(referral)

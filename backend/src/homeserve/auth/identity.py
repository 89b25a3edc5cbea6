"""Identity provider token verification.

Credentials, OTP and social login live with the identity provider. This
backend only verifies the signed ID token it issues and reads the
account id (``sub``) and contact claims from it.
"""

from jose import JWTError, jwt
from pydantic import BaseModel

from homeserve.logging_config import get_logger
from homeserve.settings import settings

logger = get_logger(__name__)


class IdentityClaims(BaseModel):
    """Verified claims of an identity provider token."""
    uid: str
    email: str | None = None
    phone_number: str | None = None
    name: str | None = None


class InvalidIdentityTokenError(Exception):
    """Raised when an identity token cannot be verified."""


def decode_identity_token(token: str) -> IdentityClaims:
    """Verify an identity token and extract its claims.

    Args:
        token: Encoded JWT

    Returns:
        Verified identity claims

    Raises:
        InvalidIdentityTokenError: If the signature, audience or expiry is invalid
    """
    options = {"verify_aud": settings.identity_jwt_audience is not None}
    try:
        payload = jwt.decode(
            token,
            settings.identity_jwt_secret,
            algorithms=[settings.identity_jwt_algorithm],
            audience=settings.identity_jwt_audience,
            options=options,
        )
    except JWTError as e:
        logger.warning("identity_token_invalid", error=str(e))
        raise InvalidIdentityTokenError(str(e)) from e

    uid = payload.get("sub") or payload.get("uid")
    if not uid:
        raise InvalidIdentityTokenError("Token has no subject")

    return IdentityClaims(
        uid=str(uid),
        email=payload.get("email"),
        phone_number=payload.get("phone_number"),
        name=payload.get("name"),
    )


def create_identity_token(uid: str, **claims) -> str:
    """Sign a token the way the identity provider does.

    Used by the CLI and tests to act as a given account.
    """
    payload = {"sub": uid, **claims}
    if settings.identity_jwt_audience is not None:
        payload.setdefault("aud", settings.identity_jwt_audience)
    return jwt.encode(payload, settings.identity_jwt_secret, algorithm=settings.identity_jwt_algorithm)

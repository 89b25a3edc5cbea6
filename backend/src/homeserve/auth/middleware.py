"""Authentication dependencies for FastAPI."""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from homeserve.api.dependencies import get_database
from homeserve.auth.identity import IdentityClaims, InvalidIdentityTokenError, decode_identity_token
from homeserve.auth.models import UserAccount
from homeserve.logging_config import get_logger
from homeserve.storage.db import Database

logger = get_logger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


def get_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> IdentityClaims:
    """Verified identity of the caller.

    Only requires a valid identity provider token, not a settled profile,
    so it is usable by the signup completion endpoint.

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_identity_token(credentials.credentials)
    except InvalidIdentityTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_auth(
    request: Request,
    identity: IdentityClaims = Depends(get_identity),
    database: Database = Depends(get_database),
) -> UserAccount:
    """Require a caller with a settled user profile.

    Returns:
        Authenticated user

    Raises:
        HTTPException: 401 if the account has no profile yet or is inactive
    """
    with database.session() as session:
        user = session.get(UserAccount, identity.uid)

    if not user or not user.is_active:
        logger.info("auth_profile_missing", uid=identity.uid)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Profile incomplete",
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.user = user
    return user


def require_admin(user: UserAccount = Depends(require_auth)) -> UserAccount:
    """Require admin privileges.

    Raises:
        HTTPException: 403 if not admin
    """
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user

"""
Bearer session tokens for the FastAPI API.

Tokens are HS256 JWTs carrying the user id and role. They are handed out
after the identity provider sign-in (see ``manage_users.py issue-token``)
and renewed through ``POST /auth/refresh``.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import jwt
import structlog
from fastapi import HTTPException, status
from fastapi.security import HTTPBearer

from api.config import config
from catalog.exceptions import NotFound
from catalog.users import UserService

logger = structlog.get_logger(__name__)

# Missing credentials are answered with 401 by ``authenticate``
security = HTTPBearer(auto_error=False)


def create_access_token(user_id: str, role: str) -> Tuple[str, datetime]:
    """
    Create a session token.

    Returns:
        The encoded token and its expiry time
    """
    expires_at = datetime.now(timezone.utc) + timedelta(minutes=config.access_token_expire_minutes)
    claims = {"sub": str(user_id), "role": role, "exp": expires_at, "type": "access"}
    return jwt.encode(claims, config.secret_key, algorithm=config.algorithm), expires_at


def verify_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Return the token claims, or None if the token is invalid or expired."""
    try:
        claims = jwt.decode(token, config.secret_key, algorithms=[config.algorithm])
    except jwt.InvalidTokenError as e:
        logger.info("Rejected session token", error=str(e))
        return None
    if claims.get("type") != "access" or not claims.get("sub"):
        return None
    return claims


def unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def authenticate(token: Optional[str], users: UserService) -> Dict[str, Any]:
    """
    Resolve a bearer token to the stored user.

    Raises:
        HTTPException: 401 if the token is missing, invalid, or its user is
            unknown or deactivated
    """
    if not token:
        raise unauthorized("Not authorized to access this route")

    claims = verify_access_token(token)
    if claims is None:
        raise unauthorized("Invalid or expired token")

    try:
        user = await users.get_user(claims["sub"])
    except NotFound:
        raise unauthorized("User no longer exists") from None

    if not user.get("is_active", True):
        logger.warning("Deactivated user attempted access", user_id=claims["sub"])
        raise unauthorized("Account is deactivated")
    return user

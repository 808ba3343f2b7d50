"""
Bearer-token caller identity.

Tokens are HS256 JWTs whose ``sub`` claim is the user id. Issuing and
rotating tokens belongs to the identity service; this module only signs
tokens for local tooling and validates incoming ones.
"""

from datetime import datetime, timedelta, timezone
import logging

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from typing_extensions import Annotated

from taskstats.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(
    user_id: str,
    settings: Settings | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed access token for ``user_id``."""
    settings = settings or get_settings()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_minutes)
    )
    payload = {"sub": user_id, "type": "access", "exp": expire}
    return jwt.encode(
        payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm
    )


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str, settings: Settings) -> str:
    """Validate ``token`` and return its user id, raising 401 on failure."""
    try:
        payload = jwt.decode(
            token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug("Rejected token: %s", e)
        raise _unauthorized("Invalid token")

    user_id = payload.get("sub")
    if not user_id or payload.get("type", "access") != "access":
        raise _unauthorized("Invalid token")
    return user_id


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> str:
    if credentials is None:
        raise _unauthorized("Not authenticated")
    return decode_access_token(credentials.credentials, settings)


CurrentUserId = Annotated[str, Depends(get_current_user_id)]

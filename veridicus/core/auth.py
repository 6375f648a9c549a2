"""Authentication dependencies for FastAPI routes."""

from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from veridicus.core.exceptions import AuthenticationError
from veridicus.core.jwt import JWTVerifier
from veridicus.schemas.auth import CurrentUser
from veridicus.utils.logging import get_logger

LOGGER = get_logger(__name__)

security = HTTPBearer(auto_error=False)


def get_jwt_verifier(request: Request) -> JWTVerifier:
    return request.app.state.container.jwt_verifier


async def authenticate_token(verifier: JWTVerifier, token: str) -> CurrentUser:
    """Verify a bearer token and map its claims to a ``CurrentUser``.

    Raises:
        AuthenticationError: If the token is invalid or expired
    """
    try:
        claims = await verifier.verify_token(token)
    except jwt.InvalidTokenError as e:
        raise AuthenticationError("Invalid authentication token", original_error=e) from e
    return CurrentUser.from_claims(claims)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """Get the current authenticated user.

    The JWT middleware normally verifies the token first and leaves the user
    on ``request.state``; otherwise the bearer token is verified here.

    Raises:
        AuthenticationError: If the token is missing, invalid, or expired
    """
    user = getattr(request.state, "user", None)
    if user is not None:
        return user

    if not credentials:
        LOGGER.warning("No authorization credentials provided")
        raise AuthenticationError("Authorization header missing")

    user = await authenticate_token(get_jwt_verifier(request), credentials.credentials)
    request.state.user = user
    LOGGER.debug(f"Authenticated user: {user.id}")
    return user

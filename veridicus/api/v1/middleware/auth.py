"""JWT authentication middleware.

Verifies the bearer token on every HTTP request outside the public paths and
attaches the resulting ``CurrentUser`` to ``request.state.user``. WebSocket
connections are not HTTP requests and authenticate in-band instead.
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from veridicus.core.auth import authenticate_token
from veridicus.core.config import settings
from veridicus.core.exceptions import AuthenticationError
from veridicus.utils.logging import get_logger

LOGGER = get_logger(__name__)

EXCLUDED_PATHS = {
    "/",
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    f"{settings.api_v1_prefix}/health",
}


def _unauthorized(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"error": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


class JWTAuthenticationMiddleware(BaseHTTPMiddleware):
    """Verifies the Bearer token and populates request.state.user."""

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            return await call_next(request)

        path = request.url.path.rstrip("/") or "/"
        if path in EXCLUDED_PATHS or path.startswith("/docs"):
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header:
            LOGGER.warning(f"Missing authentication for {request.url.path}")
            return _unauthorized("Missing authorization header")

        if not auth_header.startswith("Bearer "):
            LOGGER.warning(f"Invalid Authorization header format for {request.url.path}")
            return _unauthorized("Invalid authentication scheme. Use Bearer token.")

        token = auth_header[len("Bearer "):].strip()
        if not token:
            return _unauthorized("Invalid authorization header format")

        try:
            request.state.user = await authenticate_token(
                request.app.state.container.jwt_verifier, token
            )
        except AuthenticationError as e:
            LOGGER.warning(f"Invalid token for {request.url.path}: {e.original_error}")
            return _unauthorized("Unauthorized")

        LOGGER.debug(f"Authenticated user {request.state.user.id} via middleware")
        return await call_next(request)

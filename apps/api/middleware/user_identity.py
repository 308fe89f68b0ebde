"""
User identity middleware.

Authentication happens upstream (API gateway). The gateway forwards the
authenticated user as an `X-User-Id` header; requests under /api/ without a
valid UUID there are rejected with 401.
"""
from uuid import UUID

import structlog
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger()

USER_ID_HEADER = "X-User-Id"


def parse_user_id(raw: str) -> UUID:
    """Raises ValueError for a missing or malformed id."""
    if not raw:
        raise ValueError("missing user id")
    return UUID(raw)


class UserIdentityMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, header_name: str = USER_ID_HEADER, protected_prefix: str = "/api/"):
        super().__init__(app)
        self.header_name = header_name
        self.protected_prefix = protected_prefix

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self.protected_prefix):
            return await call_next(request)

        try:
            user_id = parse_user_id(request.headers.get(self.header_name, ""))
        except ValueError:
            logger.warning("request_unauthenticated", path=request.url.path)
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Missing or invalid user identity"},
            )

        request.state.user_id = user_id
        structlog.contextvars.bind_contextvars(user_id=str(user_id))
        try:
            return await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("user_id")

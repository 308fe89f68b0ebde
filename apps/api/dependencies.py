"""FastAPI dependencies shared by routers."""
from uuid import UUID

from fastapi import HTTPException, Request, status

from apps.api.middleware.user_identity import USER_ID_HEADER, parse_user_id
from packages.domain.ai_categorization.orchestrator import CategorizationOrchestrator


def get_current_user_id(request: Request) -> UUID:
    """Authenticated user id (set by UserIdentityMiddleware, or read from the header when it is disabled)."""
    user_id = getattr(request.state, "user_id", None)
    if user_id is not None:
        return user_id

    try:
        return parse_user_id(request.headers.get(USER_ID_HEADER, ""))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid user identity",
        )


def get_orchestrator(request: Request) -> CategorizationOrchestrator:
    """Orchestrator built during application startup."""
    return request.app.state.orchestrator

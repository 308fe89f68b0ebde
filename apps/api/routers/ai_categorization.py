"""
AI Categorization API Router
Starts background categorization jobs and reports their status
"""
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from apps.api.dependencies import get_current_user_id, get_orchestrator
from packages.domain.ai_categorization.exceptions import (
    AlreadyProcessingError,
    NothingToCategorizeError,
)
from packages.domain.ai_categorization.orchestrator import CategorizationOrchestrator
from packages.domain.ai_categorization.schemas import (
    CategorizationStatus,
    StartCategorizationResult,
)

logger = structlog.get_logger()
router = APIRouter()


@router.post(
    "/start",
    response_model=StartCategorizationResult,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_categorization(
    user_id: UUID = Depends(get_current_user_id),
    orchestrator: CategorizationOrchestrator = Depends(get_orchestrator),
) -> StartCategorizationResult:
    """
    Start AI categorization of the user's uncategorized transactions

    Returns immediately; poll **GET /status** for progress.

    - **409**: a job is already running for this user
    - **400**: there is nothing to categorize
    """
    try:
        return await orchestrator.start(user_id)
    except AlreadyProcessingError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": e.code, "message": e.message},
        )
    except NothingToCategorizeError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": e.code, "message": e.message},
        )


@router.get("/status", response_model=CategorizationStatus)
async def get_categorization_status(
    user_id: UUID = Depends(get_current_user_id),
    orchestrator: CategorizationOrchestrator = Depends(get_orchestrator),
) -> CategorizationStatus:
    """
    Current categorization state for the user

    Progress is only included while a job is running.
    """
    return await orchestrator.get_status(user_id)

"""
Prioritization FastAPI Router
=============================

REST endpoints to trigger a prioritization and poll its session.

Endpoints:
- POST /agent/prioritize: Start a run for an outcome
- GET /agent/sessions/latest: Latest completed session of a user
- GET /agent/sessions/{session_id}: Status and result of a session
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from prioritizer.exceptions import ActiveSessionError, ContextLoadError, SessionNotFoundError
from prioritizer.service import PrioritizationService
from prioritizer.storage.session_store import SessionRecord

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/agent",
    tags=["Prioritization"],
    responses={404: {"description": "Session or outcome not found"}},
)

# Module-level service, installed by create_app() or tests
_service: Optional[PrioritizationService] = None


def get_service() -> PrioritizationService:
    """Get the installed PrioritizationService.

    Raises:
        RuntimeError: If no service has been installed
    """
    if _service is None:
        raise RuntimeError("PrioritizationService not configured. Call set_service() first.")
    return _service


def set_service(service: Optional[PrioritizationService]) -> None:
    """Install the PrioritizationService (app startup and tests).

    Args:
        service: The service to use, or None to reset
    """
    global _service
    _service = service


class PrioritizeRequest(BaseModel):
    """Request body for starting a prioritization."""
    outcome_id: str = Field(min_length=1, description="Outcome to prioritize tasks against")
    user_id: str = Field(min_length=1, description="Owner of the run")


class PrioritizeResponse(BaseModel):
    session_id: str
    status: str


class ProgressView(BaseModel):
    stage: str
    iteration: int
    total_iterations: int
    progress_pct: float
    confidence: float


class SessionResponse(BaseModel):
    """Session status, with the result once completed or the error once failed."""
    session_id: str
    user_id: str
    outcome_id: str
    status: str
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    progress: Optional[ProgressView] = None
    created_at: str
    updated_at: str


def _to_response(record: SessionRecord, service: PrioritizationService) -> SessionResponse:
    progress = None
    update = service.get_progress(record.session_id) if not record.is_terminal else None
    if update is not None:
        progress = ProgressView(
            stage=update.stage.value,
            iteration=update.iteration,
            total_iterations=update.total_iterations,
            progress_pct=update.progress_pct,
            confidence=update.confidence,
        )
    return SessionResponse(
        session_id=record.session_id,
        user_id=record.user_id,
        outcome_id=record.outcome_id,
        status=record.status.value,
        result=record.result,
        error=record.error,
        progress=progress,
        created_at=record.created_at.isoformat(),
        updated_at=record.updated_at.isoformat(),
    )


@router.post(
    "/prioritize",
    response_model=PrioritizeResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a prioritization",
)
async def prioritize(request: PrioritizeRequest) -> PrioritizeResponse:
    """Start a background prioritization and return its session id.

    Raises:
        HTTPException 409: A run is already active for the user
        HTTPException 404: Outcome unknown or has no tasks
    """
    service = get_service()
    try:
        session_id = await service.start_prioritization(request.user_id, request.outcome_id)
    except ActiveSessionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ContextLoadError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return PrioritizeResponse(session_id=session_id, status="running")


@router.get(
    "/sessions/latest",
    response_model=SessionResponse,
    summary="Latest completed session of a user",
)
async def get_latest_session(user_id: str = Query(min_length=1)) -> SessionResponse:
    service = get_service()
    record = await service.get_latest_completed(user_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No completed session for user {user_id}",
        )
    return _to_response(record, service)


@router.get(
    "/sessions/{session_id}",
    response_model=SessionResponse,
    summary="Get a session",
)
async def get_session(session_id: str) -> SessionResponse:
    """Poll a session for status, result or error."""
    service = get_service()
    try:
        record = await service.get_session(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return _to_response(record, service)

"""Session status endpoints."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from ..services.session import SessionState

logger = logging.getLogger(__name__)

router = APIRouter()


class SessionStatusResponse(BaseModel):
    """Session status response."""
    state: str
    assets_dir: str
    error: Optional[Dict[str, Any]] = None
    label_count: Optional[int] = None
    reference_count: Optional[int] = None
    model_output_dim: Optional[int] = None
    reference_error: Optional[Dict[str, Any]] = None


@router.get("/session", response_model=SessionStatusResponse)
async def get_session_status(request: Request):
    """Get the classifier session state."""
    session = request.app.state.session
    return SessionStatusResponse(**session.get_status())


@router.post("/session/retry", response_model=SessionStatusResponse)
async def retry_session(request: Request):
    """Restart loading after a session-level failure."""
    session = request.app.state.session

    if session.state != SessionState.FAILED:
        raise HTTPException(
            status_code=409,
            detail=f"Session is {session.state.value}; retry is only allowed when failed"
        )

    try:
        session.retry(background=True)
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))

    logger.info("Session retry requested")
    return SessionStatusResponse(**session.get_status())

"""Health check endpoints."""

import logging

from fastapi import APIRouter, Request

from .. import __version__

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check():
    """Check server health status."""
    return {"status": "healthy", "version": __version__}


@router.get("/device")
async def device_info(request: Request):
    """Get compute device information."""
    device_manager = request.app.state.device_manager
    return device_manager.get_info()

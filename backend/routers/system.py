"""System router — health and provider status."""
from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Request

logger = logging.getLogger("songsmith.routers.system")
router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> Dict[str, Any]:
    """Health check endpoint."""
    state = request.app.state
    return {
        "status": "ok",
        "version": request.app.version,
        "songs": len(state.pipeline.store),
        "active_pipelines": len(state.supervisor.active()),
    }


@router.get("/providers")
async def provider_status(request: Request) -> Dict[str, Any]:
    """Which adapter backs each capability, and its circuit breaker state."""
    return {"providers": request.app.state.providers.describe()}

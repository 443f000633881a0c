"""
Login endpoint router
"""

import structlog
from fastapi import APIRouter, Depends

from mp3relay.auth import SessionRegistry, get_session_registry
from mp3relay.schemas import AuthRequest, AuthResponse, ErrorResponse
from mp3relay.throttle import limit_api_requests

logger = structlog.get_logger()

router = APIRouter(prefix="/api", tags=["Auth"])


@router.post(
    "/auth",
    response_model=AuthResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Wrong password"},
        429: {"model": ErrorResponse, "description": "Too many requests"},
    },
    summary="Exchange the shared password for a session token",
    dependencies=[Depends(limit_api_requests)],
)
async def authenticate(
    payload: AuthRequest,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """
    Log in with the household password.

    The returned token stays valid for 24 hours or until the server
    restarts, whichever comes first.
    """
    session = registry.authenticate(payload.password)
    return AuthResponse(success=True, token=session.token)

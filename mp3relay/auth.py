"""
Access gate: shared-password login and session tokens for FastAPI endpoints
"""

import hmac
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog
from fastapi import Request, Security
from fastapi.security import APIKeyHeader, APIKeyQuery

from mp3relay.config import settings
from mp3relay.errors import Unauthorized
from mp3relay.memory_store import MemoryStore

logger = structlog.get_logger()

# Token transport
SESSION_TOKEN_HEADER = "X-Session-Token"
SESSION_TOKEN_QUERY = "token"

session_token_header = APIKeyHeader(name=SESSION_TOKEN_HEADER, auto_error=False)
session_token_query = APIKeyQuery(name=SESSION_TOKEN_QUERY, auto_error=False)


@dataclass
class Session:
    token: str
    created_at: float


class SessionRegistry:
    """
    In-memory session registry for a single shared secret.

    Sessions are never persisted: a restart logs everybody out.

    Example:
        >>> registry = SessionRegistry(password="hunter2")
        >>> session = registry.authenticate("hunter2")
        >>> registry.is_authorized(session.token)
        True
    """

    def __init__(
        self,
        password: str,
        ttl_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ):
        self._password = password
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: MemoryStore[Session] = MemoryStore()

    def __len__(self) -> int:
        return len(self._sessions)

    def _is_expired(self, session: Session) -> bool:
        return self._clock() - session.created_at > self.ttl_seconds

    def check_password(self, password: Optional[str]) -> bool:
        """Constant-time comparison. An unset password never matches."""
        if not self._password or not password:
            return False
        return hmac.compare_digest(password.encode("utf-8"), self._password.encode("utf-8"))

    def authenticate(self, password: Optional[str]) -> Session:
        """
        Exchange the shared password for a new session.

        Expired sessions are evicted on every successful login.

        Raises:
            Unauthorized: If the password does not match
        """
        if not self.check_password(password):
            logger.warning("authentication_failed")
            raise Unauthorized("password mismatch", user_message="Invalid password")

        evicted = self._sessions.sweep(self._is_expired)

        token = secrets.token_urlsafe(32)
        while token in self._sessions:
            token = secrets.token_urlsafe(32)

        session = Session(token=token, created_at=self._clock())
        self._sessions.set(token, session)

        logger.info(
            "session_created",
            active_sessions=len(self._sessions),
            evicted_sessions=evicted,
        )
        return session

    def is_authorized(self, token: Optional[str]) -> bool:
        """Check that a token belongs to a live session."""
        if not token:
            return False
        session = self._sessions.get(token)
        if session is None:
            return False
        if self._is_expired(session):
            self._sessions.delete(token)
            logger.info("session_expired")
            return False
        return True


def get_session_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def _require_session(request: Request, token_header: Optional[str], token_query: Optional[str]) -> None:
    registry = get_session_registry(request)
    token = token_header or token_query
    if not token:
        raise Unauthorized(
            "session token missing",
            user_message=f"Authentication required. Provide {SESSION_TOKEN_HEADER} header or ?{SESSION_TOKEN_QUERY}=",
        )
    if not registry.is_authorized(token):
        raise Unauthorized("unknown or expired session token", user_message="Invalid or expired session")


async def verify_session(
    request: Request,
    token_header: Optional[str] = Security(session_token_header),
    token_query: Optional[str] = Security(session_token_query),
) -> None:
    """
    Gate for the conversion endpoint.

    Usage:
        @router.get("/convert", dependencies=[Depends(verify_session)])
    """
    # No password configured or gate disabled - open deployment
    if not settings.auth_required:
        return
    _require_session(request, token_header, token_query)


async def verify_session_for_info(
    request: Request,
    token_header: Optional[str] = Security(session_token_header),
    token_query: Optional[str] = Security(session_token_query),
) -> None:
    """Gate for the info endpoint, which deployments may leave open."""
    if not settings.auth_required or not settings.AUTH_PROTECT_INFO:
        return
    _require_session(request, token_header, token_query)

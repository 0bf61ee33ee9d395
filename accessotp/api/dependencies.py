"""
API Dependencies
================
FastAPI dependencies resolving services from ``app.state``.
"""

from typing import Optional

import structlog
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..delivery.dispatcher import DeliveryDispatcher
from ..errors import SessionError
from ..identity import IdentityResolver
from ..models import UserSession
from ..otp.engine import OTPEngine
from ..ratelimit import FixedWindowLimiter
from ..sessions import SessionIssuer

logger = structlog.get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_engine(request: Request) -> OTPEngine:
    return request.app.state.engine


def get_sessions(request: Request) -> SessionIssuer:
    return request.app.state.sessions


def get_identity(request: Request) -> IdentityResolver:
    return request.app.state.identity


def get_dispatcher(request: Request) -> DeliveryDispatcher:
    return request.app.state.dispatcher


def client_ip(request: Request) -> str:
    """Caller address, honouring the first ``X-Forwarded-For`` hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def rate_limit(scope: str):
    """
    Dependency factory applying the app's limiter per client address.

    Usage:
        @router.post("/otp/generate", dependencies=[rate_limit("generate")])
    """

    async def dependency(request: Request) -> None:
        limiter: FixedWindowLimiter = request.app.state.rate_limiter
        ip = client_ip(request)
        info = limiter.check(limiter.key(scope, ip))
        if not info.allowed:
            logger.warning("Rate limit exceeded", scope=scope, client_ip=ip, retry_after=info.retry_after)
            raise HTTPException(
                status_code=429,
                detail={"error": "Too many requests. Please try again later.", "code": "RateLimited"},
                headers=info.headers(),
            )

    return Depends(dependency)


async def require_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    sessions: SessionIssuer = Depends(get_sessions),
) -> UserSession:
    """Resolve the bearer access token to an active session."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise SessionError("Missing bearer token")
    session = await sessions.authenticate(credentials.credentials)
    if session is None:
        raise SessionError("Invalid or expired access token")
    return session

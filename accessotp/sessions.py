"""
Session Issuer
==============
Mints, rotates and revokes opaque access/refresh credential pairs.

Tokens are random ``secrets.token_urlsafe`` strings. Only their SHA-256
digests are stored, so a leaked session table does not leak credentials.
"""

import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

import structlog

from .clock import Clock, SystemClock
from .config import SessionConfig
from .errors import SessionError
from .metrics import ServiceMetrics
from .models import User, UserSession
from .otp.hashing import hash_token
from .storage.base import Store, StoreTransaction

logger = structlog.get_logger(__name__)

ACCESS_TOKEN_PREFIX = "at_"
REFRESH_TOKEN_PREFIX = "rt_"
ACCESS_TOKEN_BYTES = 32
REFRESH_TOKEN_BYTES = 48


def generate_token_pair() -> Tuple[str, str]:
    """Return a fresh ``(access_token, refresh_token)``."""
    return (
        ACCESS_TOKEN_PREFIX + secrets.token_urlsafe(ACCESS_TOKEN_BYTES),
        REFRESH_TOKEN_PREFIX + secrets.token_urlsafe(REFRESH_TOKEN_BYTES),
    )


@dataclass
class IssuedSession:
    """A session record together with its plain tokens (shown once)."""
    session: UserSession
    access_token: str
    refresh_token: str

    @property
    def expires_at(self) -> datetime:
        return self.session.expires_at


class SessionIssuer:
    """Session lifecycle against the store."""

    def __init__(
        self,
        store: Store,
        config: Optional[SessionConfig] = None,
        clock: Optional[Clock] = None,
        metrics: Optional[ServiceMetrics] = None,
    ):
        self.store = store
        self.config = config or SessionConfig()
        self.clock = clock or SystemClock()
        self.metrics = metrics

    async def issue(
        self,
        tx: StoreTransaction,
        user: User,
        now: Optional[datetime] = None,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> IssuedSession:
        """Mint a session for ``user`` inside the caller's transaction."""
        now = now or self.clock.now()
        access_token, refresh_token = generate_token_pair()
        session = UserSession(
            id=uuid.uuid4(),
            user_id=user.id,
            access_token_hash=hash_token(access_token),
            refresh_token_hash=hash_token(refresh_token),
            created_at=now,
            expires_at=now + self.config.access_token_lifetime,
            last_used_at=None,
            revoked_at=None,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        await tx.add_session(session)

        self._record("issued")
        logger.info("Session issued", session_id=str(session.id), user_id=str(user.id))
        return IssuedSession(session=session, access_token=access_token, refresh_token=refresh_token)

    async def refresh(self, refresh_token: str) -> IssuedSession:
        """
        Rotate both tokens of the session owning ``refresh_token``.

        The old pair stops working immediately and the expiry slides forward.

        Raises:
            SessionError: unknown, expired or revoked session, or inactive user
        """
        now = self.clock.now()
        async with self.store.transaction() as tx:
            session = await tx.session_by_refresh_hash(hash_token(refresh_token or ""))
            if session is None or not session.is_active(now):
                failure = "Invalid or expired refresh token"
            else:
                user = await tx.get_user(session.user_id)
                if user is None or not user.is_active:
                    failure = "User is not active"
                else:
                    failure = None
                    access_token, new_refresh_token = generate_token_pair()
                    session.access_token_hash = hash_token(access_token)
                    session.refresh_token_hash = hash_token(new_refresh_token)
                    session.last_used_at = now
                    session.expires_at = now + self.config.access_token_lifetime

        if failure:
            self._record("refresh_rejected")
            logger.warning("Session refresh rejected", reason=failure)
            raise SessionError(failure)

        self._record("refreshed")
        logger.info("Session refreshed", session_id=str(session.id), user_id=str(session.user_id))
        return IssuedSession(session=session, access_token=access_token, refresh_token=new_refresh_token)

    async def revoke(self, refresh_token: str) -> bool:
        """Stamp ``revoked_at`` on the session. Returns whether one matched."""
        now = self.clock.now()
        async with self.store.transaction() as tx:
            session = await tx.session_by_refresh_hash(hash_token(refresh_token or ""))
            if session is None:
                return False
            if session.revoked_at is None:
                session.revoked_at = now

        self._record("revoked")
        logger.info("Session revoked", session_id=str(session.id), user_id=str(session.user_id))
        return True

    async def authenticate(self, access_token: str) -> Optional[UserSession]:
        """Return the active session for ``access_token`` and mark it used, else ``None``."""
        now = self.clock.now()
        async with self.store.transaction() as tx:
            session = await tx.session_by_access_hash(hash_token(access_token or ""))
            if session is None or not session.is_active(now):
                return None
            session.last_used_at = now
        return session

    def _record(self, event: str) -> None:
        if self.metrics is not None:
            self.metrics.record_session(event)

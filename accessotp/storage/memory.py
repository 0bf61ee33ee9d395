"""
In-Memory Store
===============
Process-local store for development and tests.

Transactions are serialised by a single ``asyncio.Lock`` and must not be
nested. There is no rollback: a transaction that raises keeps whatever it
already changed.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional

import structlog

from ..errors import DuplicateUserError
from ..models import OTPRequest, User, UserSession
from .base import Store, StoreTransaction

logger = structlog.get_logger(__name__)


class _MemoryTransaction(StoreTransaction):

    def __init__(self, store: "InMemoryStore"):
        self._store = store

    async def user_by_email(self, email: str) -> Optional[User]:
        return next((u for u in self._store.users.values() if u.email == email), None)

    async def user_by_phone(self, phone_number: str) -> Optional[User]:
        return next(
            (u for u in self._store.users.values() if u.phone_number == phone_number),
            None,
        )

    async def get_user(self, user_id: uuid.UUID, for_update: bool = False) -> Optional[User]:
        return self._store.users.get(user_id)

    async def add_user(self, user: User) -> User:
        if await self.user_by_email(user.email) is not None:
            raise DuplicateUserError("email")
        if user.phone_number and await self.user_by_phone(user.phone_number) is not None:
            raise DuplicateUserError("phone number")
        if user.id is None:
            user.id = uuid.uuid4()
        self._store.users[user.id] = user
        return user

    async def active_requests(self, user_id: uuid.UUID, now: datetime) -> List[OTPRequest]:
        return [r for r in await self.requests_for_user(user_id) if r.is_active(now)]

    async def requests_for_user(self, user_id: uuid.UUID) -> List[OTPRequest]:
        owned = [r for r in self._store.requests if r.user_id == user_id]
        # Newest first; insertion order breaks ties
        return [r for _, r in sorted(enumerate(owned), key=lambda p: (p[1].created_at, p[0]), reverse=True)]

    async def get_request(self, request_id: uuid.UUID) -> Optional[OTPRequest]:
        return next((r for r in self._store.requests if r.id == request_id), None)

    async def add_request(self, request: OTPRequest) -> OTPRequest:
        if request.id is None:
            request.id = uuid.uuid4()
        self._store.requests.append(request)
        return request

    async def add_session(self, session: UserSession) -> UserSession:
        if session.id is None:
            session.id = uuid.uuid4()
        self._store.sessions.append(session)
        return session

    async def session_by_refresh_hash(self, token_hash: str) -> Optional[UserSession]:
        return next((s for s in self._store.sessions if s.refresh_token_hash == token_hash), None)

    async def session_by_access_hash(self, token_hash: str) -> Optional[UserSession]:
        return next((s for s in self._store.sessions if s.access_token_hash == token_hash), None)

    async def sessions_for_user(self, user_id: uuid.UUID) -> List[UserSession]:
        return [s for s in self._store.sessions if s.user_id == user_id]


class InMemoryStore(Store):
    """Dictionary-backed store holding ORM instances directly."""

    name = "memory"

    def __init__(self):
        self.users: Dict[uuid.UUID, User] = {}
        self.requests: List[OTPRequest] = []
        self.sessions: List[UserSession] = []
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        async with self._lock:
            yield _MemoryTransaction(self)

    async def create_schema(self) -> None:
        logger.info("Using in-memory store")

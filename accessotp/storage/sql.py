"""
SQLAlchemy Store
================
Async SQLAlchemy implementation of the store (PostgreSQL via asyncpg,
SQLite via aiosqlite).
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, List, Optional

import structlog
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ..errors import DuplicateUserError
from ..models import Base, OTPRequest, OTPStatus, User, UserSession
from .base import Store, StoreTransaction

logger = structlog.get_logger(__name__)


class _SQLTransaction(StoreTransaction):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def user_by_email(self, email: str) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def user_by_phone(self, phone_number: str) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.phone_number == phone_number))
        return result.scalar_one_or_none()

    async def get_user(self, user_id: uuid.UUID, for_update: bool = False) -> Optional[User]:
        stmt = select(User).where(User.id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add_user(self, user: User) -> User:
        if await self.user_by_email(user.email) is not None:
            raise DuplicateUserError("email")
        if user.phone_number and await self.user_by_phone(user.phone_number) is not None:
            raise DuplicateUserError("phone number")
        self.session.add(user)
        try:
            await self.session.flush()
        except IntegrityError:
            # Lost a race with a concurrent registration
            raise DuplicateUserError("email or phone number")
        return user

    async def active_requests(self, user_id: uuid.UUID, now: datetime) -> List[OTPRequest]:
        stmt = (
            select(OTPRequest)
            .where(
                OTPRequest.user_id == user_id,
                OTPRequest.status == OTPStatus.PENDING,
                OTPRequest.expires_at >= now,
            )
            .order_by(OTPRequest.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def requests_for_user(self, user_id: uuid.UUID) -> List[OTPRequest]:
        stmt = (
            select(OTPRequest)
            .where(OTPRequest.user_id == user_id)
            .order_by(OTPRequest.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_request(self, request_id: uuid.UUID) -> Optional[OTPRequest]:
        return await self.session.get(OTPRequest, request_id)

    async def add_request(self, request: OTPRequest) -> OTPRequest:
        self.session.add(request)
        await self.session.flush()
        return request

    async def add_session(self, session: UserSession) -> UserSession:
        self.session.add(session)
        await self.session.flush()
        return session

    async def session_by_refresh_hash(self, token_hash: str) -> Optional[UserSession]:
        result = await self.session.execute(
            select(UserSession).where(UserSession.refresh_token_hash == token_hash)
        )
        return result.scalar_one_or_none()

    async def session_by_access_hash(self, token_hash: str) -> Optional[UserSession]:
        result = await self.session.execute(
            select(UserSession).where(UserSession.access_token_hash == token_hash)
        )
        return result.scalar_one_or_none()

    async def sessions_for_user(self, user_id: uuid.UUID) -> List[UserSession]:
        result = await self.session.execute(
            select(UserSession)
            .where(UserSession.user_id == user_id)
            .order_by(UserSession.created_at.desc())
        )
        return list(result.scalars().all())


class SQLAlchemyStore(Store):
    """
    Store backed by an ``AsyncEngine``.

    Every transaction is one ``AsyncSession`` inside ``session.begin()``:
    committed on normal exit, rolled back on error.
    """

    name = "database"

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        async with self._session_factory() as session:
            async with session.begin():
                yield _SQLTransaction(session)

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ready", dialect=self.engine.dialect.name)

    async def health_check(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("Database engine closed")

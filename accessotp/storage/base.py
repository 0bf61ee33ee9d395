"""
Store Interface
===============
Persistence contract for users, OTP requests and sessions.

All reads and writes go through a ``StoreTransaction`` obtained from
``Store.transaction()``. Objects handed out by a transaction must only be
mutated inside that same transaction.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncContextManager, List, Optional

from ..models import OTPRequest, User, UserSession


class StoreTransaction(ABC):
    """Unit of work against the store."""

    # Users

    @abstractmethod
    async def user_by_email(self, email: str) -> Optional[User]:
        ...

    @abstractmethod
    async def user_by_phone(self, phone_number: str) -> Optional[User]:
        ...

    @abstractmethod
    async def get_user(self, user_id: uuid.UUID, for_update: bool = False) -> Optional[User]:
        """Load a user by id, locking the row when ``for_update`` is set."""

    @abstractmethod
    async def add_user(self, user: User) -> User:
        """Persist a new user. Raises ``DuplicateUserError`` on email/phone conflicts."""

    # OTP requests

    @abstractmethod
    async def active_requests(self, user_id: uuid.UUID, now: datetime) -> List[OTPRequest]:
        """Pending, unexpired requests of a user, newest first."""

    async def latest_active_request(self, user_id: uuid.UUID, now: datetime) -> Optional[OTPRequest]:
        requests = await self.active_requests(user_id, now)
        return requests[0] if requests else None

    @abstractmethod
    async def requests_for_user(self, user_id: uuid.UUID) -> List[OTPRequest]:
        """Every request ever issued to a user, newest first."""

    @abstractmethod
    async def get_request(self, request_id: uuid.UUID) -> Optional[OTPRequest]:
        ...

    @abstractmethod
    async def add_request(self, request: OTPRequest) -> OTPRequest:
        ...

    # Sessions

    @abstractmethod
    async def add_session(self, session: UserSession) -> UserSession:
        ...

    @abstractmethod
    async def session_by_refresh_hash(self, token_hash: str) -> Optional[UserSession]:
        ...

    @abstractmethod
    async def session_by_access_hash(self, token_hash: str) -> Optional[UserSession]:
        ...

    @abstractmethod
    async def sessions_for_user(self, user_id: uuid.UUID) -> List[UserSession]:
        ...


class Store(ABC):
    """Factory of transactions plus lifecycle hooks."""

    name: str = "store"

    @abstractmethod
    def transaction(self) -> AsyncContextManager[StoreTransaction]:
        """
        Open a transaction.

        Changes are committed when the block exits normally and rolled back
        (where the backend supports it) when it raises.
        """

    async def create_schema(self) -> None:
        """Create tables if the backend needs them."""

    async def health_check(self) -> None:
        """Raise if the backend is unreachable."""

    async def close(self) -> None:
        """Release connections."""

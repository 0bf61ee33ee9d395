"""
Storage
=======
Stores for users, OTP requests and sessions.
"""

from .base import Store, StoreTransaction
from .database import MEMORY_URL, create_async_engine, create_store
from .memory import InMemoryStore
from .sql import SQLAlchemyStore

__all__ = [
    "Store",
    "StoreTransaction",
    "InMemoryStore",
    "SQLAlchemyStore",
    "create_async_engine",
    "create_store",
    "MEMORY_URL",
]

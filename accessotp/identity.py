"""
Identity Resolver
=================
Maps an external identifier (email address or phone number) to a user and
exposes the user's lockout state.
"""

import re
import uuid
from datetime import datetime
from typing import Optional, Tuple

import structlog

from .clock import Clock, SystemClock
from .logging_config import mask_recipient
from .models import User
from .storage.base import Store, StoreTransaction

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def validate_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


def validate_e164(phone: str) -> bool:
    """True if ``phone`` is in E.164 format."""
    return bool(E164_PATTERN.match(phone))


def normalize_phone(phone: str, default_country: str = "1") -> str:
    """
    Normalize a phone number to E.164 format.

    Args:
        phone: Raw phone number
        default_country: Country code assumed for bare 10-digit numbers

    Returns:
        E.164 formatted number
    """
    phone = phone.strip()
    digits = re.sub(r"\D", "", phone)

    if phone.startswith("+"):
        return f"+{digits}"

    # Trunk prefix "00" for international numbers
    if digits.startswith("00"):
        return f"+{digits[2:]}"

    # 10 digits, assume North American numbering
    if len(digits) == 10:
        return f"+{default_country}{digits}"

    return f"+{digits}"


def classify_identifier(identifier: str) -> Tuple[str, str]:
    """
    Split an identifier into its kind and normalised value.

    Returns:
        ``("email", address)`` or ``("phone", e164_number)``

    Raises:
        ValueError: if the identifier is neither
    """
    value = (identifier or "").strip()
    if not value:
        raise ValueError("Identifier is required")
    if "@" in value:
        email = normalize_email(value)
        if not validate_email(email):
            raise ValueError("Invalid email address")
        return "email", email
    phone = normalize_phone(value)
    if not validate_e164(phone):
        raise ValueError("Invalid phone number")
    return "phone", phone


class IdentityResolver:
    """Looks users up by email or phone and manages registration."""

    def __init__(self, store: Store, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or SystemClock()

    async def find(self, tx: StoreTransaction, identifier: str) -> Optional[User]:
        """Resolve ``identifier`` inside an open transaction."""
        try:
            kind, value = classify_identifier(identifier)
        except ValueError:
            return None
        if kind == "email":
            return await tx.user_by_email(value)
        return await tx.user_by_phone(value)

    async def resolve(self, identifier: str) -> Optional[User]:
        """
        Resolve ``identifier`` to a user.

        Unknown, malformed and deactivated identities all resolve to ``None``.
        """
        async with self.store.transaction() as tx:
            user = await self.find(tx, identifier)
        if user is None or not user.is_active:
            logger.debug("Identity not resolved", identifier=mask_recipient(identifier or ""))
            return None
        return user

    def is_blocked(self, user: User, now: Optional[datetime] = None) -> bool:
        return user.is_otp_blocked(now or self.clock.now())

    async def register(
        self,
        email: str,
        first_name: str = "",
        last_name: str = "",
        phone_number: Optional[str] = None,
    ) -> User:
        """
        Create a user.

        Raises:
            ValueError: malformed email or phone number
            DuplicateUserError: email or phone number already registered
        """
        kind, normalized_email = classify_identifier(email)
        if kind != "email":
            raise ValueError("Invalid email address")

        normalized_phone = None
        if phone_number:
            kind, normalized_phone = classify_identifier(phone_number)
            if kind != "phone":
                raise ValueError("Invalid phone number")

        user = User(
            id=uuid.uuid4(),
            email=normalized_email,
            phone_number=normalized_phone,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            is_active=True,
            created_at=self.clock.now(),
            otp_attempts=0,
        )
        async with self.store.transaction() as tx:
            await tx.add_user(user)

        logger.info("User registered", user_id=str(user.id), email=mask_recipient(user.email))
        return user

    async def unblock(self, identifier: str) -> bool:
        """Lift a lockout early. Returns False if the identity is unknown."""
        async with self.store.transaction() as tx:
            user = await self.find(tx, identifier)
            if user is None:
                return False
            user = await tx.get_user(user.id, for_update=True)
            user.otp_blocked_until = None
            user.otp_attempts = 0
        logger.info("User unblocked", user_id=str(user.id))
        return True

"""
Engine Results
==============
Tagged results returned by every public OTP engine operation.

A result either carries ``success=True`` and its payload, or
``success=False`` with the ``OTPError`` that caused the failure.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..errors import OTPError, OTPErrorCode
from ..models import DeliveryMethod, User


@dataclass
class UserProfile:
    """Public projection of a user returned after login and registration."""
    id: uuid.UUID
    email: str
    phone_number: Optional[str]
    first_name: str
    last_name: str
    full_name: str

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls(
            id=user.id,
            email=user.email,
            phone_number=user.phone_number,
            first_name=user.first_name,
            last_name=user.last_name,
            full_name=user.full_name,
        )


@dataclass
class _Result:
    success: bool
    message: str
    error: Optional[OTPError] = None

    @property
    def error_code(self) -> Optional[OTPErrorCode]:
        return self.error.code if self.error else None

    @classmethod
    def failure(cls, error: OTPError):
        return cls(success=False, message=error.message, error=error)


@dataclass
class GenerationResult(_Result):
    """Outcome of generate and resend."""
    expires_at: Optional[datetime] = None
    retry_count: int = 0
    delivery_method: Optional[DeliveryMethod] = None
    next_retry_at: Optional[datetime] = None
    # Populated only when code exposure is enabled outside production
    otp_code: Optional[str] = None


@dataclass
class ValidationResult(_Result):
    """Outcome of validate; carries the minted credential pair on success."""
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    user: Optional[UserProfile] = None


@dataclass
class StatusResult:
    """Read-only view of a user's current OTP cycle."""
    has_active_otp: bool = False
    expires_at: Optional[datetime] = None
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None
    is_blocked: bool = False
    blocked_until: Optional[datetime] = None

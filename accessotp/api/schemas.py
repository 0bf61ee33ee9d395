"""
API Schemas
===========
Request and response bodies. Field names are camelCase on the wire.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..models import DeliveryMethod
from ..otp.results import GenerationResult, StatusResult, UserProfile, ValidationResult


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Requests

class GenerateOTPRequest(CamelModel):
    identifier: str = Field(min_length=1, max_length=255)
    delivery_method: DeliveryMethod


class ResendOTPRequest(GenerateOTPRequest):
    pass


class ValidateOTPRequest(CamelModel):
    identifier: str = Field(min_length=1, max_length=255)
    otp_code: str = Field(min_length=1, max_length=32)


class CancelOTPRequest(CamelModel):
    identifier: str = Field(min_length=1, max_length=255)


class RegisterUserRequest(CamelModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=255)
    phone_number: Optional[str] = Field(default=None, max_length=20)


class RefreshTokenRequest(CamelModel):
    refresh_token: str = Field(min_length=1)


# Responses

class OTPResponse(CamelModel):
    success: bool
    message: str
    expires_at: Optional[datetime] = None
    retry_count: int = 0
    delivery_method: Optional[DeliveryMethod] = None
    next_retry_at: Optional[datetime] = None
    otp_code: Optional[str] = None

    @classmethod
    def from_result(cls, result: GenerationResult) -> "OTPResponse":
        return cls(
            success=result.success,
            message=result.message,
            expires_at=result.expires_at,
            retry_count=result.retry_count,
            delivery_method=result.delivery_method,
            next_retry_at=result.next_retry_at,
            otp_code=result.otp_code,
        )


class UserResponse(CamelModel):
    id: uuid.UUID
    email: str
    phone_number: Optional[str] = None
    first_name: str
    last_name: str
    full_name: str

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "UserResponse":
        return cls(
            id=profile.id,
            email=profile.email,
            phone_number=profile.phone_number,
            first_name=profile.first_name,
            last_name=profile.last_name,
            full_name=profile.full_name,
        )


class LoginResponse(CamelModel):
    success: bool
    message: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    user: UserResponse

    @classmethod
    def from_result(cls, result: ValidationResult) -> "LoginResponse":
        return cls(
            success=result.success,
            message=result.message,
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_at=result.expires_at,
            user=UserResponse.from_profile(result.user),
        )


class StatusResponse(CamelModel):
    has_active_otp: bool = Field(alias="hasActiveOTP")
    expires_at: Optional[datetime] = None
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None
    is_blocked: bool = False
    blocked_until: Optional[datetime] = None

    @classmethod
    def from_result(cls, result: StatusResult) -> "StatusResponse":
        return cls(
            has_active_otp=result.has_active_otp,
            expires_at=result.expires_at,
            retry_count=result.retry_count,
            next_retry_at=result.next_retry_at,
            is_blocked=result.is_blocked,
            blocked_until=result.blocked_until,
        )


class TokenResponse(CamelModel):
    access_token: str
    refresh_token: str
    expires_at: datetime


class RevokeResponse(CamelModel):
    revoked: bool


class SessionResponse(CamelModel):
    user_id: uuid.UUID
    session_id: uuid.UUID
    expires_at: datetime
    last_used_at: Optional[datetime] = None


class ErrorResponse(CamelModel):
    error: str
    code: str
    remaining_attempts: Optional[int] = None
    blocked_until: Optional[datetime] = None

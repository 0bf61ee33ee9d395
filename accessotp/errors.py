"""
Error Taxonomy
==============
Domain errors for the OTP lifecycle and session handling.

The engine raises these internally and converts them into tagged results at
its public boundary. Messages are user-facing: they never carry stack traces
or internal identifiers.
"""

from enum import Enum
from typing import Any, Dict, Optional


class OTPErrorCode(str, Enum):
    """Failure tags returned by the OTP engine."""
    USER_NOT_FOUND = "UserNotFound"
    ACCOUNT_BLOCKED = "AccountBlocked"
    NO_ACTIVE_OTP = "NoActiveOTP"
    MAX_ATTEMPTS_REACHED = "MaxAttemptsReached"
    INVALID_CODE = "InvalidCode"
    MAX_RETRIES_REACHED = "MaxRetriesReached"
    DELIVERY_FAILED = "DeliveryFailed"
    UNEXPECTED = "Unexpected"

    @property
    def http_status(self) -> int:
        return 500 if self is OTPErrorCode.UNEXPECTED else 400


DEFAULT_MESSAGES: Dict[OTPErrorCode, str] = {
    OTPErrorCode.USER_NOT_FOUND: "User not found",
    OTPErrorCode.ACCOUNT_BLOCKED: "Account is temporarily blocked",
    OTPErrorCode.NO_ACTIVE_OTP: "No active OTP found. Please request a new one.",
    OTPErrorCode.MAX_ATTEMPTS_REACHED: "Maximum OTP attempts reached",
    OTPErrorCode.INVALID_CODE: "Invalid OTP",
    OTPErrorCode.MAX_RETRIES_REACHED: "Maximum retry attempts reached. Please request a new OTP.",
    OTPErrorCode.DELIVERY_FAILED: "Failed to send OTP. Please try again.",
    OTPErrorCode.UNEXPECTED: "An unexpected error occurred",
}


class OTPError(Exception):
    """A business-rule failure inside the OTP engine."""

    def __init__(self, code: OTPErrorCode, message: Optional[str] = None, **details: Any):
        self.code = code
        self.message = message or DEFAULT_MESSAGES[code]
        self.details = details
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return self.code.http_status

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation used by the HTTP layer."""
        body: Dict[str, Any] = {"error": self.message, "code": self.code.value}
        if "remaining_attempts" in self.details:
            body["remainingAttempts"] = self.details["remaining_attempts"]
        if self.details.get("blocked_until") is not None:
            body["blockedUntil"] = self.details["blocked_until"].isoformat()
        return body


class SessionError(Exception):
    """Raised when a refresh or access token does not map to an active session."""
    pass


class DuplicateUserError(Exception):
    """Raised when registering an email or phone number that is already taken."""

    def __init__(self, field_name: str):
        self.field_name = field_name
        super().__init__(f"A user with this {field_name} already exists")

"""
AccessOTP
=========
Passwordless authentication with one-time passcodes.

Usage:
    from accessotp import OTPEngine, OTPConfig, DeliveryMethod
    from accessotp.api import create_app
"""

__version__ = "1.0.0"

# Configuration
from .config import DeliveryConfig, OTPConfig, SessionConfig, Settings
from .clock import Clock, ManualClock, SystemClock

# Errors
from .errors import DuplicateUserError, OTPError, OTPErrorCode, SessionError

# Data model
from .models import DeliveryMethod, OTPRequest, OTPStatus, User, UserSession

# Core
from .identity import IdentityResolver
from .otp import (
    CodeGenerator,
    GenerationResult,
    OTPEngine,
    StatusResult,
    ValidationResult,
)
from .sessions import IssuedSession, SessionIssuer
from .storage import InMemoryStore, SQLAlchemyStore, Store, create_store

# Delivery
from .delivery import DeliveryDispatcher, LoggingGateway, MessageKind

__all__ = [
    "__version__",
    # Configuration
    "Settings",
    "OTPConfig",
    "SessionConfig",
    "DeliveryConfig",
    "Clock",
    "SystemClock",
    "ManualClock",
    # Errors
    "OTPError",
    "OTPErrorCode",
    "SessionError",
    "DuplicateUserError",
    # Data model
    "User",
    "OTPRequest",
    "UserSession",
    "DeliveryMethod",
    "OTPStatus",
    # Core
    "OTPEngine",
    "CodeGenerator",
    "GenerationResult",
    "ValidationResult",
    "StatusResult",
    "IdentityResolver",
    "SessionIssuer",
    "IssuedSession",
    "Store",
    "InMemoryStore",
    "SQLAlchemyStore",
    "create_store",
    # Delivery
    "DeliveryDispatcher",
    "LoggingGateway",
    "MessageKind",
]

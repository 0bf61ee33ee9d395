"""
AccessOTP Configuration
=======================
Dataclass configuration for the OTP engine, sessions, delivery gateways
and the HTTP service. Every value can be supplied through the environment.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Mapping, Optional

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_ALPHABET = "0123456789"
DEFAULT_RETRY_INTERVALS = (30, 60, 90)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_str(env: Mapping[str, str], name: str, default: str) -> str:
    value = env.get(name)
    return value if value not in (None, "") else default


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value in (None, ""):
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int_list(env: Mapping[str, str], name: str, default: tuple) -> List[int]:
    value = env.get(name)
    if value in (None, ""):
        return list(default)
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError:
        raise ValueError(f"{name} must be a comma-separated list of integers, got {value!r}")


@dataclass
class OTPConfig:
    """Configuration for code generation and the OTP lifecycle."""
    code_length: int = 6
    code_alphabet: str = DEFAULT_ALPHABET
    expiry_minutes: int = 5
    max_attempts: int = 3
    lockout_minutes: int = 15
    retry_intervals: List[int] = field(default_factory=lambda: list(DEFAULT_RETRY_INTERVALS))
    max_retries: int = 3
    # Include the raw code in generate/resend results (development only)
    expose_code: bool = False
    # Cancel a freshly persisted request when its delivery fails
    cancel_on_delivery_failure: bool = False

    def __post_init__(self):
        if self.code_length < 4 or self.code_length > 10:
            raise ValueError("code_length must be between 4 and 10")
        if len(self.code_alphabet) < 2:
            raise ValueError("code_alphabet needs at least two characters")
        if len(set(self.code_alphabet)) != len(self.code_alphabet):
            raise ValueError("code_alphabet must not repeat characters")
        if self.expiry_minutes <= 0:
            raise ValueError("expiry_minutes must be positive")
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        if self.lockout_minutes <= 0:
            raise ValueError("lockout_minutes must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if self.max_retries and not self.retry_intervals:
            raise ValueError("retry_intervals must not be empty when resends are allowed")
        if any(interval < 0 for interval in self.retry_intervals):
            raise ValueError("retry_intervals must not contain negative values")

    @property
    def expiry_window(self) -> timedelta:
        return timedelta(minutes=self.expiry_minutes)

    @property
    def lockout_window(self) -> timedelta:
        return timedelta(minutes=self.lockout_minutes)

    def retry_interval(self, retry_count: int) -> timedelta:
        """
        Backoff interval for the resend that follows ``retry_count`` resends.

        The last configured interval is reused when ``max_retries`` is larger
        than the schedule.
        """
        index = min(retry_count, len(self.retry_intervals) - 1)
        return timedelta(seconds=self.retry_intervals[index])

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "OTPConfig":
        env = os.environ if env is None else env
        return cls(
            code_length=_env_int(env, "OTP_CODE_LENGTH", 6),
            code_alphabet=_env_str(env, "OTP_CODE_ALPHABET", DEFAULT_ALPHABET),
            expiry_minutes=_env_int(env, "OTP_EXPIRY_MINUTES", 5),
            max_attempts=_env_int(env, "OTP_MAX_ATTEMPTS", 3),
            lockout_minutes=_env_int(env, "OTP_LOCKOUT_MINUTES", 15),
            retry_intervals=_env_int_list(env, "OTP_RETRY_INTERVALS", DEFAULT_RETRY_INTERVALS),
            max_retries=_env_int(env, "OTP_MAX_RETRIES", 3),
            expose_code=_env_bool(env, "OTP_EXPOSE_CODE", False),
            cancel_on_delivery_failure=_env_bool(env, "OTP_CANCEL_ON_DELIVERY_FAILURE", False),
        )


@dataclass
class SessionConfig:
    """Configuration for minted sessions."""
    access_token_lifetime_minutes: int = 60

    def __post_init__(self):
        if self.access_token_lifetime_minutes <= 0:
            raise ValueError("access_token_lifetime_minutes must be positive")

    @property
    def access_token_lifetime(self) -> timedelta:
        return timedelta(minutes=self.access_token_lifetime_minutes)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "SessionConfig":
        env = os.environ if env is None else env
        return cls(
            access_token_lifetime_minutes=_env_int(env, "ACCESS_TOKEN_LIFETIME_MINUTES", 60),
        )


@dataclass
class DeliveryConfig:
    """Credentials and branding for the SMS and email gateways."""
    product_name: str = "AccessOTP"
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    twilio_messaging_service_sid: str = ""
    sendgrid_api_key: str = ""
    email_from: str = "no-reply@accessotp.local"
    email_from_name: str = "AccessOTP"
    timeout: float = 10.0

    @property
    def sms_configured(self) -> bool:
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and (self.twilio_from_number or self.twilio_messaging_service_sid)
        )

    @property
    def email_configured(self) -> bool:
        return bool(self.sendgrid_api_key and self.email_from)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "DeliveryConfig":
        env = os.environ if env is None else env
        return cls(
            product_name=_env_str(env, "PRODUCT_NAME", "AccessOTP"),
            twilio_account_sid=_env_str(env, "TWILIO_ACCOUNT_SID", ""),
            twilio_auth_token=_env_str(env, "TWILIO_AUTH_TOKEN", ""),
            twilio_from_number=_env_str(env, "TWILIO_FROM_NUMBER", ""),
            twilio_messaging_service_sid=_env_str(env, "TWILIO_MESSAGING_SERVICE_SID", ""),
            sendgrid_api_key=_env_str(env, "SENDGRID_API_KEY", ""),
            email_from=_env_str(env, "EMAIL_FROM", "no-reply@accessotp.local"),
            email_from_name=_env_str(env, "EMAIL_FROM_NAME", "AccessOTP"),
        )


@dataclass
class Settings:
    """Top-level service settings."""
    service_name: str = "accessotp"
    environment: str = "production"
    log_level: str = "INFO"
    log_json: bool = True
    database_url: str = "sqlite+aiosqlite:///./accessotp.db"
    rate_limit_per_minute: int = 30
    seed_demo_user: bool = False
    otp: OTPConfig = field(default_factory=OTPConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)

    def __post_init__(self):
        self.environment = self.environment.lower()
        if self.rate_limit_per_minute <= 0:
            raise ValueError("rate_limit_per_minute must be positive")
        # Raw codes never leave a production deployment
        if self.is_production and self.otp.expose_code:
            logger.warning("OTP code exposure requested in production, ignoring")
            self.otp.expose_code = False

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        environment = _env_str(env, "ENVIRONMENT", "production")
        return cls(
            service_name=_env_str(env, "SERVICE_NAME", "accessotp"),
            environment=environment,
            log_level=_env_str(env, "LOG_LEVEL", "INFO"),
            log_json=_env_bool(env, "LOG_JSON", environment.lower() == "production"),
            database_url=_env_str(env, "DATABASE_URL", "sqlite+aiosqlite:///./accessotp.db"),
            rate_limit_per_minute=_env_int(env, "RATE_LIMIT_PER_MINUTE", 30),
            seed_demo_user=_env_bool(env, "SEED_DEMO_USER", False),
            otp=OTPConfig.from_env(env),
            sessions=SessionConfig.from_env(env),
            delivery=DeliveryConfig.from_env(env),
        )

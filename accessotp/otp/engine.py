"""
OTP Engine
==========
The OTP lifecycle state machine: generate, validate, resend, cancel, status.

Request states::

    Pending -> Verified | Expired | MaxAttemptsReached | Cancelled

Expired is derived from ``expires_at`` at read time. Every mutating
operation holds a per-user lock for its whole duration, delivery included,
and keeps its store writes inside a single transaction.

Public operations never raise: business failures and unexpected faults both
come back as failed results.
"""

import uuid
from typing import Optional, Union

import structlog

from ..clock import Clock, SystemClock
from ..config import OTPConfig
from ..delivery.dispatcher import DeliveryDispatcher
from ..errors import OTPError, OTPErrorCode
from ..identity import IdentityResolver
from ..metrics import ServiceMetrics
from ..models import DeliveryMethod, OTPRequest, OTPStatus, User
from ..sessions import SessionIssuer
from ..storage.base import Store, StoreTransaction
from .generator import CodeGenerator
from .hashing import verify_code
from .locks import KeyedLock
from .results import GenerationResult, StatusResult, UserProfile, ValidationResult

logger = structlog.get_logger(__name__)

LOCKOUT_ALERT = "Multiple failed OTP attempts"


class OTPEngine:
    """
    Issues and verifies one-time passcodes.

    Example:
        engine = OTPEngine(store, dispatcher, sessions, config=OTPConfig())
        result = await engine.generate("alice@example.com", DeliveryMethod.EMAIL)
        if not result.success:
            print(result.error_code, result.message)
    """

    def __init__(
        self,
        store: Store,
        dispatcher: DeliveryDispatcher,
        sessions: SessionIssuer,
        config: Optional[OTPConfig] = None,
        clock: Optional[Clock] = None,
        identity: Optional[IdentityResolver] = None,
        metrics: Optional[ServiceMetrics] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.sessions = sessions
        self.config = config or OTPConfig()
        self.clock = clock or SystemClock()
        self.identity = identity or IdentityResolver(store, self.clock)
        self.metrics = metrics
        self.generator = CodeGenerator(self.config.code_length, self.config.code_alphabet)
        self.locks = KeyedLock()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def generate(
        self,
        identifier: str,
        delivery_method: Union[DeliveryMethod, str],
    ) -> GenerationResult:
        """Start a new OTP cycle, cancelling any active one."""
        try:
            result = await self._generate(identifier, DeliveryMethod(delivery_method))
        except OTPError as exc:
            return self._rejected("generate", GenerationResult, exc)
        except Exception:
            return self._faulted("generate", GenerationResult, "An error occurred while generating OTP")
        self._record("generate", "success")
        return result

    async def validate(
        self,
        identifier: str,
        code: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> ValidationResult:
        """Check ``code`` against the active request and mint a session on success."""
        try:
            result = await self._validate(identifier, code, user_agent, ip_address)
        except OTPError as exc:
            return self._rejected("validate", ValidationResult, exc)
        except Exception:
            return self._faulted("validate", ValidationResult, "An error occurred while validating OTP")
        self._record("validate", "success")
        return result

    async def resend(
        self,
        identifier: str,
        delivery_method: Union[DeliveryMethod, str],
    ) -> GenerationResult:
        """Send a fresh code for the active request, subject to the retry budget."""
        try:
            result = await self._resend(identifier, DeliveryMethod(delivery_method))
        except OTPError as exc:
            return self._rejected("resend", GenerationResult, exc)
        except Exception:
            return self._faulted("resend", GenerationResult, "An error occurred while resending OTP")
        self._record("resend", "success")
        return result

    async def cancel(self, identifier: str) -> bool:
        """
        Cancel every active request of the user.

        Idempotent. Returns False only when the identity cannot be resolved
        or the store fails.
        """
        try:
            user = await self.identity.resolve(identifier)
            if user is None:
                self._record("cancel", OTPErrorCode.USER_NOT_FOUND.value)
                return False

            async with self.locks.hold(user.id):
                now = self.clock.now()
                async with self.store.transaction() as tx:
                    cancelled = await self._cancel_active(tx, user.id, now)
        except Exception:
            logger.exception("OTP cancel failed")
            self._record("cancel", OTPErrorCode.UNEXPECTED.value)
            return False

        logger.info("OTP requests cancelled", user_id=str(user.id), cancelled=cancelled)
        self._record("cancel", "success")
        return True

    async def status(self, identifier: str) -> StatusResult:
        """Read-only view of the latest active request and the lockout state."""
        now = self.clock.now()
        try:
            async with self.store.transaction() as tx:
                user = await self.identity.find(tx, identifier)
                if user is None or not user.is_active:
                    return StatusResult()
                request = await tx.latest_active_request(user.id, now)
        except Exception:
            logger.exception("OTP status lookup failed")
            return StatusResult()

        blocked = user.is_otp_blocked(now)
        return StatusResult(
            has_active_otp=request is not None,
            expires_at=request.expires_at if request else None,
            retry_count=request.retry_count if request else 0,
            next_retry_at=request.next_retry_at if request else None,
            is_blocked=blocked,
            blocked_until=user.otp_blocked_until if blocked else None,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _generate(self, identifier: str, method: DeliveryMethod) -> GenerationResult:
        user = await self._resolve(identifier)

        async with self.locks.hold(user.id):
            now = self.clock.now()
            code, salt, code_hash = self.generator.generate_hashed()

            async with self.store.transaction() as tx:
                user = await self._lock_user(tx, user.id)
                self._ensure_not_blocked(user, now)
                target = self._target_for(user, method)

                cancelled = await self._cancel_active(tx, user.id, now)
                request = OTPRequest(
                    id=uuid.uuid4(),
                    user_id=user.id,
                    code_hash=code_hash,
                    salt=salt,
                    created_at=now,
                    expires_at=now + self.config.expiry_window,
                    verified_at=None,
                    status=OTPStatus.PENDING,
                    attempts=0,
                    max_attempts=self.config.max_attempts,
                    delivery_method=method,
                    delivery_target=target,
                    retry_count=0,
                    next_retry_at=None,
                )
                await tx.add_request(request)
                user.last_otp_request_at = now

            logger.info(
                "OTP generated",
                user_id=str(user.id),
                request_id=str(request.id),
                method=method.value,
                cancelled=cancelled,
            )

            await self._deliver(user, request, code)

        return GenerationResult(
            success=True,
            message=f"OTP sent to your {method.value}",
            expires_at=request.expires_at,
            retry_count=0,
            delivery_method=method,
            otp_code=code if self.config.expose_code else None,
        )

    async def _validate(
        self,
        identifier: str,
        code: str,
        user_agent: Optional[str],
        ip_address: Optional[str],
    ) -> ValidationResult:
        user = await self._resolve(identifier)
        code = (code or "").strip()

        async with self.locks.hold(user.id):
            now = self.clock.now()
            failure: Optional[OTPError] = None
            locked_out = False

            async with self.store.transaction() as tx:
                user = await self._lock_user(tx, user.id)
                self._ensure_not_blocked(user, now)

                request = await tx.latest_active_request(user.id, now)
                if request is None:
                    raise OTPError(OTPErrorCode.NO_ACTIVE_OTP)

                if request.attempts >= request.max_attempts:
                    self._lock_out(user, request, now)
                    locked_out = True
                elif not verify_code(code, request.salt, request.code_hash):
                    request.attempts += 1
                    user.otp_attempts += 1
                    remaining = request.max_attempts - request.attempts
                    if remaining <= 0:
                        self._lock_out(user, request, now)
                        locked_out = True
                    else:
                        failure = OTPError(
                            OTPErrorCode.INVALID_CODE,
                            f"Invalid OTP. {remaining} attempts remaining.",
                            remaining_attempts=remaining,
                        )
                else:
                    request.status = OTPStatus.VERIFIED
                    request.verified_at = now
                    user.otp_attempts = 0
                    user.last_login_at = now
                    issued = await self.sessions.issue(
                        tx, user, now, user_agent=user_agent, ip_address=ip_address
                    )

            if locked_out:
                failure = OTPError(
                    OTPErrorCode.MAX_ATTEMPTS_REACHED,
                    f"Maximum OTP attempts reached. Account blocked for {self.config.lockout_minutes} minutes.",
                    blocked_until=user.otp_blocked_until,
                )
                logger.warning(
                    "Account locked out",
                    user_id=str(user.id),
                    request_id=str(request.id),
                    blocked_until=user.otp_blocked_until.isoformat(),
                )
                if self.metrics is not None:
                    self.metrics.record_lockout()
                await self.dispatcher.send_security_alert(
                    request.delivery_method,
                    request.delivery_target,
                    name=user.full_name,
                    alert_type=LOCKOUT_ALERT,
                    correlation_id=str(request.id),
                )

            if failure is not None:
                raise failure

        logger.info("OTP verified", user_id=str(user.id), request_id=str(request.id))
        return ValidationResult(
            success=True,
            message="OTP validated successfully",
            access_token=issued.access_token,
            refresh_token=issued.refresh_token,
            expires_at=issued.expires_at,
            user=UserProfile.from_user(user),
        )

    async def _resend(self, identifier: str, method: DeliveryMethod) -> GenerationResult:
        user = await self._resolve(identifier)

        async with self.locks.hold(user.id):
            now = self.clock.now()
            code, salt, code_hash = self.generator.generate_hashed()

            async with self.store.transaction() as tx:
                user = await self._lock_user(tx, user.id)
                self._ensure_not_blocked(user, now)

                request = await tx.latest_active_request(user.id, now)
                if request is None:
                    raise OTPError(OTPErrorCode.NO_ACTIVE_OTP)
                if request.retry_count >= self.config.max_retries:
                    raise OTPError(OTPErrorCode.MAX_RETRIES_REACHED)

                target = request.delivery_target
                if method != request.delivery_method:
                    target = self._target_for(user, method)

                request.next_retry_at = now + self.config.retry_interval(request.retry_count)
                request.retry_count += 1
                request.code_hash = code_hash
                request.salt = salt
                request.created_at = now
                request.expires_at = now + self.config.expiry_window
                request.attempts = 0
                request.delivery_method = method
                request.delivery_target = target
                user.last_otp_request_at = now

            logger.info(
                "OTP resent",
                user_id=str(user.id),
                request_id=str(request.id),
                method=method.value,
                retry_count=request.retry_count,
            )

            await self._deliver(user, request, code)

        return GenerationResult(
            success=True,
            message=f"OTP resent to your {method.value}",
            expires_at=request.expires_at,
            retry_count=request.retry_count,
            delivery_method=method,
            next_retry_at=request.next_retry_at,
            otp_code=code if self.config.expose_code else None,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _resolve(self, identifier: str) -> User:
        user = await self.identity.resolve(identifier)
        if user is None:
            raise OTPError(OTPErrorCode.USER_NOT_FOUND)
        return user

    async def _lock_user(self, tx: StoreTransaction, user_id: uuid.UUID) -> User:
        user = await tx.get_user(user_id, for_update=True)
        if user is None or not user.is_active:
            raise OTPError(OTPErrorCode.USER_NOT_FOUND)
        return user

    def _ensure_not_blocked(self, user: User, now) -> None:
        if user.is_otp_blocked(now):
            until = user.otp_blocked_until
            raise OTPError(
                OTPErrorCode.ACCOUNT_BLOCKED,
                f"Account is temporarily blocked. Try again after {until:%H:%M:%S} UTC",
                blocked_until=until,
            )

    def _target_for(self, user: User, method: DeliveryMethod) -> str:
        target = user.contact_for(method)
        if not target:
            raise OTPError(
                OTPErrorCode.DELIVERY_FAILED,
                "No phone number on file for SMS delivery"
                if method == DeliveryMethod.SMS
                else "No email address on file",
            )
        return target

    async def _cancel_active(self, tx: StoreTransaction, user_id: uuid.UUID, now) -> int:
        requests = await tx.active_requests(user_id, now)
        for request in requests:
            request.status = OTPStatus.CANCELLED
        return len(requests)

    def _lock_out(self, user: User, request: OTPRequest, now) -> None:
        request.status = OTPStatus.MAX_ATTEMPTS_REACHED
        user.otp_blocked_until = now + self.config.lockout_window
        user.otp_attempts = 0

    async def _deliver(self, user: User, request: OTPRequest, code: str) -> None:
        delivered = await self.dispatcher.send_code(
            request.delivery_method,
            request.delivery_target,
            code,
            name=user.full_name,
            expiry_minutes=self.config.expiry_minutes,
            correlation_id=str(request.id),
        )
        if delivered:
            return

        if self.config.cancel_on_delivery_failure:
            async with self.store.transaction() as tx:
                stored = await tx.get_request(request.id)
                if stored is not None and stored.status == OTPStatus.PENDING:
                    stored.status = OTPStatus.CANCELLED
            logger.warning("Undelivered OTP cancelled", request_id=str(request.id))
        else:
            logger.warning("OTP delivery failed, request left active", request_id=str(request.id))

        raise OTPError(OTPErrorCode.DELIVERY_FAILED)

    def _rejected(self, operation: str, result_cls, error: OTPError):
        logger.info(
            "OTP operation rejected",
            operation=operation,
            code=error.code.value,
            reason=error.message,
        )
        self._record(operation, error.code.value)
        return result_cls.failure(error)

    def _faulted(self, operation: str, result_cls, message: str):
        logger.exception("OTP operation failed", operation=operation)
        self._record(operation, OTPErrorCode.UNEXPECTED.value)
        return result_cls.failure(OTPError(OTPErrorCode.UNEXPECTED, message))

    def _record(self, operation: str, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_operation(operation, outcome)

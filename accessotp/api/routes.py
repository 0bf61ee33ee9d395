"""
API Routes
==========
OTP lifecycle, session and registration endpoints.
"""

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

import structlog

from ..delivery.dispatcher import DeliveryDispatcher
from ..identity import IdentityResolver
from ..models import DeliveryMethod, UserSession
from ..otp.engine import OTPEngine
from ..otp.results import UserProfile
from ..sessions import SessionIssuer
from .dependencies import (
    client_ip,
    get_dispatcher,
    get_engine,
    get_identity,
    get_sessions,
    rate_limit,
    require_session,
)
from .schemas import (
    CancelOTPRequest,
    ErrorResponse,
    GenerateOTPRequest,
    LoginResponse,
    OTPResponse,
    RefreshTokenRequest,
    RegisterUserRequest,
    ResendOTPRequest,
    RevokeResponse,
    SessionResponse,
    StatusResponse,
    TokenResponse,
    UserResponse,
    ValidateOTPRequest,
)

logger = structlog.get_logger(__name__)

otp_router = APIRouter(prefix="/otp", tags=["OTP"])
auth_router = APIRouter(prefix="/auth", tags=["Sessions"])
users_router = APIRouter(prefix="/users", tags=["Users"])

_ERRORS = {400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}


def _failure(result) -> JSONResponse:
    return JSONResponse(status_code=result.error.http_status, content=result.error.to_dict())


@otp_router.post(
    "/generate",
    response_model=OTPResponse,
    response_model_exclude_none=True,
    responses=_ERRORS,
    dependencies=[rate_limit("generate")],
)
async def generate_otp(body: GenerateOTPRequest, engine: OTPEngine = Depends(get_engine)):
    """Issue a new code to the user's phone or email."""
    result = await engine.generate(body.identifier, body.delivery_method)
    if not result.success:
        return _failure(result)
    return OTPResponse.from_result(result)


@otp_router.post("/validate", response_model=LoginResponse, responses=_ERRORS)
async def validate_otp(
    body: ValidateOTPRequest,
    request: Request,
    engine: OTPEngine = Depends(get_engine),
):
    """Verify a code and return a fresh session."""
    result = await engine.validate(
        body.identifier,
        body.otp_code,
        user_agent=request.headers.get("user-agent"),
        ip_address=client_ip(request),
    )
    if not result.success:
        return _failure(result)
    return LoginResponse.from_result(result)


@otp_router.post(
    "/resend",
    response_model=OTPResponse,
    response_model_exclude_none=True,
    responses=_ERRORS,
    dependencies=[rate_limit("resend")],
)
async def resend_otp(body: ResendOTPRequest, engine: OTPEngine = Depends(get_engine)):
    """Send a fresh code for the current cycle."""
    result = await engine.resend(body.identifier, body.delivery_method)
    if not result.success:
        return _failure(result)
    return OTPResponse.from_result(result)


@otp_router.post("/cancel", response_model=bool)
async def cancel_otp(body: CancelOTPRequest, engine: OTPEngine = Depends(get_engine)) -> bool:
    return await engine.cancel(body.identifier)


@otp_router.get("/status/{identifier}", response_model=StatusResponse)
async def otp_status(identifier: str, engine: OTPEngine = Depends(get_engine)):
    return StatusResponse.from_result(await engine.status(identifier))


@auth_router.post("/refresh", response_model=TokenResponse)
async def refresh_session(body: RefreshTokenRequest, sessions: SessionIssuer = Depends(get_sessions)):
    """Rotate both tokens. Raises 401 for unknown, expired or revoked sessions."""
    issued = await sessions.refresh(body.refresh_token)
    return TokenResponse(
        access_token=issued.access_token,
        refresh_token=issued.refresh_token,
        expires_at=issued.expires_at,
    )


@auth_router.post("/revoke", response_model=RevokeResponse)
async def revoke_session(body: RefreshTokenRequest, sessions: SessionIssuer = Depends(get_sessions)):
    return RevokeResponse(revoked=await sessions.revoke(body.refresh_token))


@auth_router.get("/session", response_model=SessionResponse)
async def current_session(session: UserSession = Depends(require_session)):
    return SessionResponse(
        user_id=session.user_id,
        session_id=session.id,
        expires_at=session.expires_at,
        last_used_at=session.last_used_at,
    )


@users_router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
)
async def register_user(
    body: RegisterUserRequest,
    identity: IdentityResolver = Depends(get_identity),
    dispatcher: DeliveryDispatcher = Depends(get_dispatcher),
):
    """Create a user and send a welcome email."""
    try:
        user = await identity.register(
            email=body.email,
            first_name=body.first_name,
            last_name=body.last_name,
            phone_number=body.phone_number,
        )
    except ValueError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc), "code": "ValidationError"})
    await dispatcher.send_welcome(DeliveryMethod.EMAIL, user.email, name=user.full_name)
    return UserResponse.from_profile(UserProfile.from_user(user))

"""
Authentication Endpoints.

Provides login, logout and the current user.
"""
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from ..models import LoginRequest, LoginResponse, UserResponse, ErrorResponse
from ..deps import (
    get_session_manager,
    get_user_manager,
    get_rate_limits,
    get_client_ip,
    too_many_requests,
    check_global_post_rate_limit,
    require_session,
    next_step_for,
)
from ...auth.cookies import set_session_token_cookie, delete_session_token_cookie
from ...auth.rate_limit import RateLimits
from ...auth.session import SessionManager, generate_session_token
from ...auth.types import SessionFlags, ValidationResult
from ...auth.users import UserManager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        429: {"model": ErrorResponse, "description": "Too many attempts"},
    },
    dependencies=[Depends(check_global_post_rate_limit)],
)
async def login(
    credentials: LoginRequest,
    request: Request,
    response: Response,
    users: UserManager = Depends(get_user_manager),
    sessions: SessionManager = Depends(get_session_manager),
    limits: RateLimits = Depends(get_rate_limits),
):
    """
    Authenticate with email and password.

    Sets the session cookie and also returns the token for bearer use.
    Repeated attempts against one account are throttled with an
    escalating delay that resets on success.
    """
    ip = get_client_ip(request)
    if ip is not None and not limits.login_ip.check(ip):
        raise too_many_requests(retry_after=1)

    user = users.get_user_from_email(credentials.email)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if ip is not None and not limits.login_ip.consume(ip):
        raise too_many_requests(retry_after=1)

    if not limits.login_throttler.consume(user.id):
        logger.warning(f"Login throttled for user {user.id}")
        raise too_many_requests("Too many login attempts. Try again later.")

    if not users.verify_user_password(user.id, credentials.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    limits.login_throttler.reset(user.id)

    token = generate_session_token()
    session = sessions.create_session(
        token,
        user.id,
        SessionFlags(two_factor_verified=False),
        ip_address=ip or "",
        user_agent=request.headers.get("User-Agent", ""),
        remember_me=credentials.remember_me,
    )
    set_session_token_cookie(response, token, session.expires_at, credentials.remember_me)

    logger.info(f"User logged in: {user.id}")

    return LoginResponse(
        access_token=token,
        expires_at=session.expires_at,
        user_id=user.id,
        email=user.email,
        email_verified=user.email_verified,
        registered_2fa=user.registered_2fa,
        next_step=next_step_for(ValidationResult.success(session, user)),
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    response: Response,
    result: ValidationResult = Depends(require_session),
    sessions: SessionManager = Depends(get_session_manager),
):
    """
    Logout current session.

    Deletes the session and clears the session cookie.
    """
    sessions.invalidate_session(result.session.id)
    delete_session_token_cookie(response)
    logger.info(f"User logged out: {result.user.id}")

    return None


@router.post("/logout/all", status_code=status.HTTP_204_NO_CONTENT)
async def logout_all(
    response: Response,
    result: ValidationResult = Depends(require_session),
    sessions: SessionManager = Depends(get_session_manager),
):
    """
    Logout from all devices.

    Invalidates all sessions for the current user.
    """
    count = sessions.invalidate_user_sessions(result.user.id)
    delete_session_token_cookie(response)
    logger.info(f"User {result.user.id} logged out of {count} sessions")

    return None


@router.get("/me", response_model=UserResponse)
async def get_me(result: ValidationResult = Depends(require_session)):
    """Get current user and session state."""
    user, session = result.user, result.session
    return UserResponse(
        **asdict(user),
        two_factor_verified=session.two_factor_verified,
        session_expires_at=session.expires_at,
    )

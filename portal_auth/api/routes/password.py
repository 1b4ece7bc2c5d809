"""
Password Endpoints.

Forgot/reset password with an emailed code, and password change for a
signed-in user.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from ..models import (
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    ResetCodeCheckRequest,
    ResetPasswordRequest,
    UpdatePasswordRequest,
    MessageResponse,
    ErrorResponse,
)
from ..deps import (
    get_session_manager,
    get_user_manager,
    get_password_reset_manager,
    get_email_sender,
    get_rate_limits,
    get_client_ip,
    too_many_requests,
    check_global_post_rate_limit,
    require_verified_session,
)
from ...auth.cookies import (
    set_session_token_cookie,
    delete_session_token_cookie,
    set_password_reset_session_token_cookie,
    delete_password_reset_session_token_cookie,
)
from ...auth.mail import EmailSender
from ...auth.password_reset import PasswordResetManager
from ...auth.passwords import verify_password_strength
from ...auth.rate_limit import RateLimits
from ...auth.session import SessionManager, generate_session_token
from ...auth.types import Role, SessionFlags, ValidationResult
from ...auth.users import UserManager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth/password", tags=["Password"])


def _check_new_password(password: str, confirm_password: str) -> None:
    if password != confirm_password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Passwords do not match")
    if not verify_password_strength(password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Weak password")


@router.post(
    "/forgot",
    response_model=ForgotPasswordResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Account does not exist"},
        429: {"model": ErrorResponse, "description": "Too many requests"},
    },
    dependencies=[Depends(check_global_post_rate_limit)],
)
async def forgot_password(
    data: ForgotPasswordRequest,
    request: Request,
    response: Response,
    users: UserManager = Depends(get_user_manager),
    resets: PasswordResetManager = Depends(get_password_reset_manager),
    sender: EmailSender = Depends(get_email_sender),
    limits: RateLimits = Depends(get_rate_limits),
):
    """
    Email a reset code and start a reset session.

    Admin and merchant accounts are managed by an administrator and cannot
    reset their own password. Earlier reset sessions of the user are
    replaced.
    """
    ip = get_client_ip(request)
    if ip is not None and not limits.password_reset_ip.check(ip):
        raise too_many_requests(retry_after=60)

    user = users.get_user_from_email(data.email)
    if user is None or user.has_role(Role.ADMIN, Role.MERCHANT):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account does not exist")

    if ip is not None and not limits.password_reset_ip.consume(ip):
        raise too_many_requests(retry_after=60)
    if not limits.password_reset_user.consume(user.id):
        raise too_many_requests(retry_after=60)

    resets.invalidate_user_password_reset_sessions(user.id)
    token = generate_session_token()
    reset_session = resets.create_password_reset_session(token, user.id, user.email)

    sender.send_password_reset_email(reset_session.email, reset_session.code)
    set_password_reset_session_token_cookie(response, token, reset_session.expires_at)

    return ForgotPasswordResponse(
        message="A reset code was sent to your email",
        expires_at=reset_session.expires_at,
    )


@router.post(
    "/reset/check",
    response_model=MessageResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid or expired code"},
        429: {"model": ErrorResponse, "description": "Too many requests"},
    },
    dependencies=[Depends(check_global_post_rate_limit)],
)
async def check_reset_code(
    data: ResetCodeCheckRequest,
    request: Request,
    resets: PasswordResetManager = Depends(get_password_reset_manager),
    limits: RateLimits = Depends(get_rate_limits),
):
    """Check an emailed reset code before asking for the new password."""
    ip = get_client_ip(request)
    if ip is not None and not limits.password_reset_ip.check(ip):
        raise too_many_requests(retry_after=60)

    result = resets.get_password_reset_session_by_code(data.code.strip())
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired code")

    if result.session.is_expired():
        resets.invalidate_user_password_reset_sessions(result.user.id)
        expired = JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "Code expired, please request a new one"},
        )
        delete_password_reset_session_token_cookie(expired)
        return expired

    return MessageResponse(message="Code approved", next_step="reset-password")


@router.post(
    "/reset",
    response_model=MessageResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid code or weak password"},
        401: {"model": ErrorResponse, "description": "No valid reset session"},
    },
    dependencies=[Depends(check_global_post_rate_limit)],
)
async def reset_password(
    data: ResetPasswordRequest,
    request: Request,
    response: Response,
    users: UserManager = Depends(get_user_manager),
    sessions: SessionManager = Depends(get_session_manager),
    resets: PasswordResetManager = Depends(get_password_reset_manager),
):
    """
    Set a new password using the reset session cookie and the emailed code.

    Every session of the user is signed out. The emailed code proves the
    address, so an unverified email is marked verified if it is unchanged.
    """
    result = resets.validate_password_reset_session_request(request)
    if not result.ok:
        expired = JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": "Invalid or expired password reset session"},
        )
        delete_password_reset_session_token_cookie(expired)
        return expired

    if not resets.code_matches(result.session, data.code):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid code")

    _check_new_password(data.password, data.confirm_password)

    user_id = result.user.id
    resets.invalidate_user_password_reset_sessions(user_id)
    sessions.invalidate_user_sessions(user_id)
    users.update_user_password(user_id, data.password)
    if users.set_user_as_email_verified_if_email_matches(user_id, result.session.email):
        logger.info(f"Email confirmed by password reset for user: {user_id}")

    delete_password_reset_session_token_cookie(response)
    delete_session_token_cookie(response)

    return MessageResponse(message="Password updated. Please sign in again.", next_step="login")


@router.post(
    "/update",
    response_model=MessageResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Passwords do not match or weak password"},
        401: {"model": ErrorResponse, "description": "Current password incorrect"},
    },
    dependencies=[Depends(check_global_post_rate_limit)],
)
async def update_password(
    data: UpdatePasswordRequest,
    request: Request,
    response: Response,
    result: ValidationResult = Depends(require_verified_session),
    users: UserManager = Depends(get_user_manager),
    sessions: SessionManager = Depends(get_session_manager),
    limits: RateLimits = Depends(get_rate_limits),
):
    """
    Change the password of the signed-in user.

    All sessions are invalidated and a new one replaces the current one.
    """
    user, session = result.user, result.session

    if not limits.login_throttler.consume(user.id):
        raise too_many_requests("Too many attempts. Try again later.")
    if not users.verify_user_password(user.id, data.current_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect password")
    limits.login_throttler.reset(user.id)

    _check_new_password(data.password, data.confirm_password)

    sessions.invalidate_user_sessions(user.id)
    users.update_user_password(user.id, data.password)

    token = generate_session_token()
    new_session = sessions.create_session(
        token,
        user.id,
        SessionFlags(two_factor_verified=session.two_factor_verified),
        ip_address=get_client_ip(request) or "",
        user_agent=request.headers.get("User-Agent", ""),
        remember_me=session.remember_me,
    )
    set_session_token_cookie(response, token, new_session.expires_at, session.remember_me)

    return MessageResponse(message="Password updated")

"""
Email Verification Endpoints.

Verify the account email with a one-time code, resend the code, or start
an email change.
"""
import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from ..models import VerifyEmailRequest, ChangeEmailRequest, MessageResponse, ErrorResponse
from ..deps import (
    get_db,
    get_user_manager,
    get_password_reset_manager,
    get_email_verification_manager,
    get_email_sender,
    get_rate_limits,
    too_many_requests,
    check_global_post_rate_limit,
    require_session,
    require_verified_session,
)
from ...auth.cookies import set_email_verification_request_cookie, delete_email_verification_request_cookie
from ...auth.email_verification import EmailVerificationManager
from ...auth.mail import EmailSender
from ...auth.password_reset import PasswordResetManager
from ...auth.rate_limit import RateLimits
from ...auth.types import ValidationResult
from ...auth.users import UserManager
from ...database.auth_db import AuthDB

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth/email", tags=["Email Verification"])


def _require_two_factor_if_registered(result: ValidationResult) -> None:
    if result.user.registered_2fa and not result.session.two_factor_verified:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Two-factor verification required")


@router.post(
    "/verify",
    response_model=MessageResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid or expired code"},
        429: {"model": ErrorResponse, "description": "Too many attempts"},
    },
    dependencies=[Depends(check_global_post_rate_limit)],
)
async def verify_email(
    data: VerifyEmailRequest,
    request: Request,
    response: Response,
    result: ValidationResult = Depends(require_session),
    users: UserManager = Depends(get_user_manager),
    resets: PasswordResetManager = Depends(get_password_reset_manager),
    verifications: EmailVerificationManager = Depends(get_email_verification_manager),
    sender: EmailSender = Depends(get_email_sender),
    limits: RateLimits = Depends(get_rate_limits),
):
    """
    Confirm the pending email with its code.

    An expired request is replaced and a new code is sent. On success the
    address becomes the account email and pending password resets are
    cancelled.
    """
    _require_two_factor_if_registered(result)
    user = result.user

    if not limits.email_verification.check(user.id):
        raise too_many_requests(retry_after=1800)

    verification_request = verifications.get_user_email_verification_request_from_request(request, response)
    if verification_request is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No pending email verification")

    if not limits.email_verification.consume(user.id):
        raise too_many_requests(retry_after=1800)

    if verification_request.is_expired():
        renewed = verifications.create_email_verification_request(user.id, verification_request.email)
        sender.send_verification_email(renewed.email, renewed.code)
        expired = JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "The code has expired. A new code was sent to your inbox."},
        )
        set_email_verification_request_cookie(expired, renewed.id, renewed.expires_at)
        return expired

    if not hmac.compare_digest(verification_request.code.encode(), data.code.strip().encode()):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Incorrect code")

    verifications.delete_user_email_verification_request(user.id)
    resets.invalidate_user_password_reset_sessions(user.id)
    users.update_user_email_and_set_email_as_verified(user.id, verification_request.email)
    delete_email_verification_request_cookie(response)

    logger.info(f"Email verified for user {user.id}")

    return MessageResponse(
        message="Email verified",
        next_step="done" if user.registered_2fa else "2fa-setup",
    )


@router.post(
    "/resend",
    response_model=MessageResponse,
    responses={
        403: {"model": ErrorResponse, "description": "Email already verified"},
        429: {"model": ErrorResponse, "description": "Too many requests"},
    },
    dependencies=[Depends(check_global_post_rate_limit)],
)
async def resend_verification_code(
    request: Request,
    response: Response,
    result: ValidationResult = Depends(require_session),
    verifications: EmailVerificationManager = Depends(get_email_verification_manager),
    sender: EmailSender = Depends(get_email_sender),
    limits: RateLimits = Depends(get_rate_limits),
):
    """Send a new code for the pending request, or for the account email."""
    _require_two_factor_if_registered(result)
    user = result.user

    if not limits.send_verification_email.check(user.id):
        raise too_many_requests(retry_after=600)

    pending = verifications.get_user_email_verification_request_from_request(request, response)
    if pending is None:
        if user.email_verified:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Email already verified")
        email = user.email
    else:
        email = pending.email

    if not limits.send_verification_email.consume(user.id):
        raise too_many_requests(retry_after=600)

    verification_request = verifications.create_email_verification_request(user.id, email)
    sender.send_verification_email(verification_request.email, verification_request.code)
    set_email_verification_request_cookie(response, verification_request.id, verification_request.expires_at)

    return MessageResponse(message="A new code was sent to your inbox.", next_step="verify-email")


@router.post(
    "/change",
    response_model=MessageResponse,
    responses={
        409: {"model": ErrorResponse, "description": "Email already in use"},
        429: {"model": ErrorResponse, "description": "Too many requests"},
    },
    dependencies=[Depends(check_global_post_rate_limit)],
)
async def change_email(
    data: ChangeEmailRequest,
    response: Response,
    result: ValidationResult = Depends(require_verified_session),
    db: AuthDB = Depends(get_db),
    verifications: EmailVerificationManager = Depends(get_email_verification_manager),
    sender: EmailSender = Depends(get_email_sender),
    limits: RateLimits = Depends(get_rate_limits),
):
    """
    Start changing the account email.

    The new address only replaces the current one once verified.
    """
    user = result.user

    if db.email_exists(data.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="This email is already used")

    if not limits.send_verification_email.consume(user.id):
        raise too_many_requests(retry_after=600)

    verification_request = verifications.create_email_verification_request(user.id, data.email)
    sender.send_verification_email(verification_request.email, verification_request.code)
    set_email_verification_request_cookie(response, verification_request.id, verification_request.expires_at)

    return MessageResponse(message="A verification code was sent to the new address.", next_step="verify-email")

"""
Administrator credential resets.

ADMIN and MERCHANT accounts cannot use the self-service password reset;
an administrator resets their password or two-factor setup here.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ..models import MessageResponse, ErrorResponse
from ..deps import (
    get_session_manager,
    get_user_manager,
    get_two_factor_manager,
    get_password_reset_manager,
    get_email_sender,
    check_global_post_rate_limit,
    require_admin_session,
)
from ...auth.codes import generate_temporary_password
from ...auth.mail import EmailSender
from ...auth.password_reset import PasswordResetManager
from ...auth.session import SessionManager
from ...auth.two_factor import TwoFactorManager
from ...auth.types import ValidationResult
from ...auth.users import UserManager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth/admin", tags=["Administration"])

ADMIN_RESPONSES = {
    403: {"model": ErrorResponse, "description": "Administrator access required"},
    404: {"model": ErrorResponse, "description": "User not found"},
}


@router.post(
    "/users/{user_id}/password/reset",
    response_model=MessageResponse,
    responses=ADMIN_RESPONSES,
    dependencies=[Depends(check_global_post_rate_limit)],
)
async def reset_user_password(
    user_id: str,
    admin: ValidationResult = Depends(require_admin_session),
    users: UserManager = Depends(get_user_manager),
    sessions: SessionManager = Depends(get_session_manager),
    resets: PasswordResetManager = Depends(get_password_reset_manager),
    sender: EmailSender = Depends(get_email_sender),
):
    """
    Replace a user's password with a generated one and email it to them.

    The user is signed out everywhere and pending reset requests are dropped.
    """
    user = users.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    password = generate_temporary_password()
    users.update_user_password(user.id, password)
    resets.invalidate_user_password_reset_sessions(user.id)
    sessions.invalidate_user_sessions(user.id)

    sender.send_user_password_reset_email(user.email, user.first_name, password)
    logger.info(f"Password of user {user.id} reset by administrator {admin.user.id}")

    return MessageResponse(message="Password successfully reset")


@router.post(
    "/users/{user_id}/2fa/reset",
    response_model=MessageResponse,
    responses=ADMIN_RESPONSES,
    dependencies=[Depends(check_global_post_rate_limit)],
)
async def reset_user_two_factor(
    user_id: str,
    admin: ValidationResult = Depends(require_admin_session),
    users: UserManager = Depends(get_user_manager),
    two_factor: TwoFactorManager = Depends(get_two_factor_manager),
    sender: EmailSender = Depends(get_email_sender),
):
    """Remove a user's TOTP key so they enroll again at next sign-in."""
    user = users.get_user(user_id)
    if user is None or not two_factor.reset_user_2fa(user.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    sender.send_user_two_factor_reset_email(user.email, user.first_name)
    logger.info(f"2FA of user {user.id} reset by administrator {admin.user.id}")

    return MessageResponse(message="Two factor successfully reset")

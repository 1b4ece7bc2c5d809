"""
Two-Factor Authentication Endpoints.

TOTP enrollment and verification, recovery-code reset and recovery code
management.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ..models import (
    TwoFactorSetupResponse,
    TwoFactorSetupConfirmRequest,
    TwoFactorVerifyRequest,
    RecoveryCodeRequest,
    RecoveryCodeResponse,
    MessageResponse,
    ErrorResponse,
)
from ..deps import (
    get_session_manager,
    get_two_factor_manager,
    get_rate_limits,
    too_many_requests,
    check_global_post_rate_limit,
    require_session,
    require_verified_session,
)
from ...auth.mfa import setup_mfa, encode_totp_key, decode_totp_key
from ...auth.rate_limit import RateLimits
from ...auth.session import SessionManager
from ...auth.two_factor import TwoFactorManager
from ...auth.types import ValidationResult

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth/2fa", tags=["Two-Factor Authentication"])


def _require_enrollment_allowed(result: ValidationResult) -> None:
    # Re-enrolling an account that already has 2FA needs a verified session.
    if not result.user.email_verified:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Email not verified")
    if result.user.registered_2fa and not result.session.two_factor_verified:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Two-factor verification required")


def _require_pending_challenge(result: ValidationResult) -> None:
    if not result.user.email_verified:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Email not verified")
    if not result.user.registered_2fa:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Two-factor not set up")
    if result.session.two_factor_verified:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Session already verified")


@router.post(
    "/setup",
    response_model=TwoFactorSetupResponse,
    responses={403: {"model": ErrorResponse, "description": "Email not verified"}},
    dependencies=[Depends(check_global_post_rate_limit)],
)
async def setup_two_factor(result: ValidationResult = Depends(require_session)):
    """
    Start TOTP enrollment.

    Returns a new key with its provisioning URI and QR code. Nothing is
    stored until the key is confirmed with a code from the app.
    """
    _require_enrollment_allowed(result)

    key, uri, qr_code = setup_mfa(result.user.email)
    logger.info(f"2FA setup initiated for user: {result.user.id}")

    return TwoFactorSetupResponse(
        encoded_key=encode_totp_key(key),
        provisioning_uri=uri,
        qr_code_base64=qr_code,
    )


@router.post(
    "/setup/confirm",
    response_model=RecoveryCodeResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid key or code"},
        429: {"model": ErrorResponse, "description": "Too many attempts"},
    },
    dependencies=[Depends(check_global_post_rate_limit)],
)
async def confirm_two_factor_setup(
    data: TwoFactorSetupConfirmRequest,
    result: ValidationResult = Depends(require_session),
    sessions: SessionManager = Depends(get_session_manager),
    two_factor: TwoFactorManager = Depends(get_two_factor_manager),
    limits: RateLimits = Depends(get_rate_limits),
):
    """
    Confirm TOTP enrollment and store the key.

    The current session becomes two-factor verified. The response carries
    the recovery code, which should be shown to the user once.
    """
    _require_enrollment_allowed(result)
    user = result.user

    if not limits.totp_update.check(user.id):
        raise too_many_requests(retry_after=600)

    key = decode_totp_key(data.encoded_key)
    if key is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid key")

    if not limits.totp_update.consume(user.id):
        raise too_many_requests(retry_after=600)

    if not two_factor.register_totp_key(user.id, key, data.code):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid code")

    sessions.set_session_as_2fa_verified(result.session.id)
    recovery_code = two_factor.get_user_recovery_code(user.id)

    logger.info(f"2FA enabled for user: {user.id}")

    return RecoveryCodeResponse(
        recovery_code=recovery_code,
        message="Two-factor authentication enabled. Store your recovery code safely.",
    )


@router.post(
    "/verify",
    response_model=MessageResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid code"},
        429: {"model": ErrorResponse, "description": "Too many attempts"},
    },
    dependencies=[Depends(check_global_post_rate_limit)],
)
async def verify_two_factor(
    data: TwoFactorVerifyRequest,
    result: ValidationResult = Depends(require_session),
    sessions: SessionManager = Depends(get_session_manager),
    two_factor: TwoFactorManager = Depends(get_two_factor_manager),
    limits: RateLimits = Depends(get_rate_limits),
):
    """Complete the 2FA challenge for the current session."""
    _require_pending_challenge(result)
    user = result.user

    if not limits.totp.check(user.id):
        raise too_many_requests(retry_after=1800)

    if not limits.totp.consume(user.id):
        raise too_many_requests(retry_after=1800)

    if not two_factor.verify_user_totp(user.id, data.code):
        logger.warning(f"Invalid 2FA code for user: {user.id}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid code")

    limits.totp.reset(user.id)
    sessions.set_session_as_2fa_verified(result.session.id)

    return MessageResponse(message="Two-factor verification complete", next_step="done")


@router.post(
    "/recovery",
    response_model=MessageResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid recovery code"},
        429: {"model": ErrorResponse, "description": "Too many attempts"},
    },
    dependencies=[Depends(check_global_post_rate_limit)],
)
async def reset_two_factor_with_recovery_code(
    data: RecoveryCodeRequest,
    result: ValidationResult = Depends(require_session),
    two_factor: TwoFactorManager = Depends(get_two_factor_manager),
    limits: RateLimits = Depends(get_rate_limits),
):
    """
    Remove two-factor authentication with the recovery code.

    The user must set up 2FA again; the recovery code is replaced.
    """
    _require_pending_challenge(result)
    user = result.user

    if not limits.recovery_code.check(user.id):
        raise too_many_requests(retry_after=3600)
    if not limits.recovery_code.consume(user.id):
        raise too_many_requests(retry_after=3600)

    if not two_factor.reset_user_2fa_with_recovery_code(user.id, data.code):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid recovery code")

    limits.recovery_code.reset(user.id)

    return MessageResponse(message="Two-factor authentication removed", next_step="2fa-setup")


@router.get("/recovery-code", response_model=RecoveryCodeResponse)
async def get_recovery_code(
    result: ValidationResult = Depends(require_verified_session),
    two_factor: TwoFactorManager = Depends(get_two_factor_manager),
):
    """Show the current recovery code."""
    return RecoveryCodeResponse(recovery_code=two_factor.get_user_recovery_code(result.user.id))


@router.post(
    "/recovery-code/regenerate",
    response_model=RecoveryCodeResponse,
    dependencies=[Depends(check_global_post_rate_limit)],
)
async def regenerate_recovery_code(
    result: ValidationResult = Depends(require_verified_session),
    two_factor: TwoFactorManager = Depends(get_two_factor_manager),
):
    """Replace the recovery code. The previous one stops working."""
    recovery_code = two_factor.reset_user_recovery_code(result.user.id)
    return RecoveryCodeResponse(
        recovery_code=recovery_code,
        message="Recovery code regenerated. The previous code no longer works.",
    )

"""
Pydantic Models for the Merchant Portal Auth API.

Request and response models for all API endpoints.
"""
from datetime import datetime
from typing import Optional, List, Dict
from pydantic import BaseModel, EmailStr, Field, ConfigDict

from ..auth.types import AdminProfile, MerchantProfile, ConsumerProfile


# ============================================
# Authentication Models
# ============================================

class LoginRequest(BaseModel):
    """
    User login request.

    remember_me keeps the session for 30 days instead of 1 day and makes
    the session cookie persistent.
    """
    email: EmailStr = Field(..., description="Registered email address")
    password: str = Field(..., description="Account password")
    remember_me: bool = Field(False, description="Keep the session for 30 days")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "owner@brand.com.au",
                "password": "correct horse battery staple",
                "remember_me": True
            }
        }
    )


class LoginResponse(BaseModel):
    """
    Login result.

    next_step tells the client which screen to show:
    verify-email, 2fa-setup or 2fa.
    """
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user_id: str
    email: str
    email_verified: bool
    registered_2fa: bool
    next_step: str


class UserResponse(BaseModel):
    """Current user with the role profile attached to this session."""
    id: str
    email: str
    email_verified: bool
    registered_2fa: bool
    two_factor_verified: bool
    first_name: str
    last_name: str
    role: List[str] = []
    image: Optional[str] = None
    admin_user: Optional[AdminProfile] = None
    merchant_user: Optional[MerchantProfile] = None
    consumer_user: Optional[ConsumerProfile] = None
    session_expires_at: datetime


class MessageResponse(BaseModel):
    message: str
    next_step: Optional[str] = None


# ============================================
# Two-Factor Models
# ============================================

class TwoFactorSetupResponse(BaseModel):
    """
    Enrollment material for an authenticator app.

    encoded_key must be sent back with the first code to confirm setup.
    """
    encoded_key: str = Field(..., description="Base64 TOTP key")
    provisioning_uri: str
    qr_code_base64: str


class TwoFactorSetupConfirmRequest(BaseModel):
    encoded_key: str = Field(..., description="Base64 TOTP key from /auth/2fa/setup")
    code: str = Field(..., min_length=6, max_length=6)


class TwoFactorVerifyRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=6)


class RecoveryCodeRequest(BaseModel):
    code: str = Field(..., min_length=1, description="Recovery code shown at 2FA setup")


class RecoveryCodeResponse(BaseModel):
    """
    The user's recovery code.

    It can be used once to remove two-factor authentication; it is
    replaced after use.
    """
    recovery_code: str
    message: Optional[str] = None


# ============================================
# Password Models
# ============================================

class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ForgotPasswordResponse(BaseModel):
    message: str
    expires_at: datetime


class ResetCodeCheckRequest(BaseModel):
    code: str = Field(..., min_length=1)


class ResetPasswordRequest(BaseModel):
    """
    Complete a password reset.

    Requires the password_reset_session cookie and the emailed code.
    All sessions of the user are signed out afterwards.
    """
    code: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8, max_length=255)
    confirm_password: str

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "code": "40318275",
                "password": "new correct horse battery",
                "confirm_password": "new correct horse battery"
            }
        }
    )


class UpdatePasswordRequest(BaseModel):
    """
    Password change for a signed-in user.

    Other sessions are invalidated; the current one is re-issued.
    """
    current_password: str
    password: str = Field(..., min_length=8, max_length=255)
    confirm_password: str


# ============================================
# Email Verification Models
# ============================================

class VerifyEmailRequest(BaseModel):
    code: str = Field(..., min_length=1)


class ChangeEmailRequest(BaseModel):
    email: EmailStr


# ============================================
# Health & Errors
# ============================================

class HealthStatus(BaseModel):
    status: str
    version: str
    services: Dict[str, str]
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Error body returned by the exception handlers."""
    error: str
    detail: Optional[str] = None
    code: Optional[str] = None
    request_id: Optional[str] = None

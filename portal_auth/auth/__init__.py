"""
Authentication building blocks for the merchant portal.

This package provides:
- Session management (session)
- Password reset and email verification flows
- TOTP two-factor and recovery codes (mfa, two_factor)
- Rate limiting (rate_limit)
- Encryption at rest and password hashing

Modules that touch the database are imported directly, e.g.
``from portal_auth.auth.session import SessionManager``.
"""
from .types import (
    User,
    Session,
    SessionFlags,
    PasswordResetSession,
    EmailVerificationRequest,
    ValidationResult,
    FailureReason,
    Role,
)
from .rate_limit import ExpiringTokenBucket, RefillingTokenBucket, Throttler, RateLimits

__all__ = [
    "User",
    "Session",
    "SessionFlags",
    "PasswordResetSession",
    "EmailVerificationRequest",
    "ValidationResult",
    "FailureReason",
    "Role",
    "ExpiringTokenBucket",
    "RefillingTokenBucket",
    "Throttler",
    "RateLimits",
]

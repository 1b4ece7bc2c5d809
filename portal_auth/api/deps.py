"""
FastAPI Dependencies for the Merchant Portal Auth API.

Provides:
- Redis client
- Database and manager dependencies
- Session authentication dependencies
- Rate limit access (RateLimits owned by the application)
"""
import os
import logging
from typing import Optional

import redis
from fastapi import Depends, HTTPException, status, Request

from ..auth.email_verification import EmailVerificationManager
from ..auth.encryption import CredentialEncryptor
from ..auth.mail import EmailSender, LoggingEmailSender
from ..auth.password_reset import PasswordResetManager
from ..auth.rate_limit import RateLimits
from ..auth.session import SessionManager
from ..auth.two_factor import TwoFactorManager
from ..auth.types import Role, ValidationResult
from ..auth.users import UserManager
from ..database.auth_db import AuthDB, get_auth_db

logger = logging.getLogger(__name__)


# ============================================
# Redis Client
# ============================================

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """
    Get Redis client singleton.

    Returns None if Redis is not configured or unavailable.
    """
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    host = os.getenv("REDIS_HOST", "localhost")
    port = int(os.getenv("REDIS_PORT", "6379"))
    password = os.getenv("REDIS_PASSWORD", "") or None
    db = int(os.getenv("REDIS_DB", "0"))

    try:
        _redis_client = redis.Redis(
            host=host,
            port=port,
            password=password,
            db=db,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        _redis_client.ping()
        logger.info(f"Redis connected: {host}:{port}")
        return _redis_client
    except redis.ConnectionError as e:
        logger.warning(f"Redis connection failed: {e}. Rate limiting will use in-memory fallback.")
        _redis_client = None
        return None


# ============================================
# Database & Services
# ============================================

def get_db() -> AuthDB:
    """Get database connection."""
    return get_auth_db()


_encryptor: Optional[CredentialEncryptor] = None
_email_sender: Optional[EmailSender] = None


def get_encryptor() -> CredentialEncryptor:
    """Get encryptor singleton keyed by ENCRYPTION_KEY."""
    global _encryptor
    if _encryptor is None:
        _encryptor = CredentialEncryptor()
    return _encryptor


def get_email_sender() -> EmailSender:
    global _email_sender
    if _email_sender is None:
        _email_sender = LoggingEmailSender()
    return _email_sender


def get_session_manager(db: AuthDB = Depends(get_db)) -> SessionManager:
    return SessionManager(db)


def get_user_manager(
    db: AuthDB = Depends(get_db),
    encryptor: CredentialEncryptor = Depends(get_encryptor),
) -> UserManager:
    return UserManager(db, encryptor)


def get_two_factor_manager(
    db: AuthDB = Depends(get_db),
    encryptor: CredentialEncryptor = Depends(get_encryptor),
) -> TwoFactorManager:
    return TwoFactorManager(db, encryptor)


def get_password_reset_manager(db: AuthDB = Depends(get_db)) -> PasswordResetManager:
    return PasswordResetManager(db)


def get_email_verification_manager(
    db: AuthDB = Depends(get_db),
    sessions: SessionManager = Depends(get_session_manager),
) -> EmailVerificationManager:
    return EmailVerificationManager(db, sessions)


# ============================================
# Rate Limiting
# ============================================

def get_rate_limits(request: Request) -> RateLimits:
    """Rate limiters built at startup and stored on app.state."""
    return request.app.state.rate_limits


def get_client_ip(request: Request) -> Optional[str]:
    """
    Client address, preferring the first X-Forwarded-For hop.

    Returns None when no address is known; IP-keyed limits are then skipped.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def too_many_requests(detail: str = "Too many requests", retry_after: int = 60) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=detail,
        headers={"Retry-After": str(retry_after)},
    )


async def check_global_post_rate_limit(
    request: Request,
    limits: RateLimits = Depends(get_rate_limits),
) -> None:
    """
    Per-IP budget shared by all mutating auth endpoints.

    Raises HTTPException 429 if limit exceeded.
    """
    ip = get_client_ip(request)
    if ip is not None and not limits.global_ip.consume(ip, 3):
        logger.warning(f"Global rate limit exceeded for {ip}")
        raise too_many_requests(retry_after=1)


# ============================================
# Authentication Dependencies
# ============================================

async def get_current_session(
    request: Request,
    sessions: SessionManager = Depends(get_session_manager),
) -> ValidationResult:
    """Validate the session cookie or bearer token. Never raises."""
    return sessions.get_current_session(request)


async def require_session(
    result: ValidationResult = Depends(get_current_session),
) -> ValidationResult:
    """
    Require a valid session.

    Raises:
        HTTPException: 401 if the session is missing, invalid or expired.
    """
    if not result.ok:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return result


async def require_verified_session(
    result: ValidationResult = Depends(require_session),
) -> ValidationResult:
    """
    Require a fully authenticated session.

    The email must be verified, 2FA must be registered, and this session
    must have passed the 2FA challenge.
    """
    user, session = result.user, result.session
    if not user.email_verified:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Email not verified")
    if not user.registered_2fa:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Two-factor setup required")
    if not session.two_factor_verified:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Two-factor verification required")
    return result


async def require_admin_session(
    result: ValidationResult = Depends(require_verified_session),
) -> ValidationResult:
    """Require a fully authenticated session of an ADMIN user."""
    if not result.user.has_role(Role.ADMIN):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator access required")
    return result


def next_step_for(result: ValidationResult) -> str:
    """Where a client should send the user after a state change."""
    if not result.user.email_verified:
        return "verify-email"
    if not result.user.registered_2fa:
        return "2fa-setup"
    if not result.session.two_factor_verified:
        return "2fa"
    return "done"

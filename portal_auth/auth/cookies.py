"""
Cookie helpers for the session, password reset and email verification flows.

All cookies are httponly, path=/, samesite=lax and secure when
APP_ENV=production. The email verification cookie holds only the request
id, never the code or address.
"""
import os
from datetime import datetime
from typing import Optional

from starlette.responses import Response

SESSION_COOKIE = "session"
PASSWORD_RESET_COOKIE = "password_reset_session"
EMAIL_VERIFICATION_COOKIE = "email_verification"


def _secure() -> bool:
    return os.getenv("APP_ENV", "development") == "production"


def _set(response: Response, name: str, value: str, expires: Optional[datetime]) -> None:
    response.set_cookie(
        key=name,
        value=value,
        expires=expires,
        path="/",
        secure=_secure(),
        httponly=True,
        samesite="lax",
    )


def _delete(response: Response, name: str) -> None:
    response.set_cookie(
        key=name,
        value="",
        max_age=0,
        path="/",
        secure=_secure(),
        httponly=True,
        samesite="lax",
    )


def set_session_token_cookie(
    response: Response, token: str, expires_at: datetime, remember_me: bool
) -> None:
    """Persistent cookie when remember_me, browser-session cookie otherwise."""
    _set(response, SESSION_COOKIE, token, expires_at if remember_me else None)


def delete_session_token_cookie(response: Response) -> None:
    _delete(response, SESSION_COOKIE)


def set_password_reset_session_token_cookie(response: Response, token: str, expires_at: datetime) -> None:
    _set(response, PASSWORD_RESET_COOKIE, token, expires_at)


def delete_password_reset_session_token_cookie(response: Response) -> None:
    _delete(response, PASSWORD_RESET_COOKIE)


def set_email_verification_request_cookie(response: Response, request_id: str, expires_at: datetime) -> None:
    _set(response, EMAIL_VERIFICATION_COOKIE, request_id, expires_at)


def delete_email_verification_request_cookie(response: Response) -> None:
    _delete(response, EMAIL_VERIFICATION_COOKIE)

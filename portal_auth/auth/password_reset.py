"""
Password reset flow.

A reset session is created when a reset is requested: its id is the hash of
a token kept in the password_reset_session cookie, and it carries a numeric
code that is emailed to the user. Reset sessions live for 10 minutes and
are deleted on use, on expiry detection, or when the user's reset sessions
are invalidated.

The code is stored in plaintext, unlike the token. It is short-lived and
single-use, but it is a weaker secret than the token and must not be
trusted on its own for anything beyond the reset it was issued for.
"""
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from starlette.requests import Request
from starlette.responses import Response

from .codes import hash_token, generate_reset_password_code
from .cookies import PASSWORD_RESET_COOKIE, delete_password_reset_session_token_cookie
from .types import PasswordResetSession, ValidationResult, FailureReason
from ..database.auth_db import AuthDB

logger = logging.getLogger(__name__)

PASSWORD_RESET_LIFETIME = timedelta(minutes=10)


class PasswordResetManager:
    """Creates and validates password reset sessions."""

    def __init__(self, db: AuthDB):
        self.db = db

    def create_password_reset_session(self, token: str, user_id: str, email: str) -> PasswordResetSession:
        """
        Persist a reset session for token.

        Does not remove earlier reset sessions of the user; call
        invalidate_user_password_reset_sessions first when issuing a new one.

        Returns:
            The reset session, including the plaintext code to email.
        """
        reset_session = PasswordResetSession(
            id=hash_token(token),
            user_id=user_id,
            email=email,
            code=generate_reset_password_code(),
            expires_at=datetime.now(timezone.utc) + PASSWORD_RESET_LIFETIME,
        )
        self.db.insert_password_reset_session(reset_session)
        logger.info(f"Created password reset session for user {user_id}")
        return reset_session

    def validate_password_reset_session_token(self, token: str) -> ValidationResult:
        found = self.db.find_password_reset_session_with_user(hash_token(token))
        if found is None:
            return ValidationResult.failure(FailureReason.NOT_FOUND)

        reset_session, user = found
        if reset_session.is_expired():
            self.db.delete_password_reset_session(reset_session.id)
            return ValidationResult.failure(FailureReason.EXPIRED)

        return ValidationResult.success(reset_session, user)

    def get_password_reset_session_by_code(self, code: str) -> ValidationResult:
        """
        Look a reset session up by its emailed code.

        Expiry is not enforced here; callers check session.is_expired().
        """
        found = self.db.find_password_reset_session_by_code(code)
        if found is None:
            return ValidationResult.failure(FailureReason.NOT_FOUND)
        reset_session, user = found
        return ValidationResult.success(reset_session, user)

    def invalidate_user_password_reset_sessions(self, user_id: str) -> int:
        return self.db.delete_user_password_reset_sessions(user_id)

    def validate_password_reset_session_request(
        self, request: Request, response: Optional[Response] = None
    ) -> ValidationResult:
        """
        Validate the reset session named by the request's cookie.

        Clears the cookie on response when it no longer resolves.
        """
        token = request.cookies.get(PASSWORD_RESET_COOKIE)
        if not token:
            return ValidationResult.failure(FailureReason.NOT_FOUND)

        result = self.validate_password_reset_session_token(token)
        if not result.ok and response is not None:
            delete_password_reset_session_token_cookie(response)
        return result

    @staticmethod
    def code_matches(reset_session: PasswordResetSession, code: str) -> bool:
        return hmac.compare_digest(reset_session.code.encode(), code.strip().encode())

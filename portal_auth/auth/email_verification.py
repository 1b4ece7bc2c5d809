"""
Email verification flow.

Each user has at most one pending request: creating one deletes the
previous. The request id is random (not derived from a token) and travels
in the email_verification cookie; the code travels only by email.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from starlette.requests import Request
from starlette.responses import Response

from .codes import generate_request_id, generate_random_otp
from .cookies import EMAIL_VERIFICATION_COOKIE, delete_email_verification_request_cookie
from .session import SessionManager
from .types import EmailVerificationRequest
from ..database.auth_db import AuthDB

logger = logging.getLogger(__name__)

EMAIL_VERIFICATION_LIFETIME = timedelta(minutes=10)


class EmailVerificationManager:
    """Creates and resolves pending email verification requests."""

    def __init__(self, db: AuthDB, sessions: SessionManager):
        self.db = db
        self.sessions = sessions

    def create_email_verification_request(self, user_id: str, email: str) -> EmailVerificationRequest:
        """Replace any pending request of user_id with a new one for email."""
        self.delete_user_email_verification_request(user_id)

        request = EmailVerificationRequest(
            id=generate_request_id(),
            user_id=user_id,
            email=email.lower().strip(),
            code=generate_random_otp(),
            expires_at=datetime.now(timezone.utc) + EMAIL_VERIFICATION_LIFETIME,
        )
        self.db.insert_email_verification_request(request)
        logger.info(f"Created email verification request for user {user_id}")
        return request

    def get_user_email_verification_request(self, user_id: str, request_id: str) -> Optional[EmailVerificationRequest]:
        return self.db.find_email_verification_request(user_id, request_id)

    def delete_user_email_verification_request(self, user_id: str) -> int:
        return self.db.delete_user_email_verification_request(user_id)

    def get_user_email_verification_request_from_request(
        self, request: Request, response: Optional[Response] = None
    ) -> Optional[EmailVerificationRequest]:
        """
        Resolve the pending request named by the cookie for the current user.

        The id alone is not enough: the request must belong to the user of
        the current session. Clears the cookie when the id does not resolve.
        """
        result = self.sessions.get_current_session(request)
        if not result.ok:
            return None

        request_id = request.cookies.get(EMAIL_VERIFICATION_COOKIE)
        if not request_id:
            return None

        verification_request = self.get_user_email_verification_request(result.user.id, request_id)
        if verification_request is None and response is not None:
            delete_email_verification_request_cookie(response)
        return verification_request

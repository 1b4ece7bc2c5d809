"""
Session manager.

Sessions are keyed by hex(sha256(token)); the client holds the token, the
database holds only its hash, so a valid id cannot be derived without the
token.

Expiry is lazy: an expired row is deleted when it is next read, there is no
background sweep. A session read within 15 days of expiry is extended to 30
days from now, whether or not it was created with remember-me.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from starlette.requests import Request

from .codes import generate_session_token as _generate_session_token, hash_token
from .cookies import SESSION_COOKIE
from .types import Session, SessionFlags, ValidationResult, FailureReason
from ..database.auth_db import AuthDB
from ..database.models import IP_ADDRESS_LENGTH, USER_AGENT_LENGTH
from ..utils.secrets import mask_secret

logger = logging.getLogger(__name__)

REMEMBER_ME_LIFETIME = timedelta(days=30)
DEFAULT_LIFETIME = timedelta(days=1)
RENEWAL_WINDOW = timedelta(days=15)


def _lifetime(remember_me: bool) -> timedelta:
    return REMEMBER_ME_LIFETIME if remember_me else DEFAULT_LIFETIME


def generate_session_token() -> str:
    """Random bearer token: 20 bytes, lowercase base32."""
    return _generate_session_token()


def _bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


class SessionManager:
    """
    Issues, validates, renews and invalidates login sessions.

    Example usage:
        sessions = SessionManager(auth_db)
        token = generate_session_token()
        session = sessions.create_session(token, user.id, SessionFlags(), ip, agent, remember_me=True)

        result = sessions.validate_session_token(token)
        if result.ok:
            print(result.user.email)
    """

    def __init__(self, db: AuthDB):
        self.db = db

    def create_session(
        self,
        token: str,
        user_id: str,
        flags: SessionFlags,
        ip_address: str = "",
        user_agent: str = "",
        remember_me: bool = False,
    ) -> Session:
        """
        Persist a new session for token.

        Args:
            token: Bearer token from generate_session_token().
            user_id: Owner of the session.
            flags: Initial two-factor state.
            ip_address: Client address at login.
            user_agent: Client user agent at login.
            remember_me: 30-day session if True, 1-day otherwise.

        Client-supplied ip_address and user_agent are cut to their column
        widths.

        Returns:
            The session. The token is not part of it.
        """
        now = datetime.now(timezone.utc)
        session = Session(
            id=hash_token(token),
            user_id=user_id,
            expires_at=now + _lifetime(remember_me),
            two_factor_verified=flags.two_factor_verified,
            ip_address=ip_address[:IP_ADDRESS_LENGTH],
            user_agent=user_agent[:USER_AGENT_LENGTH],
            remember_me=remember_me,
        )
        self.db.insert_session(session)
        return session

    def validate_session_token(self, token: str) -> ValidationResult:
        """
        Resolve a token to its session and role-shaped user.

        Fails closed: unknown tokens give NOT_FOUND, expired sessions are
        deleted and give EXPIRED.
        """
        session_id = hash_token(token)
        found = self.db.find_session_with_user(session_id)
        if found is None:
            logger.debug(f"No session for token {mask_secret(token)}")
            return ValidationResult.failure(FailureReason.NOT_FOUND)

        session, user = found
        now = datetime.now(timezone.utc)

        if now >= session.expires_at:
            self.db.delete_session(session.id)
            logger.debug(f"Deleted expired session for user {session.user_id}")
            return ValidationResult.failure(FailureReason.EXPIRED)

        if now >= session.expires_at - RENEWAL_WINDOW:
            session.expires_at = now + REMEMBER_ME_LIFETIME
            self.db.update_session_expiry(session.id, session.expires_at)
            logger.debug(f"Renewed session for user {session.user_id} until {session.expires_at}")

        return ValidationResult.success(session, user)

    def get_current_session(self, request: Request) -> ValidationResult:
        """
        Validate the session presented with this request.

        Reads the session cookie, falling back to an Authorization: Bearer
        header. The result is kept on request.state so one request validates
        at most once.
        """
        cached = getattr(request.state, "auth_session", None)
        if cached is not None:
            return cached

        token = request.cookies.get(SESSION_COOKIE) or _bearer_token(request)
        if not token:
            result = ValidationResult.failure(FailureReason.NOT_FOUND)
        else:
            result = self.validate_session_token(token)

        request.state.auth_session = result
        return result

    def invalidate_session(self, session_id: str) -> int:
        return self.db.delete_session(session_id)

    def invalidate_user_sessions(self, user_id: str) -> int:
        return self.db.delete_user_sessions(user_id)

    def set_session_as_2fa_verified(self, session_id: str) -> None:
        self.db.set_session_two_factor_verified(session_id, True)

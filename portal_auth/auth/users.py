"""
User credential operations: account creation, password and email updates.
"""
import logging
from typing import Optional, List

from .codes import generate_random_recovery_code
from .encryption import CredentialEncryptor
from .passwords import hash_password, verify_password
from .types import User
from ..database.auth_db import AuthDB

logger = logging.getLogger(__name__)


class UserManager:
    """Wraps AuthDB user rows with hashing and encryption."""

    def __init__(self, db: AuthDB, encryptor: CredentialEncryptor):
        self.db = db
        self.encryptor = encryptor

    def create_user(
        self,
        email: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
        role: Optional[List[str]] = None,
    ) -> User:
        """
        Create an account with a hashed password and a fresh recovery code.

        Raises:
            ValueError: If email already exists.
        """
        recovery_code = self.encryptor.encrypt_string(generate_random_recovery_code())
        return self.db.create_user(
            email=email,
            password_hash=hash_password(password),
            recovery_code=recovery_code,
            first_name=first_name,
            last_name=last_name,
            role=role,
        )

    def get_user(self, user_id: str) -> Optional[User]:
        return self.db.get_user_by_id(user_id)

    def get_user_from_email(self, email: str) -> Optional[User]:
        return self.db.get_user_by_email(email)

    def get_user_password_hash(self, user_id: str) -> str:
        return self.db.get_user_password_hash(user_id)

    def verify_user_password(self, user_id: str, password: str) -> bool:
        return verify_password(password, self.db.get_user_password_hash(user_id))

    def update_user_password(self, user_id: str, password: str) -> None:
        self.db.update_password(user_id, hash_password(password))
        logger.info(f"Password updated for user {user_id}")

    def update_user_email_and_set_email_as_verified(self, user_id: str, email: str) -> None:
        self.db.update_email_and_set_verified(user_id, email)

    def set_user_as_email_verified_if_email_matches(self, user_id: str, email: str) -> bool:
        return self.db.set_email_verified_if_matches(user_id, email)

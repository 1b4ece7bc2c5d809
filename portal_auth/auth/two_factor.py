"""
Two-factor credentials: TOTP key and recovery code.

Both are stored encrypted on the user row. The recovery code lets a user
drop their TOTP key without it; using it rotates the code, so each code
works once.
"""
import hmac
import logging
from typing import Optional

from .codes import generate_random_recovery_code
from .encryption import CredentialEncryptor
from .mfa import verify_totp
from ..database.auth_db import AuthDB

logger = logging.getLogger(__name__)


class TwoFactorManager:
    """TOTP key storage, recovery codes and recovery-code 2FA reset."""

    def __init__(self, db: AuthDB, encryptor: CredentialEncryptor):
        self.db = db
        self.encryptor = encryptor

    def get_user_totp_key(self, user_id: str) -> Optional[bytes]:
        """
        Returns:
            The decrypted TOTP key, or None if two-factor is not set up.

        Raises:
            ValueError: If the user does not exist.
        """
        encrypted = self.db.get_totp_key(user_id)
        if encrypted is None:
            return None
        return self.encryptor.decrypt(encrypted)

    def update_user_totp_key(self, user_id: str, key: bytes) -> None:
        self.db.update_totp_key(user_id, self.encryptor.encrypt(key))

    def register_totp_key(self, user_id: str, key: bytes, code: str) -> bool:
        """Store key for user_id only if code is a current code for it."""
        if not verify_totp(key, code):
            return False
        self.update_user_totp_key(user_id, key)
        return True

    def verify_user_totp(self, user_id: str, code: str) -> bool:
        key = self.get_user_totp_key(user_id)
        if key is None:
            return False
        return verify_totp(key, code)

    def get_user_recovery_code(self, user_id: str) -> str:
        """
        Raises:
            ValueError: If the user does not exist.
        """
        encrypted = self.db.get_recovery_code(user_id)
        if encrypted is None:
            raise ValueError("Invalid user ID")
        return self.encryptor.decrypt_to_string(encrypted)

    def reset_user_recovery_code(self, user_id: str) -> str:
        """Issue a new recovery code and return it in plaintext."""
        recovery_code = generate_random_recovery_code()
        self.db.update_recovery_code(user_id, self.encryptor.encrypt_string(recovery_code))
        logger.info(f"Recovery code regenerated for user {user_id}")
        return recovery_code

    def reset_user_2fa_with_recovery_code(self, user_id: str, recovery_code: str) -> bool:
        """
        Remove the user's TOTP key using their recovery code.

        On a match the recovery code is rotated, the TOTP key cleared and
        every session of the user loses two-factor verification. The write is
        conditioned on the encrypted code read at the start, so a concurrent
        rotation makes this return False instead of applying twice.

        Returns:
            True on success. Any failure, including database errors, is False;
            the cause is logged.
        """
        try:
            encrypted = self.db.get_recovery_code(user_id)
            if encrypted is None:
                logger.info(f"2FA reset failed for user {user_id}: user not found")
                return False

            stored = self.encryptor.decrypt_to_string(encrypted)
            supplied = recovery_code.replace("-", "").strip().upper()
            if not hmac.compare_digest(stored.encode(), supplied.encode()):
                logger.info(f"2FA reset failed for user {user_id}: recovery code mismatch")
                return False

            new_encrypted = self.encryptor.encrypt_string(generate_random_recovery_code())
            swapped = self.db.swap_recovery_code_and_clear_totp(user_id, encrypted, new_encrypted)
            if not swapped:
                logger.warning(f"2FA reset failed for user {user_id}: recovery code changed concurrently")
                return False

            logger.info(f"2FA reset with recovery code for user {user_id}")
            return True
        except Exception as e:
            logger.error(f"2FA reset failed for user {user_id}: {e}", exc_info=True)
            return False

    def reset_user_2fa(self, user_id: str) -> bool:
        """
        Administrative 2FA reset: drop the TOTP key and rotate the recovery
        code without asking for the old one.

        Returns:
            False if the user does not exist.
        """
        new_encrypted = self.encryptor.encrypt_string(generate_random_recovery_code())
        if not self.db.clear_two_factor(user_id, new_encrypted):
            return False
        logger.info(f"2FA reset by administrator for user {user_id}")
        return True

"""
Password hashing and strength checks.

Hashes use bcrypt over a base64 SHA-256 digest of the password, so the
whole password counts even past bcrypt's 72-byte input limit.

Strength requires 8-255 characters and, unless PASSWORD_BREACH_CHECK=false,
that the password does not appear in the HaveIBeenPwned corpus
(k-anonymity range query: only the first five hex characters of the SHA-1
leave the process).
"""
import os
import base64
import hashlib
import logging

import bcrypt
import httpx

logger = logging.getLogger(__name__)

PWNED_RANGE_URL = "https://api.pwnedpasswords.com/range/{prefix}"
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 255


def _prehash(password: str) -> bytes:
    return base64.b64encode(hashlib.sha256(password.encode("utf-8")).digest())


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password.

    Returns:
        Bcrypt hash string.
    """
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(_prehash(password), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify a password against its hash.

    Args:
        password: Plain text password to verify.
        password_hash: Stored bcrypt hash.

    Returns:
        True if password matches, False otherwise.
    """
    try:
        return bcrypt.checkpw(_prehash(password), password_hash.encode('utf-8'))
    except ValueError as e:
        logger.error(f"Unreadable password hash: {e}")
        return False


def _breach_check_enabled() -> bool:
    return os.getenv("PASSWORD_BREACH_CHECK", "true").lower() == "true"


def is_password_pwned(password: str, timeout: float = 5.0) -> bool:
    """
    Look the password up in the HaveIBeenPwned range API.

    Raises:
        httpx.HTTPError: If the API cannot be reached.
    """
    digest = hashlib.sha1(password.encode("utf-8")).hexdigest()
    prefix, suffix = digest[:5], digest[5:]

    response = httpx.get(PWNED_RANGE_URL.format(prefix=prefix), timeout=timeout)
    response.raise_for_status()

    for line in response.text.splitlines():
        if line[:35].lower() == suffix:
            return True
    return False


def verify_password_strength(password: str) -> bool:
    """
    Check length bounds and breach status.

    If the breach API is unreachable only the length check applies.
    """
    if len(password) < MIN_PASSWORD_LENGTH or len(password) > MAX_PASSWORD_LENGTH:
        return False

    if not _breach_check_enabled():
        return True

    try:
        return not is_password_pwned(password)
    except httpx.HTTPError as e:
        logger.warning(f"Password breach check unavailable: {e}")
        return True

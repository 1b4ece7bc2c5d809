"""
Random token and code generators.

Bearer-style secrets (session tokens, verification request ids) are
base32 without padding; codes a user types are digits or upper-case base32.
"""
import base64
import hashlib
import secrets


def _base32(data: bytes) -> str:
    return base64.b32encode(data).decode("ascii").rstrip("=")


def generate_session_token() -> str:
    """20 random bytes as lowercase base32 (32 characters)."""
    return _base32(secrets.token_bytes(20)).lower()


def generate_request_id() -> str:
    """Random identifier for an email verification request."""
    return _base32(secrets.token_bytes(20)).lower()


def hash_token(token: str) -> str:
    """Session id for a token: lowercase hex of sha256(token)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_numeric_code(digits: int = 6) -> str:
    """Uniformly random code of exactly `digits` decimal digits (leading zeros kept)."""
    return str(secrets.randbelow(10 ** digits)).zfill(digits)


def generate_random_otp() -> str:
    """Email verification OTP."""
    return generate_numeric_code(6)


def generate_reset_password_code() -> str:
    """One-time code emailed with a password reset."""
    return generate_numeric_code(8)


def generate_random_recovery_code() -> str:
    """10 random bytes as upper-case base32 (16 characters)."""
    return _base32(secrets.token_bytes(10))


TEMPORARY_PASSWORD_ALPHABET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "0123456789"
    "!@#$%^&*()_+[]{}|;:,.<>?"
)


def generate_temporary_password(length: int = 12) -> str:
    """Password set by an administrator and emailed to the user."""
    return "".join(secrets.choice(TEMPORARY_PASSWORD_ALPHABET) for _ in range(length))

"""
TOTP (Time-based One-Time Password) utilities.

Implements RFC 6238 with pyotp: 20-byte keys, 30-second period, 6 digits.
Compatible with Google Authenticator, Authy, and other TOTP apps.

Keys travel as raw bytes inside the service, base64 between client and
server during enrollment, and base32 inside otpauth:// URIs.
"""
import base64
import binascii
import io
import secrets
from typing import Tuple, Optional

import pyotp
import qrcode

TOTP_KEY_BYTES = 20
TOTP_PERIOD = 30
TOTP_DIGITS = 6
# Codes up to 60 s either side of now are accepted
TOTP_GRACE_WINDOWS = 2


def generate_totp_key() -> bytes:
    """
    Generate a new TOTP key for enrollment.

    Returns:
        20 random bytes.
    """
    return secrets.token_bytes(TOTP_KEY_BYTES)


def _totp(key: bytes) -> pyotp.TOTP:
    secret = base64.b32encode(key).decode("ascii")
    return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_PERIOD)


def encode_totp_key(key: bytes) -> str:
    return base64.b64encode(key).decode("ascii")


def decode_totp_key(encoded_key: str) -> Optional[bytes]:
    """
    Decode a base64 key sent back by the client.

    Returns:
        The key bytes, or None if malformed or not 20 bytes long.
    """
    try:
        key = base64.b64decode(encoded_key, validate=True)
    except (binascii.Error, ValueError):
        return None
    if len(key) != TOTP_KEY_BYTES:
        return None
    return key


def get_totp_provisioning_uri(
    key: bytes,
    email: str,
    issuer: str = "Merchant Portal"
) -> str:
    """
    Generate a provisioning URI for TOTP apps.

    This URI can be encoded as a QR code for easy scanning.

    Args:
        key: Raw TOTP key.
        email: User's email address (displayed in authenticator app).
        issuer: Application name (displayed in authenticator app).

    Returns:
        otpauth:// URI string.
    """
    return _totp(key).provisioning_uri(name=email, issuer_name=issuer)


def generate_qr_code(uri: str) -> bytes:
    """
    Generate a QR code image for the provisioning URI.

    Returns:
        PNG image bytes.
    """
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(uri)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    buffer.seek(0)
    return buffer.read()


def generate_qr_code_base64(uri: str) -> str:
    """
    Generate a base64-encoded QR code for embedding in HTML.

    Returns:
        Base64-encoded PNG image string (data URI ready).
    """
    png_bytes = generate_qr_code(uri)
    b64 = base64.b64encode(png_bytes).decode('utf-8')
    return f"data:image/png;base64,{b64}"


def verify_totp(key: bytes, code: str) -> bool:
    """
    Verify a TOTP code against the key.

    Args:
        key: Raw TOTP key.
        code: 6-digit code entered by user.

    Returns:
        True if code is valid, False otherwise.
    """
    if not key or not code:
        return False

    # Clean the code (remove spaces, only digits)
    code = ''.join(filter(str.isdigit, code))

    if len(code) != TOTP_DIGITS:
        return False

    return _totp(key).verify(code, valid_window=TOTP_GRACE_WINDOWS)


def get_current_totp(key: bytes) -> str:
    """
    Get the current TOTP code (for testing/debugging).
    """
    return _totp(key).now()


def setup_mfa(email: str, issuer: str = "Merchant Portal") -> Tuple[bytes, str, str]:
    """
    Begin enrollment: generate a key, its URI and QR code.

    Returns:
        Tuple of (key, provisioning_uri, qr_code_base64).
    """
    key = generate_totp_key()
    uri = get_totp_provisioning_uri(key, email, issuer)
    qr_base64 = generate_qr_code_base64(uri)

    return key, uri, qr_base64

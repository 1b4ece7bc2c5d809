"""
Encryption at rest for credential secrets.

Uses Fernet (AES-128-CBC + HMAC-SHA256) for symmetric encryption of the
TOTP key and recovery code stored on each user row. The key is read from
ENCRYPTION_KEY (or ENCRYPTION_KEY_FILE / Docker secret).
"""
import logging
from typing import Optional, Union

from cryptography.fernet import Fernet

from ..utils.secrets import get_secret

logger = logging.getLogger(__name__)


class CredentialEncryptor:
    """
    Handles encryption/decryption of credential secrets.

    Ciphertext is the Fernet token as ASCII text, ready for a TEXT column.
    Decryption failures raise cryptography.fernet.InvalidToken.
    """

    def __init__(self, key: Optional[Union[str, bytes]] = None):
        """
        Initialize encryptor with key from environment or parameter.

        Args:
            key: URL-safe base64-encoded 32-byte key. If None, reads from env.
        """
        if key is None:
            key = get_secret("ENCRYPTION_KEY")

        if not key:
            raise ValueError(
                "ENCRYPTION_KEY not set. "
                "Generate with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
            )

        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, data: bytes) -> str:
        return self._fernet.encrypt(data).decode("ascii")

    def decrypt(self, ciphertext: str) -> bytes:
        return self._fernet.decrypt(ciphertext.encode("ascii"))

    def encrypt_string(self, plaintext: str) -> str:
        return self.encrypt(plaintext.encode("utf-8"))

    def decrypt_to_string(self, ciphertext: str) -> str:
        return self.decrypt(ciphertext).decode("utf-8")

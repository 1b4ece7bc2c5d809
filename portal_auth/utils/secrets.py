"""
Secret lookup for the auth service.

ENCRYPTION_KEY and POSTGRES_PASSWORD may come from a mounted file
(NAME_FILE or /run/secrets/name) so they stay out of the process
environment in production; plain environment variables are accepted for
local runs.
"""
import os
import logging
from typing import Optional
from functools import lru_cache

logger = logging.getLogger(__name__)

SECRETS_DIR = "/run/secrets"


def _read_secret_file(path: str) -> Optional[str]:
    if not os.path.isfile(path):
        return None
    try:
        with open(path, 'r') as f:
            return f.read().strip()
    except OSError as e:
        logger.warning(f"Failed to read secret file {path}: {e}")
        return None


@lru_cache(maxsize=8)
def get_secret(name: str, default: Optional[str] = None) -> Optional[str]:
    """
    Resolve a secret by name.

    Checks, in order: the file named by {name}_FILE, the {name}
    environment variable, then /run/secrets/{name.lower()}.
    """
    file_path = os.environ.get(f"{name}_FILE")
    if file_path:
        value = _read_secret_file(file_path)
        if value is not None:
            logger.debug(f"Loaded secret {name} from {file_path}")
            return value

    value = os.environ.get(name)
    if value:
        return value

    value = _read_secret_file(os.path.join(SECRETS_DIR, name.lower()))
    if value is not None:
        logger.debug(f"Loaded secret {name} from {SECRETS_DIR}")
        return value

    return default


def get_postgres_password() -> str:
    return get_secret("POSTGRES_PASSWORD", "")


def mask_secret(secret: str, visible_chars: int = 4) -> str:
    """Shorten a token for logs, e.g. "abcd...wxyz"."""
    if not secret or len(secret) <= visible_chars * 2:
        return "***"
    return f"{secret[:visible_chars]}...{secret[-visible_chars:]}"

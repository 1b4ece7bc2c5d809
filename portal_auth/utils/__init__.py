"""
Shared utilities for the merchant portal auth service.
"""
from .secrets import get_secret, get_postgres_password, mask_secret

__all__ = ["get_secret", "get_postgres_password", "mask_secret"]

"""
Merchant Portal Auth REST API.

FastAPI application exposing sessions, two-factor authentication,
password reset and email verification.
"""
from .main import app, create_app

__all__ = ["app", "create_app"]

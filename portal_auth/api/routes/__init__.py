"""
API Routes for the Merchant Portal Auth service.
"""
from .auth import router as auth_router
from .two_factor import router as two_factor_router
from .password import router as password_router
from .email import router as email_router
from .health import router as health_router
from .admin import router as admin_router

__all__ = [
    "auth_router",
    "two_factor_router",
    "password_router",
    "email_router",
    "health_router",
    "admin_router",
]

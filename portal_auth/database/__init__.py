"""
Persistence for the merchant portal auth service.

This package provides:
- models: SQLAlchemy tables for users, role profiles, sessions,
  password reset sessions and email verification requests
- auth_db: connection management and row operations
"""

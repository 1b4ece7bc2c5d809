"""
SQLAlchemy models for the auth database.

Timestamps are stored as Unix epoch seconds (INTEGER) and converted to
aware UTC datetimes with to_epoch / from_epoch at the row boundary.

Secret-bearing columns (users.totp_key, users.recovery_code) hold
Fernet ciphertext, never plaintext.
"""
import time
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Text, Boolean, Integer, Date, JSON, ForeignKey, Index,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

IP_ADDRESS_LENGTH = 64
USER_AGENT_LENGTH = 512


def epoch_now() -> int:
    return int(time.time())


def to_epoch(value: datetime) -> int:
    """Convert a datetime to whole epoch seconds (naive values are taken as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def from_epoch(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# TENANCY
# =============================================================================

class MerchantModel(Base):
    __tablename__ = "merchants"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)

    brands = relationship("BrandModel", back_populates="merchant")


class BrandModel(Base):
    __tablename__ = "brands"

    id = Column(String(36), primary_key=True, default=_new_id)
    merchant_id = Column(String(36), ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)

    merchant = relationship("MerchantModel", back_populates="brands")


# =============================================================================
# USERS
# =============================================================================

class UserModel(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    email_verified = Column(Boolean, nullable=False, default=False)
    password_hash = Column(String(255), nullable=False)

    # Encrypted fields
    totp_key = Column(Text, nullable=True)
    recovery_code = Column(Text, nullable=False)

    first_name = Column(String(100), nullable=False, default="")
    last_name = Column(String(100), nullable=False, default="")
    image = Column(String(512), nullable=True)
    role = Column(JSON, nullable=False, default=list)

    created_at = Column(Integer, nullable=False, default=epoch_now)
    updated_at = Column(Integer, nullable=False, default=epoch_now, onupdate=epoch_now)

    admin_user = relationship("AdminUserModel", uselist=False, back_populates="user")
    merchant_user = relationship("MerchantUserModel", uselist=False, back_populates="user")
    consumer_user = relationship("ConsumerUserModel", uselist=False, back_populates="user")


class AdminUserModel(Base):
    __tablename__ = "admin_users"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    job_title = Column(String(255), nullable=True)
    phone_number = Column(String(50), nullable=True)

    user = relationship("UserModel", back_populates="admin_user")


class MerchantUserModel(Base):
    __tablename__ = "merchant_users"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    merchant_id = Column(String(36), ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False)
    job_title = Column(String(255), nullable=True)
    phone_number = Column(String(50), nullable=True)
    primary_contact = Column(Boolean, nullable=False, default=False)

    user = relationship("UserModel", back_populates="merchant_user")
    merchant = relationship("MerchantModel")
    brand_roles = relationship(
        "MerchantUserBrandRoleModel",
        back_populates="merchant_user",
        cascade="all, delete-orphan",
    )


class MerchantUserBrandRoleModel(Base):
    __tablename__ = "merchant_user_brand_roles"

    user_id = Column(String(36), ForeignKey("merchant_users.user_id", ondelete="CASCADE"), primary_key=True)
    brand_id = Column(String(36), ForeignKey("brands.id", ondelete="CASCADE"), primary_key=True)
    role = Column(String(50), nullable=False)

    merchant_user = relationship("MerchantUserModel", back_populates="brand_roles")
    brand = relationship("BrandModel")


class ConsumerUserModel(Base):
    __tablename__ = "consumer_users"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    barcode = Column(String(64), nullable=True)
    gender = Column(String(32), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    phone_number = Column(String(50), nullable=True)

    user = relationship("UserModel", back_populates="consumer_user")


# =============================================================================
# SESSIONS AND ONE-TIME CREDENTIALS
# =============================================================================

class SessionModel(Base):
    """Login session. id is hex(sha256(token)); the token itself is never stored."""
    __tablename__ = "sessions"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    expires_at = Column(Integer, nullable=False)
    two_factor_verified = Column(Boolean, nullable=False, default=False)
    ip_address = Column(String(IP_ADDRESS_LENGTH), nullable=True)
    user_agent = Column(String(USER_AGENT_LENGTH), nullable=True)
    remember_me = Column(Boolean, nullable=False, default=False)

    user = relationship("UserModel")

    __table_args__ = (
        Index('idx_sessions_user', 'user_id'),
    )


class PasswordResetSessionModel(Base):
    __tablename__ = "password_reset_sessions"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    email = Column(String(255), nullable=False)
    code = Column(String(32), nullable=False)
    expires_at = Column(Integer, nullable=False)

    user = relationship("UserModel")

    __table_args__ = (
        Index('idx_password_reset_user', 'user_id'),
        Index('idx_password_reset_code', 'code'),
    )


class EmailVerificationRequestModel(Base):
    __tablename__ = "email_verification_requests"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    email = Column(String(255), nullable=False)
    code = Column(String(16), nullable=False)
    expires_at = Column(Integer, nullable=False)

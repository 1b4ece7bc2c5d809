"""
Domain types for the session and credential lifecycle.

These are the in-memory shapes handed to callers. Persistence rows are
converted to these at the database boundary (epoch seconds become aware
UTC datetimes there).
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, date, timezone
from typing import Optional, List


class Role(str, Enum):
    ADMIN = "ADMIN"
    MERCHANT = "MERCHANT"
    CONSUMER = "CONSUMER"


class FailureReason(str, Enum):
    """Why a lookup or credential check did not produce a record."""
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    MISMATCH = "mismatch"


@dataclass
class AdminProfile:
    job_title: Optional[str] = None
    phone_number: Optional[str] = None


@dataclass
class BrandRole:
    brand_id: str
    brand: str
    role: str


@dataclass
class MerchantProfile:
    merchant_id: str
    merchant: str
    job_title: Optional[str] = None
    phone_number: Optional[str] = None
    primary_contact: bool = False
    brand_roles: List[BrandRole] = field(default_factory=list)


@dataclass
class ConsumerProfile:
    barcode: Optional[str] = None
    gender: Optional[str] = None
    date_of_birth: Optional[date] = None
    phone_number: Optional[str] = None


@dataclass
class User:
    """
    Role-shaped view of a user.

    At most one of admin_user, merchant_user and consumer_user is set.
    """
    id: str
    email: str
    email_verified: bool
    registered_2fa: bool
    first_name: str
    last_name: str
    role: List[str] = field(default_factory=list)
    image: Optional[str] = None
    admin_user: Optional[AdminProfile] = None
    merchant_user: Optional[MerchantProfile] = None
    consumer_user: Optional[ConsumerProfile] = None

    def has_role(self, *roles: str) -> bool:
        return any(role in self.role for role in roles)


@dataclass
class SessionFlags:
    two_factor_verified: bool = False


@dataclass
class Session:
    id: str
    user_id: str
    expires_at: datetime
    two_factor_verified: bool = False
    ip_address: str = ""
    user_agent: str = ""
    remember_me: bool = False


@dataclass
class PasswordResetSession:
    id: str
    user_id: str
    email: str
    code: str
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at


@dataclass
class EmailVerificationRequest:
    id: str
    user_id: str
    email: str
    code: str
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at


@dataclass
class ValidationResult:
    """
    Outcome of validating a session or password reset token.

    Either session and user are both set, or reason explains the failure.
    """
    session: Optional[object] = None
    user: Optional[User] = None
    reason: Optional[FailureReason] = None

    @property
    def ok(self) -> bool:
        return self.session is not None and self.user is not None

    @classmethod
    def success(cls, session, user: User) -> "ValidationResult":
        return cls(session=session, user=user)

    @classmethod
    def failure(cls, reason: FailureReason) -> "ValidationResult":
        return cls(reason=reason)

"""
Database Manager for Authentication.

This module provides connection management and row operations for:
- Users and their role profiles (admin, merchant, consumer)
- Login sessions
- Password reset sessions
- Email verification requests

Rows are converted to the dataclasses in portal_auth.auth.types before
they leave a database session. Flow logic (expiry, renewal, code checks)
lives in portal_auth.auth; this module only reads and writes.
"""
import os
import logging
from typing import Optional, List, Tuple, Dict
from datetime import datetime, date
from contextlib import contextmanager

from sqlalchemy import create_engine, select, update, delete, func
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from .models import (
    Base,
    UserModel,
    AdminUserModel,
    MerchantModel,
    BrandModel,
    MerchantUserModel,
    MerchantUserBrandRoleModel,
    ConsumerUserModel,
    SessionModel,
    PasswordResetSessionModel,
    EmailVerificationRequestModel,
    epoch_now,
    to_epoch,
    from_epoch,
)
from ..auth.types import (
    User,
    AdminProfile,
    MerchantProfile,
    BrandRole,
    ConsumerProfile,
    Session,
    PasswordResetSession,
    EmailVerificationRequest,
)
from ..utils.secrets import get_postgres_password

logger = logging.getLogger(__name__)


def _default_connection_string() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    db = os.getenv("POSTGRES_DB", "portal")
    user = os.getenv("POSTGRES_USER", "portal_user")
    password = get_postgres_password()
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


def _to_user(row: UserModel, with_profile: bool = False) -> User:
    user = User(
        id=row.id,
        email=row.email,
        email_verified=bool(row.email_verified),
        registered_2fa=row.totp_key is not None,
        first_name=row.first_name,
        last_name=row.last_name,
        role=list(row.role or []),
        image=row.image,
    )
    if not with_profile:
        return user

    # One profile per view: admin wins over merchant, merchant over consumer
    if row.admin_user is not None:
        user.admin_user = AdminProfile(
            job_title=row.admin_user.job_title,
            phone_number=row.admin_user.phone_number,
        )
    elif row.merchant_user is not None:
        merchant_user = row.merchant_user
        user.merchant_user = MerchantProfile(
            merchant_id=merchant_user.merchant_id,
            merchant=merchant_user.merchant.name,
            job_title=merchant_user.job_title,
            phone_number=merchant_user.phone_number,
            primary_contact=bool(merchant_user.primary_contact),
            brand_roles=[
                BrandRole(brand_id=br.brand_id, brand=br.brand.name, role=br.role)
                for br in merchant_user.brand_roles
            ],
        )
    elif row.consumer_user is not None:
        user.consumer_user = ConsumerProfile(
            barcode=row.consumer_user.barcode,
            gender=row.consumer_user.gender,
            date_of_birth=row.consumer_user.date_of_birth,
            phone_number=row.consumer_user.phone_number,
        )
    return user


def _to_session(row: SessionModel) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        expires_at=from_epoch(row.expires_at),
        two_factor_verified=bool(row.two_factor_verified),
        ip_address=row.ip_address or "",
        user_agent=row.user_agent or "",
        remember_me=bool(row.remember_me),
    )


def _to_password_reset_session(row: PasswordResetSessionModel) -> PasswordResetSession:
    return PasswordResetSession(
        id=row.id,
        user_id=row.user_id,
        email=row.email,
        code=row.code,
        expires_at=from_epoch(row.expires_at),
    )


def _to_email_verification_request(row: EmailVerificationRequestModel) -> EmailVerificationRequest:
    return EmailVerificationRequest(
        id=row.id,
        user_id=row.user_id,
        email=row.email,
        code=row.code,
        expires_at=from_epoch(row.expires_at),
    )


class AuthDB:
    """
    Connection manager for the auth schema.

    Works against PostgreSQL in production and SQLite in tests.

    Example usage:
        auth_db = AuthDB()
        auth_db.init_schema()

        user = auth_db.create_user("owner@brand.com", password_hash, encrypted_code)
        session = auth_db.find_session_with_user(session_id)
    """

    def __init__(self, connection_string: Optional[str] = None):
        """
        Initialize database connection.

        Args:
            connection_string: SQLAlchemy URL. Uses DATABASE_URL or the
                               POSTGRES_* environment variables if not provided.
        """
        if connection_string is None:
            connection_string = _default_connection_string()

        if connection_string.startswith("sqlite"):
            self.engine = create_engine(
                connection_string,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_engine(
                connection_string,
                poolclass=QueuePool,
                pool_size=10,
                max_overflow=20,
                pool_timeout=30,
                pool_pre_ping=True,  # Test connections before use (detect stale)
                pool_recycle=300,    # Recycle connections every 5 minutes
            )
        self.Session = sessionmaker(bind=self.engine)

    @contextmanager
    def get_session(self):
        """
        Get a database session with automatic cleanup.

        Usage:
            with auth_db.get_session() as session:
                result = session.execute(query)
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def init_schema(self) -> None:
        """
        Initialize database schema (create tables if not exist).

        Call this once during application setup.
        """
        Base.metadata.create_all(self.engine)
        logger.info("Database schema initialized")

    # ==========================================
    # User Management
    # ==========================================

    def create_user(
        self,
        email: str,
        password_hash: str,
        recovery_code: str,
        first_name: str = "",
        last_name: str = "",
        role: Optional[List[str]] = None,
    ) -> User:
        """
        Create a new user account.

        Args:
            email: User's email address.
            password_hash: Bcrypt-hashed password.
            recovery_code: Encrypted recovery code.
            first_name: Given name.
            last_name: Family name.
            role: Role tags (ADMIN, MERCHANT, CONSUMER).

        Returns:
            The created user.

        Raises:
            ValueError: If email already exists.
        """
        email = email.lower().strip()

        with self.get_session() as session:
            existing = session.execute(
                select(UserModel.id).where(UserModel.email == email)
            ).first()
            if existing:
                raise ValueError(f"User with email '{email}' already exists")

            row = UserModel(
                email=email,
                password_hash=password_hash,
                recovery_code=recovery_code,
                first_name=first_name,
                last_name=last_name,
                role=list(role or []),
            )
            session.add(row)
            session.flush()
            user = _to_user(row)

        logger.info(f"Created user: {email} (id={user.id})")
        return user

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        with self.get_session() as session:
            row = session.get(UserModel, user_id)
            return _to_user(row, with_profile=True) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        """
        Get user by email address.

        Returns:
            User or None if not found.
        """
        with self.get_session() as session:
            row = session.execute(
                select(UserModel).where(UserModel.email == email.lower().strip())
            ).scalar_one_or_none()
            return _to_user(row, with_profile=True) if row else None

    def email_exists(self, email: str) -> bool:
        with self.get_session() as session:
            count = session.execute(
                select(func.count()).select_from(UserModel).where(UserModel.email == email.lower().strip())
            ).scalar_one()
            return count > 0

    def get_user_password_hash(self, user_id: str) -> str:
        """
        Raises:
            ValueError: If the user does not exist.
        """
        with self.get_session() as session:
            row = session.get(UserModel, user_id)
            if row is None:
                raise ValueError("Invalid user ID")
            return row.password_hash

    def update_password(self, user_id: str, new_password_hash: str) -> None:
        with self.get_session() as session:
            session.execute(
                update(UserModel)
                .where(UserModel.id == user_id)
                .values(password_hash=new_password_hash, updated_at=epoch_now())
            )

    def update_email_and_set_verified(self, user_id: str, email: str) -> None:
        with self.get_session() as session:
            session.execute(
                update(UserModel)
                .where(UserModel.id == user_id)
                .values(email=email.lower().strip(), email_verified=True, updated_at=epoch_now())
            )
        logger.info(f"Email verified for user {user_id}")

    def set_email_verified_if_matches(self, user_id: str, email: str) -> bool:
        """
        Mark the email verified only if it is still the user's address.

        Returns:
            True if a row was updated.
        """
        with self.get_session() as session:
            result = session.execute(
                update(UserModel)
                .where(UserModel.id == user_id, UserModel.email == email.lower().strip())
                .values(email_verified=True, updated_at=epoch_now())
            )
            return result.rowcount > 0

    def get_totp_key(self, user_id: str) -> Optional[str]:
        """
        Get the encrypted TOTP key.

        Raises:
            ValueError: If the user does not exist.
        """
        with self.get_session() as session:
            row = session.get(UserModel, user_id)
            if row is None:
                raise ValueError("Invalid user ID")
            return row.totp_key

    def update_totp_key(self, user_id: str, encrypted_key: Optional[str]) -> None:
        """
        Store an encrypted TOTP key, or None to remove two-factor.
        """
        with self.get_session() as session:
            session.execute(
                update(UserModel)
                .where(UserModel.id == user_id)
                .values(totp_key=encrypted_key, updated_at=epoch_now())
            )
        logger.info(f"Updated TOTP key for user {user_id}: enabled={encrypted_key is not None}")

    def get_recovery_code(self, user_id: str) -> Optional[str]:
        """Get the encrypted recovery code, or None if the user does not exist."""
        with self.get_session() as session:
            row = session.execute(
                select(UserModel.recovery_code).where(UserModel.id == user_id)
            ).first()
            return row[0] if row else None

    def update_recovery_code(self, user_id: str, encrypted_code: str) -> None:
        with self.get_session() as session:
            session.execute(
                update(UserModel)
                .where(UserModel.id == user_id)
                .values(recovery_code=encrypted_code, updated_at=epoch_now())
            )

    def swap_recovery_code_and_clear_totp(
        self,
        user_id: str,
        expected_recovery_code: str,
        new_recovery_code: str,
    ) -> bool:
        """
        Compare-and-swap the recovery code, removing the TOTP key.

        The update only applies if the stored (encrypted) recovery code is
        still expected_recovery_code. On success every session of the user
        loses its two-factor verification, in the same transaction.

        Returns:
            True if the swap applied, False if the code changed underneath.
        """
        with self.get_session() as session:
            result = session.execute(
                update(UserModel)
                .where(
                    UserModel.id == user_id,
                    UserModel.recovery_code == expected_recovery_code,
                )
                .values(recovery_code=new_recovery_code, totp_key=None, updated_at=epoch_now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return False

            session.execute(
                update(SessionModel)
                .where(SessionModel.user_id == user_id)
                .values(two_factor_verified=False)
                .execution_options(synchronize_session=False)
            )
            return True

    def clear_two_factor(self, user_id: str, new_recovery_code: str) -> bool:
        """
        Remove the TOTP key unconditionally and replace the recovery code.

        Every session of the user loses its two-factor verification in the
        same transaction.

        Returns:
            False if the user does not exist.
        """
        with self.get_session() as session:
            result = session.execute(
                update(UserModel)
                .where(UserModel.id == user_id)
                .values(recovery_code=new_recovery_code, totp_key=None, updated_at=epoch_now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return False

            session.execute(
                update(SessionModel)
                .where(SessionModel.user_id == user_id)
                .values(two_factor_verified=False)
                .execution_options(synchronize_session=False)
            )
            return True

    # ==========================================
    # Tenancy and Role Profiles
    # ==========================================

    def create_merchant(self, name: str) -> str:
        with self.get_session() as session:
            row = MerchantModel(name=name)
            session.add(row)
            session.flush()
            merchant_id = row.id
        logger.info(f"Created merchant: {name} (id={merchant_id})")
        return merchant_id

    def create_brand(self, merchant_id: str, name: str) -> str:
        with self.get_session() as session:
            row = BrandModel(merchant_id=merchant_id, name=name)
            session.add(row)
            session.flush()
            return row.id

    def add_admin_profile(
        self,
        user_id: str,
        job_title: Optional[str] = None,
        phone_number: Optional[str] = None,
    ) -> None:
        with self.get_session() as session:
            session.add(AdminUserModel(user_id=user_id, job_title=job_title, phone_number=phone_number))

    def add_merchant_profile(
        self,
        user_id: str,
        merchant_id: str,
        brand_roles: Optional[Dict[str, str]] = None,
        job_title: Optional[str] = None,
        phone_number: Optional[str] = None,
        primary_contact: bool = False,
    ) -> None:
        """
        Attach a merchant profile to a user.

        Args:
            brand_roles: Mapping of brand id to the role held for that brand.
        """
        with self.get_session() as session:
            profile = MerchantUserModel(
                user_id=user_id,
                merchant_id=merchant_id,
                job_title=job_title,
                phone_number=phone_number,
                primary_contact=primary_contact,
            )
            for brand_id, role in (brand_roles or {}).items():
                profile.brand_roles.append(MerchantUserBrandRoleModel(brand_id=brand_id, role=role))
            session.add(profile)
        logger.info(f"Added user {user_id} to merchant {merchant_id}")

    def add_consumer_profile(
        self,
        user_id: str,
        barcode: Optional[str] = None,
        gender: Optional[str] = None,
        date_of_birth: Optional[date] = None,
        phone_number: Optional[str] = None,
    ) -> None:
        with self.get_session() as session:
            session.add(ConsumerUserModel(
                user_id=user_id,
                barcode=barcode,
                gender=gender,
                date_of_birth=date_of_birth,
                phone_number=phone_number,
            ))

    # ==========================================
    # Session Management
    # ==========================================

    def insert_session(self, auth_session: Session) -> None:
        with self.get_session() as session:
            session.add(SessionModel(
                id=auth_session.id,
                user_id=auth_session.user_id,
                expires_at=to_epoch(auth_session.expires_at),
                two_factor_verified=auth_session.two_factor_verified,
                ip_address=auth_session.ip_address,
                user_agent=auth_session.user_agent,
                remember_me=auth_session.remember_me,
            ))
        logger.debug(f"Created session for user {auth_session.user_id}, expires {auth_session.expires_at}")

    def find_session_with_user(self, session_id: str) -> Optional[Tuple[Session, User]]:
        """
        Load a session together with its role-shaped user.

        Returns:
            (session, user) or None if no row has this id.
        """
        with self.get_session() as session:
            row = session.get(SessionModel, session_id)
            if row is None:
                return None
            return _to_session(row), _to_user(row.user, with_profile=True)

    def update_session_expiry(self, session_id: str, expires_at: datetime) -> None:
        with self.get_session() as session:
            session.execute(
                update(SessionModel)
                .where(SessionModel.id == session_id)
                .values(expires_at=to_epoch(expires_at))
            )

    def set_session_two_factor_verified(self, session_id: str, verified: bool = True) -> None:
        with self.get_session() as session:
            session.execute(
                update(SessionModel)
                .where(SessionModel.id == session_id)
                .values(two_factor_verified=verified)
            )

    def delete_session(self, session_id: str) -> int:
        with self.get_session() as session:
            result = session.execute(
                delete(SessionModel).where(SessionModel.id == session_id)
            )
            return result.rowcount

    def delete_user_sessions(self, user_id: str) -> int:
        """
        Delete all sessions for a user (logout from all devices).

        Returns:
            Number of sessions deleted.
        """
        with self.get_session() as session:
            result = session.execute(
                delete(SessionModel).where(SessionModel.user_id == user_id)
            )
            count = result.rowcount
        logger.info(f"Deleted {count} sessions for user {user_id}")
        return count

    # ==========================================
    # Password Reset Sessions
    # ==========================================

    def insert_password_reset_session(self, reset_session: PasswordResetSession) -> None:
        with self.get_session() as session:
            session.add(PasswordResetSessionModel(
                id=reset_session.id,
                user_id=reset_session.user_id,
                email=reset_session.email,
                code=reset_session.code,
                expires_at=to_epoch(reset_session.expires_at),
            ))

    def find_password_reset_session_with_user(
        self, reset_session_id: str
    ) -> Optional[Tuple[PasswordResetSession, User]]:
        with self.get_session() as session:
            row = session.get(PasswordResetSessionModel, reset_session_id)
            if row is None:
                return None
            return _to_password_reset_session(row), _to_user(row.user)

    def find_password_reset_session_by_code(
        self, code: str
    ) -> Optional[Tuple[PasswordResetSession, User]]:
        with self.get_session() as session:
            row = session.execute(
                select(PasswordResetSessionModel)
                .where(PasswordResetSessionModel.code == code)
                .limit(1)
            ).scalar_one_or_none()
            if row is None:
                return None
            return _to_password_reset_session(row), _to_user(row.user)

    def delete_password_reset_session(self, reset_session_id: str) -> int:
        with self.get_session() as session:
            result = session.execute(
                delete(PasswordResetSessionModel).where(PasswordResetSessionModel.id == reset_session_id)
            )
            return result.rowcount

    def delete_user_password_reset_sessions(self, user_id: str) -> int:
        with self.get_session() as session:
            result = session.execute(
                delete(PasswordResetSessionModel).where(PasswordResetSessionModel.user_id == user_id)
            )
            return result.rowcount

    # ==========================================
    # Email Verification Requests
    # ==========================================

    def insert_email_verification_request(self, request: EmailVerificationRequest) -> None:
        with self.get_session() as session:
            session.add(EmailVerificationRequestModel(
                id=request.id,
                user_id=request.user_id,
                email=request.email,
                code=request.code,
                expires_at=to_epoch(request.expires_at),
            ))

    def find_email_verification_request(
        self, user_id: str, request_id: str
    ) -> Optional[EmailVerificationRequest]:
        """Load a verification request only if it belongs to user_id."""
        with self.get_session() as session:
            row = session.execute(
                select(EmailVerificationRequestModel).where(
                    EmailVerificationRequestModel.id == request_id,
                    EmailVerificationRequestModel.user_id == user_id,
                )
            ).scalar_one_or_none()
            return _to_email_verification_request(row) if row else None

    def delete_user_email_verification_request(self, user_id: str) -> int:
        with self.get_session() as session:
            result = session.execute(
                delete(EmailVerificationRequestModel).where(EmailVerificationRequestModel.user_id == user_id)
            )
            return result.rowcount


# Singleton instance
_auth_db_instance: Optional[AuthDB] = None


def get_auth_db() -> AuthDB:
    """
    Get singleton AuthDB instance.

    Returns:
        AuthDB instance.
    """
    global _auth_db_instance
    if _auth_db_instance is None:
        _auth_db_instance = AuthDB()
    return _auth_db_instance

"""
Pytest configuration and shared fixtures for merchant portal auth tests.

This module provides common test fixtures for:
- A SQLite auth database per test
- Managers wired to that database
- User factories for each role
- An API test client with dependency overrides
"""
import pytest
import sys
from pathlib import Path
from unittest.mock import MagicMock

import bcrypt
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

# Add project root to Python path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from portal_auth.api.deps import get_db, get_encryptor, get_email_sender
from portal_auth.api.main import create_app
from portal_auth.auth.email_verification import EmailVerificationManager
from portal_auth.auth.encryption import CredentialEncryptor
from portal_auth.auth.mail import EmailSender
from portal_auth.auth.password_reset import PasswordResetManager
from portal_auth.auth.rate_limit import RateLimits
from portal_auth.auth.session import SessionManager
from portal_auth.auth.two_factor import TwoFactorManager
from portal_auth.auth.users import UserManager
from portal_auth.database.auth_db import AuthDB

TEST_PASSWORD = "correct horse battery staple"


@pytest.fixture(autouse=True)
def test_environment(monkeypatch):
    """No network breach lookups and cheap bcrypt rounds."""
    monkeypatch.setenv("PASSWORD_BREACH_CHECK", "false")
    monkeypatch.setenv("APP_ENV", "test")

    real_gensalt = bcrypt.gensalt
    monkeypatch.setattr(bcrypt, "gensalt", lambda rounds=12, prefix=b"2b": real_gensalt(4, prefix))


# ============================================
# Database Fixtures
# ============================================

@pytest.fixture
def auth_db(tmp_path):
    """
    Fresh SQLite database with the full schema.
    Automatically cleaned up after test completes.
    """
    db = AuthDB(f"sqlite:///{tmp_path / 'auth.db'}")
    db.init_schema()
    yield db
    db.engine.dispose()


@pytest.fixture
def encryptor():
    return CredentialEncryptor(Fernet.generate_key())


# ============================================
# Manager Fixtures
# ============================================

@pytest.fixture
def session_manager(auth_db):
    return SessionManager(auth_db)


@pytest.fixture
def user_manager(auth_db, encryptor):
    return UserManager(auth_db, encryptor)


@pytest.fixture
def two_factor_manager(auth_db, encryptor):
    return TwoFactorManager(auth_db, encryptor)


@pytest.fixture
def password_reset_manager(auth_db):
    return PasswordResetManager(auth_db)


@pytest.fixture
def email_verification_manager(auth_db, session_manager):
    return EmailVerificationManager(auth_db, session_manager)


# ============================================
# User Fixtures
# ============================================

@pytest.fixture
def make_user(user_manager, auth_db):
    """
    Factory for users.

    Usage:
        user = make_user("shopper@example.com", role=["CONSUMER"], verified=True)
    """
    def _make_user(email="shopper@example.com", password=TEST_PASSWORD, role=None, verified=False):
        user = user_manager.create_user(
            email=email,
            password=password,
            first_name="Ada",
            last_name="Lovelace",
            role=role if role is not None else ["CONSUMER"],
        )
        if verified:
            auth_db.update_email_and_set_verified(user.id, email)
        return user_manager.get_user(user.id)

    return _make_user


@pytest.fixture
def consumer(make_user, auth_db):
    user = make_user("shopper@example.com", role=["CONSUMER"], verified=True)
    auth_db.add_consumer_profile(user.id, barcode="9300000000001", phone_number="0400000000")
    return user


@pytest.fixture
def merchant_user(make_user, auth_db):
    user = make_user("owner@brand.com.au", role=["MERCHANT"], verified=True)
    merchant_id = auth_db.create_merchant("Harbour Coffee Co")
    brand_id = auth_db.create_brand(merchant_id, "Harbour Roasters")
    auth_db.add_merchant_profile(
        user.id,
        merchant_id,
        brand_roles={brand_id: "OWNER"},
        job_title="Director",
        primary_contact=True,
    )
    return user


# ============================================
# API Fixtures
# ============================================

@pytest.fixture
def email_sender():
    """Mock sender; codes are read back from its call args."""
    return MagicMock(spec=EmailSender)


@pytest.fixture
def rate_limits():
    return RateLimits.create()


@pytest.fixture
def app(auth_db, encryptor, email_sender, rate_limits):
    application = create_app(rate_limits=rate_limits)
    application.dependency_overrides[get_db] = lambda: auth_db
    application.dependency_overrides[get_encryptor] = lambda: encryptor
    application.dependency_overrides[get_email_sender] = lambda: email_sender
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def fake_redis():
    """
    In-memory stand-in for the Redis commands the buckets use.
    TTLs are recorded but never expire.
    """
    class FakePipeline:
        def __init__(self, client):
            self.client = client
            self.commands = []

        def incrby(self, key, amount):
            self.commands.append(("incrby", key, amount))
            return self

        def ttl(self, key):
            self.commands.append(("ttl", key))
            return self

        def execute(self):
            results = [getattr(self.client, name)(*args) for name, *args in self.commands]
            self.commands = []
            return results

    class FakeRedis:
        def __init__(self):
            self.store = {}
            self.expiry = {}

        def pipeline(self):
            return FakePipeline(self)

        def get(self, key):
            value = self.store.get(key)
            return None if value is None else str(value)

        def incrby(self, key, amount):
            self.store[key] = int(self.store.get(key, 0)) + amount
            return self.store[key]

        def decrby(self, key, amount):
            return self.incrby(key, -amount)

        def ttl(self, key):
            if key not in self.store:
                return -2
            return self.expiry.get(key, -1)

        def expire(self, key, seconds):
            self.expiry[key] = seconds
            return True

        def delete(self, key):
            self.store.pop(key, None)
            self.expiry.pop(key, None)
            return 1

        def ping(self):
            return True

    return FakeRedis()

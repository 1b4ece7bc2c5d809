"""
Tests for two-factor credentials and recovery-code reset.
"""
import pytest
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from portal_auth.auth.mfa import generate_totp_key, get_current_totp
from portal_auth.auth.session import generate_session_token
from portal_auth.auth.types import SessionFlags


@pytest.fixture
def enrolled(two_factor_manager, consumer):
    """Consumer with a TOTP key; returns (user, key, recovery_code)."""
    key = generate_totp_key()
    two_factor_manager.update_user_totp_key(consumer.id, key)
    return consumer, key, two_factor_manager.get_user_recovery_code(consumer.id)


class TestTotpKey:

    def test_key_is_encrypted_at_rest(self, two_factor_manager, auth_db, enrolled):
        user, key, _ = enrolled

        stored = auth_db.get_totp_key(user.id)

        assert stored is not None
        assert key not in stored.encode()
        assert two_factor_manager.get_user_totp_key(user.id) == key

    def test_no_key_before_enrollment(self, two_factor_manager, consumer):
        assert two_factor_manager.get_user_totp_key(consumer.id) is None
        assert two_factor_manager.verify_user_totp(consumer.id, "123456") is False

    def test_verify_user_totp(self, two_factor_manager, enrolled):
        user, key, _ = enrolled

        assert two_factor_manager.verify_user_totp(user.id, get_current_totp(key)) is True
        assert two_factor_manager.verify_user_totp(user.id, "abcdef") is False


    def test_register_requires_current_code(self, two_factor_manager, consumer):
        key = generate_totp_key()

        assert two_factor_manager.register_totp_key(consumer.id, key, "abcdef") is False
        assert two_factor_manager.get_user_totp_key(consumer.id) is None

        assert two_factor_manager.register_totp_key(consumer.id, key, get_current_totp(key)) is True
        assert two_factor_manager.get_user_totp_key(consumer.id) == key


class TestRecoveryCode:

    def test_recovery_code_format(self, enrolled):
        _, _, recovery_code = enrolled
        assert len(recovery_code) == 16
        assert recovery_code == recovery_code.upper()

    def test_unknown_user_raises(self, two_factor_manager):
        with pytest.raises(ValueError):
            two_factor_manager.get_user_recovery_code("missing-user")

    def test_regenerate(self, two_factor_manager, enrolled):
        user, _, recovery_code = enrolled

        new_code = two_factor_manager.reset_user_recovery_code(user.id)

        assert new_code != recovery_code
        assert two_factor_manager.get_user_recovery_code(user.id) == new_code


class TestResetWithRecoveryCode:

    def test_reset_clears_key_and_rotates_code(self, two_factor_manager, user_manager, enrolled):
        user, _, recovery_code = enrolled

        assert two_factor_manager.reset_user_2fa_with_recovery_code(user.id, recovery_code) is True

        assert two_factor_manager.get_user_totp_key(user.id) is None
        assert user_manager.get_user(user.id).registered_2fa is False
        assert two_factor_manager.get_user_recovery_code(user.id) != recovery_code

    def test_old_code_fails_after_use(self, two_factor_manager, enrolled):
        user, key, recovery_code = enrolled
        two_factor_manager.reset_user_2fa_with_recovery_code(user.id, recovery_code)
        two_factor_manager.update_user_totp_key(user.id, key)

        assert two_factor_manager.reset_user_2fa_with_recovery_code(user.id, recovery_code) is False
        assert two_factor_manager.get_user_totp_key(user.id) == key

    def test_accepts_lowercase_and_dashes(self, two_factor_manager, enrolled):
        user, _, recovery_code = enrolled
        typed = f"{recovery_code[:8]}-{recovery_code[8:]}".lower()

        assert two_factor_manager.reset_user_2fa_with_recovery_code(user.id, typed) is True

    def test_wrong_code_keeps_key(self, two_factor_manager, enrolled):
        user, key, _ = enrolled

        assert two_factor_manager.reset_user_2fa_with_recovery_code(user.id, "AAAAAAAAAAAAAAAA") is False
        assert two_factor_manager.get_user_totp_key(user.id) == key

    def test_unknown_user(self, two_factor_manager):
        assert two_factor_manager.reset_user_2fa_with_recovery_code("missing-user", "AAAA") is False

    def test_sessions_lose_two_factor_verification(self, two_factor_manager, session_manager, enrolled):
        user, _, recovery_code = enrolled
        token = generate_session_token()
        session_manager.create_session(token, user.id, SessionFlags(two_factor_verified=True))

        two_factor_manager.reset_user_2fa_with_recovery_code(user.id, recovery_code)

        assert session_manager.validate_session_token(token).session.two_factor_verified is False

    def test_concurrent_rotation_returns_false(self, two_factor_manager, auth_db, enrolled):
        user, key, recovery_code = enrolled

        with patch.object(auth_db, "swap_recovery_code_and_clear_totp", return_value=False):
            assert two_factor_manager.reset_user_2fa_with_recovery_code(user.id, recovery_code) is False

        assert two_factor_manager.get_user_totp_key(user.id) == key

    def test_compare_and_swap_rejects_stale_code(self, auth_db, enrolled):
        user, _, _ = enrolled

        assert auth_db.swap_recovery_code_and_clear_totp(user.id, "stale-ciphertext", "new") is False
        assert auth_db.get_totp_key(user.id) is not None

    def test_database_error_returns_false(self, two_factor_manager, auth_db, enrolled):
        user, _, recovery_code = enrolled
        error = OperationalError("UPDATE users", {}, Exception("database is locked"))

        with patch.object(auth_db, "swap_recovery_code_and_clear_totp", side_effect=error):
            assert two_factor_manager.reset_user_2fa_with_recovery_code(user.id, recovery_code) is False


class TestAdministrativeReset:

    def test_clears_key_and_rotates_code(self, two_factor_manager, user_manager, enrolled):
        user, _, recovery_code = enrolled

        assert two_factor_manager.reset_user_2fa(user.id) is True

        assert two_factor_manager.get_user_totp_key(user.id) is None
        assert two_factor_manager.get_user_recovery_code(user.id) != recovery_code
        assert user_manager.get_user(user.id).registered_2fa is False

    def test_sessions_lose_two_factor_verification(self, two_factor_manager, session_manager, enrolled):
        user, _, _ = enrolled
        token = generate_session_token()
        session_manager.create_session(token, user.id, SessionFlags(two_factor_verified=True))

        two_factor_manager.reset_user_2fa(user.id)

        assert session_manager.validate_session_token(token).session.two_factor_verified is False

    def test_unknown_user(self, two_factor_manager):
        assert two_factor_manager.reset_user_2fa("missing-user") is False

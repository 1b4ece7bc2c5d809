"""
Tests for the HTTP API.

Covers:
- Login, logout and the current user
- Email verification and email change
- Two-factor enrollment, challenge and recovery
- Forgot/reset password and password change
- Rate limiting, error bodies and security headers
"""
import pytest
from unittest.mock import patch

from portal_auth.auth.mfa import decode_totp_key, get_current_totp
from portal_auth.api.main import create_app
from portal_auth.auth.rate_limit import RateLimits, RefillingTokenBucket
from portal_auth.auth.session import generate_session_token
from portal_auth.auth.types import SessionFlags

PASSWORD = "correct horse battery staple"
NEW_PASSWORD = "a completely new passphrase"


def login(client, email="shopper@example.com", password=PASSWORD, remember_me=False):
    return client.post(
        "/auth/login",
        json={"email": email, "password": password, "remember_me": remember_me},
    )


def enroll_2fa(client):
    """Run 2FA setup on the client's session. Returns (key, recovery_code)."""
    setup = client.post("/auth/2fa/setup")
    assert setup.status_code == 200
    encoded_key = setup.json()["encoded_key"]
    key = decode_totp_key(encoded_key)

    confirm = client.post(
        "/auth/2fa/setup/confirm",
        json={"encoded_key": encoded_key, "code": get_current_totp(key)},
    )
    assert confirm.status_code == 200
    return key, confirm.json()["recovery_code"]


def sent_code(mock_method):
    email, code = mock_method.call_args[0]
    return code


@pytest.fixture
def enrolled_client(client, consumer):
    """Client signed in as a consumer with 2FA set up and verified."""
    assert login(client).status_code == 200
    key, recovery_code = enroll_2fa(client)
    return client, key, recovery_code


# ============================================
# Login / Logout / Me
# ============================================

class TestLogin:

    def test_unknown_email(self, client):
        response = login(client, email="nobody@example.com")

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password"

    def test_wrong_password_then_throttled(self, client, consumer):
        assert login(client, password="wrong password").status_code == 401

        response = login(client)

        assert response.status_code == 429
        assert "Retry-After" in response.headers

    def test_success_sets_session_cookie(self, client, consumer):
        response = login(client)

        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == consumer.id
        assert data["next_step"] == "2fa-setup"
        assert client.cookies.get("session") == data["access_token"]
        assert "httponly" in response.headers["set-cookie"].lower()

    def test_long_wrong_password_is_rejected(self, client, consumer):
        response = login(client, password="y" * 100)

        assert response.status_code == 401

    def test_password_longer_than_bcrypt_input(self, client, make_user):
        make_user("long@example.com", password="p" * 200, verified=True)

        assert login(client, email="long@example.com", password="p" * 200).status_code == 200

    def test_oversized_client_headers(self, client, consumer):
        response = client.post(
            "/auth/login",
            json={"email": "shopper@example.com", "password": PASSWORD},
            headers={"User-Agent": "x" * 2000, "X-Forwarded-For": "2001:db8::" + "f" * 100},
        )

        assert response.status_code == 200

    def test_unverified_user_must_verify_email(self, client, make_user):
        make_user("new@example.com")

        assert login(client, email="new@example.com").json()["next_step"] == "verify-email"

    def test_remember_me_makes_cookie_persistent(self, client, consumer):
        short = login(client)
        remembered = login(client, remember_me=True)

        assert "expires=" not in short.headers["set-cookie"].lower()
        assert "expires=" in remembered.headers["set-cookie"].lower()

    def test_invalid_email_is_validation_error(self, client):
        response = client.post("/auth/login", json={"email": "not-an-email", "password": "x"})

        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert "email" in body["detail"]


class TestMe:

    def test_requires_session(self, client):
        assert client.get("/auth/me").status_code == 401

    def test_returns_role_shaped_user(self, client, consumer):
        login(client)

        data = client.get("/auth/me").json()

        assert data["id"] == consumer.id
        assert data["role"] == ["CONSUMER"]
        assert data["consumer_user"]["barcode"] == "9300000000001"
        assert data["merchant_user"] is None
        assert data["two_factor_verified"] is False

    def test_merchant_profile(self, client, merchant_user):
        login(client, email="owner@brand.com.au")

        merchant = client.get("/auth/me").json()["merchant_user"]

        assert merchant["merchant"] == "Harbour Coffee Co"
        assert merchant["brand_roles"][0]["role"] == "OWNER"

    def test_bearer_token(self, client, consumer):
        token = login(client).json()["access_token"]
        client.cookies.clear()

        response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200


class TestLogout:

    def test_logout_invalidates_session(self, client, consumer):
        token = login(client).json()["access_token"]

        response = client.post("/auth/logout")

        assert response.status_code == 204
        assert client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).status_code == 401

    def test_logout_all(self, client, consumer):
        first = login(client).json()["access_token"]
        second = login(client).json()["access_token"]

        response = client.post("/auth/logout/all", headers={"Authorization": f"Bearer {first}"})

        assert response.status_code == 204
        client.cookies.clear()
        assert client.get("/auth/me", headers={"Authorization": f"Bearer {second}"}).status_code == 401

    def test_logout_requires_session(self, client):
        assert client.post("/auth/logout").status_code == 401


# ============================================
# Email Verification
# ============================================

class TestEmailVerification:

    @pytest.fixture
    def unverified(self, client, make_user):
        make_user("new@example.com")
        login(client, email="new@example.com")
        return client

    def test_resend_then_verify(self, unverified, email_sender):
        client = unverified

        assert client.post("/auth/email/resend").status_code == 200
        assert client.cookies.get("email_verification")
        code = sent_code(email_sender.send_verification_email)

        wrong_code = "111111" if code == "000000" else "000000"
        assert client.post("/auth/email/verify", json={"code": wrong_code}).status_code == 400

        response = client.post("/auth/email/verify", json={"code": code})

        assert response.status_code == 200
        assert response.json()["next_step"] == "2fa-setup"
        assert client.get("/auth/me").json()["email_verified"] is True

    def test_verify_without_pending_request(self, unverified):
        assert unverified.post("/auth/email/verify", json={"code": "123456"}).status_code == 400

    def test_expired_request_sends_new_code(self, unverified, email_sender):
        client = unverified
        client.post("/auth/email/resend")
        first_cookie = client.cookies.get("email_verification")

        with patch("portal_auth.auth.types.EmailVerificationRequest.is_expired", return_value=True):
            response = client.post("/auth/email/verify", json={"code": "123456"})

        assert response.status_code == 400
        assert email_sender.send_verification_email.call_count == 2
        assert client.cookies.get("email_verification") != first_cookie

    def test_resend_for_verified_email_is_forbidden(self, client, consumer):
        login(client)
        assert client.post("/auth/email/resend").status_code == 403

    def test_resend_is_rate_limited(self, unverified):
        statuses = [unverified.post("/auth/email/resend").status_code for _ in range(4)]
        assert statuses == [200, 200, 200, 429]

    def test_change_email(self, enrolled_client, email_sender):
        client, _, _ = enrolled_client

        response = client.post("/auth/email/change", json={"email": "moved@example.com"})
        assert response.status_code == 200
        email, code = email_sender.send_verification_email.call_args[0]
        assert email == "moved@example.com"

        assert client.post("/auth/email/verify", json={"code": code}).status_code == 200
        assert client.get("/auth/me").json()["email"] == "moved@example.com"

    def test_change_to_existing_email_conflicts(self, enrolled_client, merchant_user):
        client, _, _ = enrolled_client

        response = client.post("/auth/email/change", json={"email": "owner@brand.com.au"})

        assert response.status_code == 409

    def test_change_requires_two_factor(self, client, consumer):
        login(client)
        assert client.post("/auth/email/change", json={"email": "moved@example.com"}).status_code == 403


# ============================================
# Two-Factor Authentication
# ============================================

class TestTwoFactor:

    def test_setup_requires_verified_email(self, client, make_user):
        make_user("new@example.com")
        login(client, email="new@example.com")

        assert client.post("/auth/2fa/setup").status_code == 403

    def test_setup_returns_enrollment_material(self, client, consumer):
        login(client)

        data = client.post("/auth/2fa/setup").json()

        assert decode_totp_key(data["encoded_key"]) is not None
        assert data["provisioning_uri"].startswith("otpauth://totp/")
        assert data["qr_code_base64"].startswith("data:image/png;base64,")

    def test_enrollment(self, enrolled_client):
        client, _, recovery_code = enrolled_client

        me = client.get("/auth/me").json()

        assert me["registered_2fa"] is True
        assert me["two_factor_verified"] is True
        assert len(recovery_code) == 16

    def test_confirm_rejects_wrong_code_and_bad_key(self, client, consumer):
        login(client)
        encoded_key = client.post("/auth/2fa/setup").json()["encoded_key"]

        bad_key = client.post("/auth/2fa/setup/confirm", json={"encoded_key": "bm9wZQ==", "code": "123456"})
        wrong_code = client.post("/auth/2fa/setup/confirm", json={"encoded_key": encoded_key, "code": "abcdef"})

        assert bad_key.status_code == 400
        assert wrong_code.status_code == 400

    def test_new_login_requires_challenge(self, enrolled_client):
        client, key, recovery_code = enrolled_client
        client.cookies.clear()

        assert login(client).json()["next_step"] == "2fa"
        assert client.get("/auth/2fa/recovery-code").status_code == 403

        assert client.post("/auth/2fa/verify", json={"code": "abcdef"}).status_code == 400
        assert client.post("/auth/2fa/verify", json={"code": get_current_totp(key)}).status_code == 200

        response = client.get("/auth/2fa/recovery-code")
        assert response.status_code == 200
        assert response.json()["recovery_code"] == recovery_code

    def test_verify_is_rate_limited(self, enrolled_client):
        client, _, _ = enrolled_client
        client.cookies.clear()
        login(client)

        statuses = [client.post("/auth/2fa/verify", json={"code": "abcdef"}).status_code for _ in range(6)]

        assert statuses == [400] * 5 + [429]

    def test_regenerate_recovery_code(self, enrolled_client):
        client, _, recovery_code = enrolled_client

        response = client.post("/auth/2fa/recovery-code/regenerate")

        assert response.status_code == 200
        assert response.json()["recovery_code"] != recovery_code
        assert client.get("/auth/2fa/recovery-code").json()["recovery_code"] == response.json()["recovery_code"]

    def test_recovery_removes_two_factor(self, enrolled_client):
        client, _, recovery_code = enrolled_client
        client.cookies.clear()
        login(client)

        response = client.post("/auth/2fa/recovery", json={"code": recovery_code})

        assert response.status_code == 200
        assert response.json()["next_step"] == "2fa-setup"
        assert client.get("/auth/me").json()["registered_2fa"] is False

    def test_recovery_with_wrong_code(self, enrolled_client):
        client, _, _ = enrolled_client
        client.cookies.clear()
        login(client)

        assert client.post("/auth/2fa/recovery", json={"code": "AAAAAAAAAAAAAAAA"}).status_code == 400


# ============================================
# Password
# ============================================

class TestPasswordReset:

    def test_unknown_account(self, client):
        response = client.post("/auth/password/forgot", json={"email": "nobody@example.com"})
        assert response.status_code == 404

    def test_merchant_accounts_cannot_self_reset(self, client, merchant_user):
        response = client.post("/auth/password/forgot", json={"email": "owner@brand.com.au"})
        assert response.status_code == 404

    def test_full_reset(self, client, consumer, email_sender):
        old_token = login(client).json()["access_token"]

        response = client.post("/auth/password/forgot", json={"email": "shopper@example.com"})
        assert response.status_code == 200
        assert client.cookies.get("password_reset_session")
        code = sent_code(email_sender.send_password_reset_email)

        assert client.post("/auth/password/reset/check", json={"code": code}).status_code == 200

        response = client.post(
            "/auth/password/reset",
            json={"code": code, "password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD},
        )
        assert response.status_code == 200
        assert client.get("/auth/me", headers={"Authorization": f"Bearer {old_token}"}).status_code == 401

        assert login(client, password=NEW_PASSWORD).status_code == 200
        assert login(client, password=PASSWORD).status_code == 401

    def test_reset_confirms_unverified_email(self, client, make_user, user_manager, email_sender):
        user = make_user("new@example.com")

        client.post("/auth/password/forgot", json={"email": "new@example.com"})
        code = sent_code(email_sender.send_password_reset_email)
        response = client.post(
            "/auth/password/reset",
            json={"code": code, "password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD},
        )

        assert response.status_code == 200
        assert user_manager.get_user(user.id).email_verified is True

    def test_check_unknown_code(self, client):
        assert client.post("/auth/password/reset/check", json={"code": "00000000"}).status_code == 400

    def test_reset_requires_cookie(self, client):
        response = client.post(
            "/auth/password/reset",
            json={"code": "12345678", "password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD},
        )
        assert response.status_code == 401

    def test_reset_rejects_wrong_code_and_mismatch(self, client, consumer, email_sender):
        client.post("/auth/password/forgot", json={"email": "shopper@example.com"})
        code = sent_code(email_sender.send_password_reset_email)

        wrong = client.post(
            "/auth/password/reset",
            json={"code": "not-code", "password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD},
        )
        mismatch = client.post(
            "/auth/password/reset",
            json={"code": code, "password": NEW_PASSWORD, "confirm_password": "something else"},
        )

        assert wrong.status_code == 400
        assert mismatch.status_code == 400

    def test_new_request_replaces_earlier_one(self, client, consumer, email_sender):
        client.post("/auth/password/forgot", json={"email": "shopper@example.com"})
        first_code = sent_code(email_sender.send_password_reset_email)
        client.post("/auth/password/forgot", json={"email": "shopper@example.com"})

        assert client.post("/auth/password/reset/check", json={"code": first_code}).status_code == 400


class TestPasswordUpdate:

    def test_update_password(self, enrolled_client):
        client, _, _ = enrolled_client
        old_token = client.cookies.get("session")

        response = client.post(
            "/auth/password/update",
            json={"current_password": PASSWORD, "password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD},
        )

        assert response.status_code == 200
        assert client.cookies.get("session") != old_token
        me = client.get("/auth/me")
        assert me.status_code == 200
        assert me.json()["two_factor_verified"] is True

    def test_wrong_current_password(self, enrolled_client):
        client, _, _ = enrolled_client

        response = client.post(
            "/auth/password/update",
            json={"current_password": "wrong", "password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD},
        )

        assert response.status_code == 401


# ============================================
# Cross-cutting
# ============================================

class TestAdminResets:

    @pytest.fixture
    def admin_client(self, client, make_user):
        """Client signed in as an administrator with 2FA verified."""
        make_user("admin@portal.com.au", role=["ADMIN"], verified=True)
        assert login(client, email="admin@portal.com.au").status_code == 200
        enroll_2fa(client)
        return client

    def test_requires_administrator(self, enrolled_client, merchant_user):
        client, _, _ = enrolled_client

        response = client.post(f"/auth/admin/users/{merchant_user.id}/password/reset")

        assert response.status_code == 403

    def test_requires_session(self, client, merchant_user):
        assert client.post(f"/auth/admin/users/{merchant_user.id}/2fa/reset").status_code == 401

    def test_unknown_user(self, admin_client):
        assert admin_client.post("/auth/admin/users/missing/password/reset").status_code == 404
        assert admin_client.post("/auth/admin/users/missing/2fa/reset").status_code == 404

    def test_reset_password_emails_temporary_password(self, admin_client, merchant_user, session_manager, email_sender):
        merchant_token = generate_session_token()
        session_manager.create_session(merchant_token, merchant_user.id, SessionFlags())

        response = admin_client.post(f"/auth/admin/users/{merchant_user.id}/password/reset")

        assert response.status_code == 200
        email, first_name, password = email_sender.send_user_password_reset_email.call_args[0]
        assert (email, first_name) == ("owner@brand.com.au", "Ada")
        assert len(password) == 12
        assert not session_manager.validate_session_token(merchant_token).ok
        assert login(admin_client, email="owner@brand.com.au", password=password).status_code == 200

    def test_reset_two_factor(self, admin_client, merchant_user, two_factor_manager, email_sender):
        two_factor_manager.update_user_totp_key(merchant_user.id, b"k" * 20)
        old_recovery_code = two_factor_manager.get_user_recovery_code(merchant_user.id)

        response = admin_client.post(f"/auth/admin/users/{merchant_user.id}/2fa/reset")

        assert response.status_code == 200
        assert two_factor_manager.get_user_totp_key(merchant_user.id) is None
        assert two_factor_manager.get_user_recovery_code(merchant_user.id) != old_recovery_code
        email_sender.send_user_two_factor_reset_email.assert_called_once_with("owner@brand.com.au", "Ada")


class TestGlobalRateLimit:

    def test_post_budget_per_ip(self, client, rate_limits, consumer):
        rate_limits.global_ip = RefillingTokenBucket(4, 60, name="global_ip")

        assert login(client).status_code == 200
        assert login(client).status_code == 429

    def test_two_factor_setup_counts_against_budget(self, client, rate_limits, consumer):
        assert login(client).status_code == 200
        rate_limits.global_ip = RefillingTokenBucket(3, 60, name="global_ip")

        assert client.post("/auth/2fa/setup").status_code == 200
        assert client.post("/auth/2fa/setup").status_code == 429


class TestAppFactory:

    def test_builds_in_memory_limits_by_default(self, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_BACKEND", "memory")

        application = create_app()

        assert isinstance(application.state.rate_limits, RateLimits)
        assert application.state.rate_limits.totp.redis is None

    def test_uses_given_limits(self, rate_limits):
        assert create_app(rate_limits=rate_limits).state.rate_limits is rate_limits


class TestSecurityHeaders:

    def test_security_headers_present(self, client):
        response = client.get("/health/live")

        assert response.headers.get("X-Frame-Options") == "DENY"
        assert response.headers.get("X-Content-Type-Options") == "nosniff"
        assert response.headers.get("Cache-Control") == "no-store"
        assert "default-src 'none'" in response.headers.get("Content-Security-Policy", "")

    def test_request_id_echoed(self, client):
        response = client.get("/health/live", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"


class TestHealth:

    def test_health(self, client):
        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["services"]["database"].startswith("healthy")
        assert data["services"]["redis"].startswith("fallback_mode")

    def test_ready(self, client):
        assert client.get("/health/ready").json() == {"status": "ready"}

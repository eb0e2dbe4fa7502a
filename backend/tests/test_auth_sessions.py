# Overview: Pytest coverage for login, bearer sessions and password rules.

"""
Authentication and Session Tests

SECURITY TESTS: Prove that tokens are opaque and revocable, that
deactivated accounts lose access immediately, and that failed logins leave
an audit trail.
"""

from datetime import timedelta

import pytest

from shoppos.errors import ConflictError, ValidationError
from shoppos.models import SecurityEvent, SessionToken
from shoppos.services import auth_service, session_service
from shoppos.services.auth_service import PasswordValidationError

PASSWORD = "Password123!"


class TestPasswords:

    @pytest.mark.parametrize("password", ["Short1!", "alllower1!", "ALLUPPER1!", "NoDigits!!", "NoSpecial123"])
    def test_weak_passwords_rejected(self, app, password):
        with pytest.raises(PasswordValidationError):
            auth_service.validate_password_strength(password)

    def test_hash_is_bcrypt_and_verifies(self, app):
        hashed = auth_service.hash_password(PASSWORD)
        assert hashed.startswith("$2")
        assert auth_service.verify_password(PASSWORD, hashed)
        assert not auth_service.verify_password("Wrong123!", hashed)

    def test_malformed_hash_does_not_verify(self, app):
        assert auth_service.verify_password(PASSWORD, "not-a-hash") is False

    def test_temporary_password_is_strong(self, app):
        auth_service.validate_password_strength(auth_service.generate_temporary_password())


class TestCreateUser:

    def test_email_is_normalized_and_unique(self, db_session, new_user):
        user = new_user("  Mixed@Case.TEST ")
        assert user.email == "mixed@case.test"
        with pytest.raises(ConflictError):
            new_user("mixed@case.test")

    def test_unknown_role_rejected(self, db_session):
        with pytest.raises(ValidationError):
            auth_service.create_user(name="X", email="x@y.test", password=PASSWORD, role="janitor")


class TestSessions:

    def test_token_is_stored_hashed(self, db_session, owner_a):
        session, token = session_service.create_session(user_id=owner_a.id)
        assert session.token_hash == session_service.hash_token(token)
        assert token not in session.token_hash

    def test_validate_and_revoke(self, db_session, owner_a):
        _, token = session_service.create_session(user_id=owner_a.id)
        assert session_service.validate_session(token).user.id == owner_a.id

        assert session_service.revoke_session(token) is True
        assert session_service.validate_session(token) is None
        assert session_service.revoke_session(token) is False

    def test_expired_session_is_invalid(self, db_session, owner_a):
        session, token = session_service.create_session(user_id=owner_a.id)
        session.expires_at = session.expires_at - timedelta(days=30)
        db_session.commit()
        assert session_service.validate_session(token) is None

    def test_idle_session_is_revoked(self, db_session, owner_a):
        session, token = session_service.create_session(user_id=owner_a.id)
        session.last_used_at = session.last_used_at - timedelta(hours=3)
        db_session.commit()

        assert session_service.validate_session(token) is None
        assert db_session.get(SessionToken, session.id).revoked_reason == "Idle timeout"

    def test_deactivated_user_loses_sessions(self, db_session, owner_a):
        _, token = session_service.create_session(user_id=owner_a.id)
        owner_a.is_active = False
        db_session.commit()
        assert session_service.validate_session(token) is None

    def test_revoke_all(self, db_session, owner_a):
        for _ in range(3):
            session_service.create_session(user_id=owner_a.id)
        assert session_service.revoke_all_user_sessions(owner_a.id) == 3


class TestAuthRoutes:

    def test_login_returns_token_and_memberships(self, client, db_session, tenant_a, owner_a):
        resp = client.post("/api/auth/login", json={"email": "OWNER@shop-a.test", "password": PASSWORD})

        assert resp.status_code == 200
        assert resp.json["message"] == "Login successful"
        assert resp.json["user"]["email"] == "owner@shop-a.test"
        assert len(resp.json["token"]) == 64
        [membership] = resp.json["memberships"]
        assert membership["role"] == "owner"
        assert membership["tenant"]["id"] == tenant_a.id
        assert membership["is_current"] is True

    def test_bad_password_is_401_and_logged(self, client, db_session, owner_a):
        resp = client.post("/api/auth/login", json={"email": owner_a.email, "password": "Wrong123!"})

        assert resp.status_code == 401
        assert resp.json["message"] == "Invalid credentials"
        event = db_session.query(SecurityEvent).filter_by(event_type="LOGIN_FAILED").one()
        assert event.success is False
        assert owner_a.email in event.reason

    def test_missing_fields_is_400(self, client, db_session):
        resp = client.post("/api/auth/login", json={"email": "someone@x.test"})
        assert resp.status_code == 400

    def test_deactivated_user_cannot_log_in(self, client, db_session, owner_a):
        owner_a.is_active = False
        db_session.commit()
        resp = client.post("/api/auth/login", json={"email": owner_a.email, "password": PASSWORD})
        assert resp.status_code == 401

    def test_me(self, client, db_session, tenant_a, owner_a, headers_for):
        resp = client.get("/api/auth/me", headers=headers_for(owner_a))
        assert resp.status_code == 200
        assert resp.json["user"]["id"] == owner_a.id
        assert resp.json["current_tenant_id"] == tenant_a.id

    def test_logout_revokes_token(self, client, db_session, owner_a, headers_for):
        headers = headers_for(owner_a)
        assert client.post("/api/auth/logout", headers=headers).status_code == 200

        resp = client.get("/api/auth/me", headers=headers)
        assert resp.status_code == 401
        assert resp.json["message"] == "Invalid or expired token"

    def test_garbage_token_is_401(self, client, db_session):
        resp = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-real-token"})
        assert resp.status_code == 401

    def test_deactivated_user_token_is_401(self, client, db_session, owner_a, headers_for):
        headers = headers_for(owner_a)
        owner_a.is_active = False
        db_session.commit()
        assert client.get("/api/auth/me", headers=headers).status_code == 401

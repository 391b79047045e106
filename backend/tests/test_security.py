"""
Tests for outreach.core.security and the login endpoint: JWT tokens,
password hashing, bearer-token dependencies.
"""
import time
from datetime import timedelta

import pytest
from fastapi import HTTPException
from jose import JWTError
from sqlmodel import select

from outreach.core.security import create_access_token, decode_access_token


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------

class TestAccessToken:

    def test_claims(self):
        payload = decode_access_token(create_access_token(subject="admin"))

        assert payload.sub == "admin"
        assert payload.jti

    def test_non_string_subject_is_stringified(self):
        assert decode_access_token(create_access_token(subject=42)).sub == "42"

    def test_custom_expiry(self):
        from jose import jwt

        token = create_access_token(subject="admin", expires_delta=timedelta(minutes=5))
        claims = jwt.get_unverified_claims(token)

        assert 250 < claims["exp"] - time.time() < 310

    def test_expired_token_rejected(self):
        token = create_access_token(subject="admin", expires_delta=timedelta(seconds=-10))
        with pytest.raises(JWTError):
            decode_access_token(token)

    def test_foreign_signature_rejected(self):
        from jose import jwt

        forged = jwt.encode({"sub": "admin"}, "not-the-server-key-" * 3, algorithm="HS256")
        with pytest.raises(JWTError):
            decode_access_token(forged)

    def test_each_token_has_unique_jti(self):
        first = decode_access_token(create_access_token("admin"))
        second = decode_access_token(create_access_token("admin"))
        assert first.jti != second.jti


# ---------------------------------------------------------------------------
# Password hashing & verification
# ---------------------------------------------------------------------------

class TestPasswordHashing:

    def test_hash_and_verify_roundtrip(self):
        from outreach.core.security import get_password_hash, verify_password

        hashed = get_password_hash("my-secure-p@ssw0rd!")
        assert verify_password("my-secure-p@ssw0rd!", hashed) is True
        assert verify_password("wrong-password", hashed) is False

    def test_hash_is_salted(self):
        from outreach.core.security import get_password_hash

        h1 = get_password_hash("password")
        h2 = get_password_hash("password")
        assert h1 != h2
        assert h1.startswith("$pbkdf2-sha256$")


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

class TestCurrentUser:

    def test_admin_token_accepted(self):
        from outreach.api.deps import get_current_user
        from outreach.core.security import create_access_token

        assert get_current_user(create_access_token("admin")) == "admin"

    def test_other_subject_rejected(self):
        from outreach.api.deps import get_current_user
        from outreach.core.security import create_access_token

        with pytest.raises(HTTPException) as exc_info:
            get_current_user(create_access_token("mallory"))
        assert exc_info.value.status_code == 403

    def test_garbage_token_rejected(self):
        from outreach.api.deps import get_current_user

        with pytest.raises(HTTPException):
            get_current_user("not-a-jwt")

    def test_actor_defaults_to_admin(self):
        from outreach.api.deps import get_actor

        assert get_actor(None) == "admin"
        assert get_actor("not-a-jwt") == "anonymous"


# ---------------------------------------------------------------------------
# Login endpoint
# ---------------------------------------------------------------------------

@pytest.fixture
def admin_user(session):
    from outreach.core.security import get_password_hash
    from outreach.models.user import User

    user = User(username="admin", hashed_password=get_password_hash("testpassword1234"))
    session.add(user)
    session.commit()
    return user


class TestLoginEndpoint:

    def test_login_returns_token(self, client, admin_user):
        resp = client.post(
            "/api/v1/login/access-token",
            data={"username": "admin", "password": "testpassword1234"},
        )
        assert resp.status_code == 200
        token = resp.json()["access_token"]

        me = client.get("/api/v1/login/me", headers={"Authorization": f"Bearer {token}"})
        assert me.json() == {"username": "admin"}

    def test_wrong_password_is_logged(self, client, session, admin_user):
        from outreach.models.operation_log import OperationLog

        resp = client.post(
            "/api/v1/login/access-token",
            data={"username": "admin", "password": "nope"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Incorrect username or password"

        log = session.exec(select(OperationLog).where(OperationLog.action == "login")).one()
        assert log.status == "failed"

    def test_me_requires_token(self, client):
        resp = client.get("/api/v1/login/me")
        assert resp.status_code == 401

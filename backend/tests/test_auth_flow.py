from __future__ import annotations

from datetime import datetime, timedelta, timezone

from conftest import TEST_PASSWORD, bearer, token_from_email

from storefront.models.refresh_token import RefreshToken
from storefront.models.user import User, UserRole


def test_register_verify_login_refresh_logout(client, db_session, sent_emails):
    email = "newuser@example.com"
    password = "Meadow_48213"

    res = client.post("/auth/register", json={"email": email, "password": password, "fullName": "New User"})
    assert res.status_code == 201
    body = res.json()
    assert body["success"] is True
    assert body["data"]["user"]["email"] == email
    assert body["data"]["user"]["emailVerified"] is False
    assert body["data"]["user"]["role"] == "CUSTOMER"
    assert "passwordHash" not in body["data"]["user"]

    user = db_session.query(User).filter(User.email == email).first()
    assert user is not None
    assert user.email_verified is False
    assert user.password_hash != password

    # Verification link went out.
    assert len(sent_emails) == 1
    to_email, subject, mail_body = sent_emails[0]
    assert to_email == email
    assert "verify" in subject.lower()
    token = token_from_email(mail_body)

    res = client.post("/auth/verify-email", json={"token": token})
    assert res.status_code == 200
    verified = res.json()["data"]
    assert verified["user"]["emailVerified"] is True
    assert verified["accessToken"] and verified["refreshToken"]

    res = client.post("/auth/login", json={"email": email, "password": password})
    assert res.status_code == 200
    login = res.json()
    assert login["message"] == "Login successful"
    access_token = login["data"]["accessToken"]
    refresh_token = login["data"]["refreshToken"]

    res = client.get("/auth/me", headers={"Authorization": f"Bearer {access_token}"})
    assert res.status_code == 200
    assert res.json()["data"]["user"]["email"] == email

    res = client.post("/auth/refresh-token", json={"refreshToken": refresh_token})
    assert res.status_code == 200
    refreshed = res.json()["data"]
    assert isinstance(refreshed["accessToken"], str) and refreshed["accessToken"]
    # Rotation is off by default: no replacement refresh token.
    assert refreshed.get("refreshToken") is None

    res = client.post(
        "/auth/logout",
        json={"refreshToken": refresh_token},
        headers={"Authorization": f"Bearer {access_token}"},
    )
    assert res.status_code == 200
    assert res.json()["message"] == "Logged out successfully"

    res = client.post("/auth/refresh-token", json={"refreshToken": refresh_token})
    assert res.status_code == 401


def test_register_duplicate_email_is_409(client, customer):
    res = client.post("/auth/register", json={"email": customer.email, "password": "Meadow_48213"})
    assert res.status_code == 409
    assert res.json()["message"] == "User with this email already exists"


def test_register_email_is_case_insensitive(client, customer):
    res = client.post("/auth/register", json={"email": customer.email.upper(), "password": "Meadow_48213"})
    assert res.status_code == 409


def test_register_rejects_weak_password(client, db_session):
    res = client.post("/auth/register", json={"email": "weak@example.com", "password": "password"})
    assert res.status_code == 400
    assert "number" in res.json()["message"]
    assert db_session.query(User).filter(User.email == "weak@example.com").first() is None


def test_login_unverified_email_is_401(client, db_session):
    res = client.post("/auth/register", json={"email": "pending@example.com", "password": "Meadow_48213"})
    assert res.status_code == 201

    res = client.post("/auth/login", json={"email": "pending@example.com", "password": "Meadow_48213"})
    assert res.status_code == 401
    assert res.json()["success"] is False
    assert db_session.query(RefreshToken).count() == 0


def test_login_wrong_password_is_401(client, customer):
    res = client.post("/auth/login", json={"email": customer.email, "password": "Wrong_password_1"})
    assert res.status_code == 401
    assert res.json()["message"] == "Invalid credentials"


def test_login_unknown_email_is_401(client):
    res = client.post("/auth/login", json={"email": "nobody@example.com", "password": TEST_PASSWORD})
    assert res.status_code == 401


def test_login_inactive_user_is_401(client, db_session, customer):
    customer.is_active = False
    db_session.commit()
    res = client.post("/auth/login", json={"email": customer.email, "password": TEST_PASSWORD})
    assert res.status_code == 401


def test_login_sets_last_login_and_creates_one_refresh_token(client, db_session, customer):
    assert customer.last_login_at is None
    res = client.post("/auth/login", json={"email": customer.email, "password": TEST_PASSWORD})
    assert res.status_code == 200

    db_session.refresh(customer)
    assert customer.last_login_at is not None
    rows = db_session.query(RefreshToken).filter(RefreshToken.user_id == customer.id).all()
    assert len(rows) == 1
    # Only the hash is stored.
    assert rows[0].token_hash != res.json()["data"]["refreshToken"]


def test_two_logins_keep_both_sessions(client, db_session, customer):
    first = client.post("/auth/login", json={"email": customer.email, "password": TEST_PASSWORD}).json()
    second = client.post("/auth/login", json={"email": customer.email, "password": TEST_PASSWORD}).json()

    for data in (first["data"], second["data"]):
        res = client.post("/auth/refresh-token", json={"refreshToken": data["refreshToken"]})
        assert res.status_code == 200


def test_me_requires_token(client):
    res = client.get("/auth/me")
    assert res.status_code == 401


def test_me_rejects_garbage_token(client):
    res = client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 401


def test_me_accepts_access_cookie(client, customer):
    token = bearer(customer)["Authorization"].split(" ", 1)[1]
    client.cookies.set("accessToken", token)
    res = client.get("/auth/me")
    assert res.status_code == 200
    assert res.json()["data"]["user"]["id"] == customer.id


def test_verify_email_token_is_single_use(client, sent_emails):
    client.post("/auth/register", json={"email": "once@example.com", "password": "Meadow_48213"})
    token = token_from_email(sent_emails[-1][2])

    assert client.post("/auth/verify-email", json={"token": token}).status_code == 200
    res = client.post("/auth/verify-email", json={"token": token})
    assert res.status_code == 400
    assert res.json()["message"] == "Invalid or expired verification token"


def test_verify_email_link_via_query_param(client, sent_emails):
    client.post("/auth/register", json={"email": "link@example.com", "password": "Meadow_48213"})
    token = token_from_email(sent_emails[-1][2])

    res = client.get("/auth/verify-email", params={"token": token})
    assert res.status_code == 200
    assert res.json()["data"]["user"]["emailVerified"] is True


def test_verify_email_rejects_invalid_token(client):
    res = client.post("/auth/verify-email", json={"token": "nope"})
    assert res.status_code == 400


def test_resend_verification_replaces_previous_link(client, sent_emails):
    client.post("/auth/register", json={"email": "again@example.com", "password": "Meadow_48213"})
    first = token_from_email(sent_emails[-1][2])

    res = client.post("/auth/resend-verification", json={"email": "again@example.com"})
    assert res.status_code == 200
    assert res.json()["message"] == "Verification email has been sent."
    second = token_from_email(sent_emails[-1][2])
    assert first != second

    assert client.post("/auth/verify-email", json={"token": first}).status_code == 400
    assert client.post("/auth/verify-email", json={"token": second}).status_code == 200


def test_resend_verification_for_verified_user_is_400(client, customer):
    res = client.post("/auth/resend-verification", json={"email": customer.email})
    assert res.status_code == 400
    assert res.json()["message"] == "Email is already verified"


def test_resend_verification_unknown_email_is_silent(client, sent_emails):
    res = client.post("/auth/resend-verification", json={"email": "ghost@example.com"})
    assert res.status_code == 200
    assert sent_emails == []


def test_forgot_and_reset_password(client, db_session, customer, sent_emails):
    login = client.post("/auth/login", json={"email": customer.email, "password": TEST_PASSWORD}).json()
    old_refresh = login["data"]["refreshToken"]

    res = client.post("/auth/forgot-password", json={"email": customer.email})
    assert res.status_code == 200
    assert res.json()["message"] == "If the email exists, a password reset link has been sent."
    token = token_from_email(sent_emails[-1][2])

    res = client.post("/auth/reset-password", json={"token": token, "newPassword": "Harbor_99120"})
    assert res.status_code == 200

    # New password works, old one doesn't, and every session was signed out.
    assert client.post("/auth/login", json={"email": customer.email, "password": TEST_PASSWORD}).status_code == 401
    assert client.post("/auth/login", json={"email": customer.email, "password": "Harbor_99120"}).status_code == 200
    assert client.post("/auth/refresh-token", json={"refreshToken": old_refresh}).status_code == 401

    # Link is single-use.
    res = client.post("/auth/reset-password", json={"token": token, "newPassword": "Another_55555"})
    assert res.status_code == 400


def test_access_token_issued_before_password_reset_is_rejected(client, db_session, customer, sent_emails, monkeypatch):
    from storefront.core import security

    now = datetime.now(timezone.utc)
    customer.password_changed_at = now - timedelta(minutes=10)
    db_session.commit()

    earlier = now - timedelta(minutes=5)
    with monkeypatch.context() as m:
        m.setattr(security, "_now_utc", lambda: earlier)
        old_headers = bearer(customer)
    assert client.get("/auth/me", headers=old_headers).status_code == 200

    client.post("/auth/forgot-password", json={"email": customer.email})
    token = token_from_email(sent_emails[-1][2])
    assert client.post("/auth/reset-password", json={"token": token, "newPassword": "Harbor_99120"}).status_code == 200

    assert client.get("/auth/me", headers=old_headers).status_code == 401

    login = client.post("/auth/login", json={"email": customer.email, "password": "Harbor_99120"}).json()
    fresh = {"Authorization": f"Bearer {login['data']['accessToken']}"}
    assert client.get("/auth/me", headers=fresh).status_code == 200


def test_forgot_password_unknown_email_same_response(client, sent_emails):
    res = client.post("/auth/forgot-password", json={"email": "ghost@example.com"})
    assert res.status_code == 200
    assert res.json()["message"] == "If the email exists, a password reset link has been sent."
    assert sent_emails == []


def test_reset_password_rejects_weak_password(client, customer, sent_emails):
    client.post("/auth/forgot-password", json={"email": customer.email})
    token = token_from_email(sent_emails[-1][2])

    res = client.post("/auth/reset-password", json={"token": token, "newPassword": "short"})
    assert res.status_code == 400

    # The link was not burned by the failed attempt.
    res = client.post("/auth/reset-password", json={"token": token, "newPassword": "Harbor_99120"})
    assert res.status_code == 200


def test_reset_token_cannot_verify_email(client, db_session, sent_emails):
    client.post("/auth/register", json={"email": "mixup@example.com", "password": "Meadow_48213"})
    user = db_session.query(User).filter(User.email == "mixup@example.com").first()
    assert user.role == UserRole.CUSTOMER

    from storefront.core.security import create_password_reset_token

    token, _, _ = create_password_reset_token(user.email)
    res = client.post("/auth/verify-email", json={"token": token})
    assert res.status_code == 400

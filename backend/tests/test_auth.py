from __future__ import annotations

from flask_jwt_extended import decode_token

from conftest import login
from donorvault.models import AuditLog, User


def test_register_creates_non_admin_user(client, app):
    response = client.post(
        "/auth/register",
        json={
            "email": "  Bob@Example.com ",
            "password": "bobpass1",
            "firstName": "Bob",
            "lastName": "Giver",
            "language": "EN",
        },
    )
    assert response.status_code == 201
    payload = response.get_json()
    assert payload["email"] == "bob@example.com"
    assert payload["firstName"] == "Bob"
    assert payload["language"] == "en"
    assert "isAdmin" not in payload
    assert "password_hash" not in payload

    with app.app_context():
        user = User.query.filter_by(email="bob@example.com").one()
        assert user.is_admin is False
        assert user.password_hash != "bobpass1"
        assert user.verify_password("bobpass1")


def test_register_defaults_language(client):
    response = client.post("/auth/register", json={"email": "carol@example.com", "password": "carolpass"})
    assert response.status_code == 201
    assert response.get_json()["language"] == "es"


def test_register_rejects_duplicates_and_bad_input(client, app):
    duplicate = client.post("/auth/register", json={"email": "ALICE@example.com", "password": "whatever"})
    assert duplicate.status_code == 409
    error = duplicate.get_json()["error"]
    assert error["code"] == "USER_EXISTS"
    assert error["kind"] == "ALREADY_EXISTS"

    missing = client.post("/auth/register", json={"email": "nobody@example.com"})
    assert missing.status_code == 400
    assert missing.get_json()["error"]["kind"] == "INVALID_ARGUMENT"

    short = client.post("/auth/register", json={"email": "short@example.com", "password": "12345"})
    assert short.status_code == 400
    assert short.get_json()["error"]["code"] == "INVALID_PASSWORD"
    with app.app_context():
        assert User.query.filter_by(email="short@example.com").count() == 0

    invalid_email = client.post("/auth/register", json={"email": "not-an-email", "password": "longenough"})
    assert invalid_email.status_code == 400
    assert invalid_email.get_json()["error"]["code"] == "INVALID_EMAIL"


def test_login_returns_token_with_identity_and_email(client, app):
    response = client.post("/auth/login", json={"email": "alice@example.com", "password": "alicepass"})
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["user"]["email"] == "alice@example.com"
    assert payload["user"]["isAdmin"] is False

    with app.app_context():
        claims = decode_token(payload["token"])
        alice = User.query.filter_by(email="alice@example.com").one()
        assert claims["sub"] == str(alice.id)
        assert claims["email"] == "alice@example.com"
        assert claims["exp"] - claims["iat"] == 7 * 24 * 3600


def test_login_is_case_insensitive_on_email(client):
    response = client.post("/auth/login", json={"email": "Alice@Example.COM", "password": "alicepass"})
    assert response.status_code == 200


def test_login_failures_are_indistinguishable(client):
    wrong_password = client.post("/auth/login", json={"email": "alice@example.com", "password": "nope"})
    unknown_user = client.post("/auth/login", json={"email": "ghost@example.com", "password": "nope"})

    assert wrong_password.status_code == 401
    assert unknown_user.status_code == 401
    assert wrong_password.get_json() == unknown_user.get_json()
    assert wrong_password.get_json()["error"]["kind"] == "UNAUTHENTICATED"
    assert "token" not in wrong_password.get_json()
    assert "token" not in unknown_user.get_json()


def test_login_requires_both_fields(client):
    response = client.post("/auth/login", json={"email": "alice@example.com"})
    assert response.status_code == 400


def test_login_is_rate_limited_after_repeated_failures(client, app):
    app.config["LOGIN_RATE_LIMIT_MAX_ATTEMPTS"] = 3

    for _ in range(3):
        response = client.post("/auth/login", json={"email": "alice@example.com", "password": "bad"})
        assert response.status_code == 401

    blocked = client.post("/auth/login", json={"email": "alice@example.com", "password": "alicepass"})
    assert blocked.status_code == 429
    assert blocked.get_json()["error"]["code"] == "RATE_LIMITED"


def test_login_writes_audit_entries(client, app):
    login(client, "alice@example.com", "alicepass")
    client.post("/auth/login", json={"email": "alice@example.com", "password": "bad"})

    with app.app_context():
        actions = [entry.action for entry in AuditLog.query.order_by(AuditLog.id.asc()).all()]
        assert "auth.login" in actions
        assert "auth.login_failed" in actions


def test_token_is_accepted_from_json_body(client):
    token = client.post("/auth/login", json={"email": "alice@example.com", "password": "alicepass"}).get_json()["token"]

    response = client.post("/auth/profile", json={"token": token})
    assert response.status_code == 200
    assert response.get_json()["email"] == "alice@example.com"


def test_protected_routes_reject_missing_or_bad_tokens(client):
    missing = client.get("/auth/profile")
    assert missing.status_code == 401
    assert missing.get_json()["error"]["kind"] == "UNAUTHENTICATED"

    bad = client.get("/auth/profile", headers={"Authorization": "Bearer not-a-jwt"})
    assert bad.status_code == 401
    assert bad.get_json()["error"]["code"] == "INVALID_TOKEN"

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from conftest import login, user_id
from donorvault.extensions import db
from donorvault.models import Donation, FolderAccess, User


def _donate(app, email: str, amount: str, payment_id: str) -> None:
    uid = user_id(app, email)
    with app.app_context():
        db.session.add(
            Donation(user_id=uid, amount=Decimal(amount), currency="USD", payment_provider="stripe", payment_id=payment_id)
        )
        db.session.commit()


def test_list_users_with_donation_stats(client, app, admin_headers):
    _donate(app, "alice@example.com", "30", "pi_1")
    _donate(app, "alice@example.com", "120", "pi_2")

    response = client.post("/admin/users", headers=admin_headers, json={})
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["total"] == 2
    assert payload["page"] == 1
    assert payload["limit"] == 20

    users = {user["email"]: user for user in payload["users"]}
    assert users["alice@example.com"]["totalDonated"] == 150
    assert users["alice@example.com"]["donationCount"] == 2
    assert users["alice@example.com"]["lastDonation"] is not None
    assert datetime.fromisoformat(users["alice@example.com"]["lastDonation"]).tzinfo is not None
    assert users["admin@example.com"]["totalDonated"] == 0
    assert users["admin@example.com"]["lastDonation"] is None
    assert "password_hash" not in users["alice@example.com"]


def test_list_users_paginates(client, admin_headers):
    response = client.post("/admin/users", headers=admin_headers, json={"page": 2, "limit": 1})
    payload = response.get_json()
    assert payload["total"] == 2
    assert len(payload["users"]) == 1


def test_user_details_includes_donations_and_access(client, app, admin_headers):
    _donate(app, "alice@example.com", "40", "pi_details")
    alice_id = user_id(app, "alice@example.com")
    client.post("/admin/users/grant-access", headers=admin_headers, json={"userId": alice_id, "folderId": 1})

    response = client.post("/admin/users/details", headers=admin_headers, json={"userId": alice_id})
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["user"]["email"] == "alice@example.com"
    assert payload["user"]["totalDonated"] == 40
    assert [donation["amount"] for donation in payload["donations"]] == [40]
    assert [grant["id"] for grant in payload["folderAccess"]] == [1]

    missing = client.post("/admin/users/details", headers=admin_headers, json={"userId": 999})
    assert missing.status_code == 404


def test_create_user_can_log_in(client, admin_headers):
    response = client.post(
        "/admin/users/create",
        headers=admin_headers,
        json={"email": "Dave@Example.com", "password": "davepass", "firstName": "Dave", "isAdmin": False},
    )
    assert response.status_code == 201
    assert response.get_json()["user"]["email"] == "dave@example.com"

    login(client, "dave@example.com", "davepass")

    duplicate = client.post("/admin/users/create", headers=admin_headers, json={"email": "dave@example.com", "password": "davepass"})
    assert duplicate.status_code == 409


def test_update_user_changes_fields_and_password(client, app, admin_headers):
    alice_id = user_id(app, "alice@example.com")
    response = client.put(
        "/admin/users/update",
        headers=admin_headers,
        json={"userId": alice_id, "firstName": "Alicia", "password": "resetpass", "isAdmin": True},
    )
    assert response.status_code == 200
    user = response.get_json()["user"]
    assert user["firstName"] == "Alicia"
    assert user["lastName"] == "Donor"
    assert user["isAdmin"] is True

    login(client, "alice@example.com", "resetpass")


def test_update_user_rejects_taken_email(client, app, admin_headers):
    response = client.put(
        "/admin/users/update",
        headers=admin_headers,
        json={"userId": user_id(app, "alice@example.com"), "email": "admin@example.com"},
    )
    assert response.status_code == 409


def test_admin_cannot_remove_own_admin_flag(client, app, admin_headers):
    response = client.put(
        "/admin/users/update",
        headers=admin_headers,
        json={"userId": user_id(app, "admin@example.com"), "isAdmin": False},
    )
    assert response.status_code == 400

    with app.app_context():
        assert User.query.filter_by(email="admin@example.com").one().is_admin is True


def test_delete_user_cascades(client, app, admin_headers):
    _donate(app, "alice@example.com", "10", "pi_gone")
    alice_id = user_id(app, "alice@example.com")
    client.post("/admin/users/grant-access", headers=admin_headers, json={"userId": alice_id, "folderId": 1})

    response = client.delete("/admin/users/delete", headers=admin_headers, json={"userId": alice_id})
    assert response.status_code == 200

    with app.app_context():
        assert db.session.get(User, alice_id) is None
        assert Donation.query.filter_by(user_id=alice_id).count() == 0
        assert FolderAccess.query.filter_by(user_id=alice_id).count() == 0


def test_admin_accounts_cannot_be_deleted(client, app, admin_headers):
    response = client.delete("/admin/users/delete", headers=admin_headers, json={"userId": user_id(app, "admin@example.com")})
    assert response.status_code == 403

    missing = client.delete("/admin/users/delete", headers=admin_headers, json={"userId": 999})
    assert missing.status_code == 404


def test_grant_and_revoke_access(client, app, admin_headers):
    alice_id = user_id(app, "alice@example.com")

    for _ in range(2):
        granted = client.post("/admin/users/grant-access", headers=admin_headers, json={"userId": alice_id, "folderId": 2})
        assert granted.status_code == 200

    with app.app_context():
        assert FolderAccess.query.filter_by(user_id=alice_id).count() == 1

    revoked = client.delete("/admin/users/revoke-access", headers=admin_headers, json={"userId": alice_id, "folderId": 2})
    assert revoked.status_code == 200
    revoked_again = client.delete("/admin/users/revoke-access", headers=admin_headers, json={"userId": alice_id, "folderId": 2})
    assert revoked_again.status_code == 200

    with app.app_context():
        assert FolderAccess.query.filter_by(user_id=alice_id).count() == 0


def test_grant_access_requires_existing_user_and_folder(client, app, admin_headers):
    alice_id = user_id(app, "alice@example.com")
    assert client.post("/admin/users/grant-access", headers=admin_headers, json={"userId": 999, "folderId": 1}).status_code == 404
    assert client.post("/admin/users/grant-access", headers=admin_headers, json={"userId": alice_id, "folderId": 999}).status_code == 404

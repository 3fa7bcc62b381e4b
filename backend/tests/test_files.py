from __future__ import annotations

from conftest import user_id
from donorvault.extensions import db
from donorvault.models import FolderAccess, StoredFile


def _add_file(app, folder_id: int, original_name: str) -> int:
    with app.app_context():
        item = StoredFile(
            folder_id=folder_id,
            name=f"{folder_id}/1700000000000_{original_name}",
            original_name=original_name,
            file_type="text/plain",
            file_size=5,
            storage_path=f"{folder_id}/1700000000000_{original_name}",
        )
        db.session.add(item)
        db.session.commit()
        return item.id


def _grant(app, email: str, folder_id: int) -> None:
    uid = user_id(app, email)
    with app.app_context():
        db.session.add(FolderAccess(user_id=uid, folder_id=folder_id))
        db.session.commit()


def test_list_shows_all_folders_with_access_flags(client, app, alice_headers):
    _grant(app, "alice@example.com", 1)

    response = client.post("/files/list", headers=alice_headers, json={})
    assert response.status_code == 200
    payload = response.get_json()
    folders = {folder["id"]: folder for folder in payload["folders"]}
    assert folders[1]["hasAccess"] is True
    assert folders[2]["hasAccess"] is False
    assert folders[2]["minDonationAmount"] == 100
    assert payload["files"] == []


def test_list_files_of_granted_folder_newest_first(client, app, alice_headers):
    _grant(app, "alice@example.com", 1)
    first = _add_file(app, 1, "a.txt")
    second = _add_file(app, 1, "b.txt")
    _add_file(app, 2, "hidden.txt")

    response = client.post("/files/list", headers=alice_headers, json={"folderId": 1})
    assert response.status_code == 200
    files = response.get_json()["files"]
    assert [item["id"] for item in files] == [second, first]
    assert files[0]["originalName"] == "b.txt"
    assert "storagePath" not in files[0]


def test_list_files_of_locked_folder_is_forbidden(client, app, alice_headers):
    _add_file(app, 2, "hidden.txt")

    response = client.post("/files/list", headers=alice_headers, json={"folderId": 2})
    assert response.status_code == 403
    assert response.get_json()["error"]["kind"] == "PERMISSION_DENIED"


def test_admin_flag_does_not_bypass_folder_access(client, app, admin_headers):
    file_id = _add_file(app, 2, "hidden.txt")

    listing = client.post("/files/list", headers=admin_headers, json={"folderId": 2})
    assert listing.status_code == 403
    download = client.post("/files/download", headers=admin_headers, json={"fileId": file_id})
    assert download.status_code == 403


def test_download_returns_signed_url(client, app, alice_headers):
    _grant(app, "alice@example.com", 1)
    file_id = _add_file(app, 1, "report.pdf")

    response = client.post("/files/download", headers=alice_headers, json={"fileId": file_id})
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["fileName"] == "report.pdf"
    assert payload["downloadUrl"].startswith("http://localhost/storage/objects/")


def test_download_unknown_file_is_not_found(client, alice_headers):
    response = client.post("/files/download", headers=alice_headers, json={"fileId": 9999})
    assert response.status_code == 404


def test_files_routes_require_authentication(client):
    assert client.post("/files/list", json={}).status_code == 401
    assert client.post("/files/download", json={"fileId": 1}).status_code == 401

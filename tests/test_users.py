import asyncio
import json
import os
import re
from datetime import datetime, timedelta, timezone

import jwt
from pymongo.errors import DuplicateKeyError

import config
import upload
from auth import verify_password
from responses import duplicate_key_handler
from tests.conftest import PNG, bearer, create_user, form, login


def test_register(client, db):
    response = client.post("/users", files=form(account="alice", password="pass1234", email="alice@example.com"))
    assert response.status_code == 200
    assert response.json() == {"success": True, "message": ""}

    user = db["users"].find_one({"account": "alice"})
    assert user["password"] != "pass1234"
    assert verify_password("pass1234", user["password"])
    assert user["role"] == 0
    assert user["tokens"] == []


def test_register_duplicate_account(client, db):
    create_user(db, "alice")
    response = client.post("/users", files=form(account="alice", password="pass1234", email="new@example.com"))
    assert response.status_code == 400
    assert response.json()["message"] == "帳號已存在"


def test_register_duplicate_email(client, db):
    create_user(db, "alice")
    response = client.post("/users", files=form(account="alice2", password="pass1234", email="alice@example.com"))
    assert response.status_code == 400
    assert response.json()["message"] == "信箱已存在"


def test_register_reports_first_invalid_field(client):
    response = client.post("/users", files=form(account="al", password="x", email="nope"))
    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "帳號必須 4 個字以上"}


def test_register_invalid_email(client):
    response = client.post("/users", files=form(account="alice", password="pass1234", email="not-an-email"))
    assert response.status_code == 400
    assert response.json()["message"] == "信箱格式不正確"


def test_register_requires_multipart(client):
    response = client.post("/users", json={"account": "alice", "password": "pass1234", "email": "a@example.com"})
    assert response.status_code == 400
    assert response.json()["message"] == "資料格式不正確"


def test_register_with_avatar(client, db):
    files = form(account="alice", password="pass1234", email="alice@example.com")
    files["image"] = ("me.PNG", PNG, "image/png")
    response = client.post("/users", files=files)
    assert response.status_code == 200

    image = db["users"].find_one({"account": "alice"})["image"]
    assert image.endswith(".png")
    assert os.path.exists(os.path.join(config.UPLOAD_DIR, image))


def test_register_rejects_non_image(client, db):
    files = form(account="alice", password="pass1234", email="alice@example.com")
    files["image"] = ("notes.txt", b"hello", "text/plain")
    response = client.post("/users", files=files)
    assert response.status_code == 400
    assert response.json()["message"] == "格式不符"
    assert db["users"].count_documents({}) == 0


def test_register_rejects_large_image(client, monkeypatch):
    monkeypatch.setattr(config, "MAX_UPLOAD_SIZE", 8)
    files = form(account="alice", password="pass1234", email="alice@example.com")
    files["image"] = ("big.png", PNG, "image/png")
    response = client.post("/users", files=files)
    assert response.status_code == 400
    assert response.json()["message"] == "檔案太大"


def test_login_appends_token(client, db):
    create_user(db, "alice")
    response = client.post("/users/login", json={"account": "alice", "password": "secret"})
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "登入成功"
    assert body["result"]["account"] == "alice"
    assert body["result"]["role"] == 0
    assert db["users"].find_one({"account": "alice"})["tokens"] == [body["result"]["token"]]


def test_login_twice_keeps_both_sessions(client, db):
    create_user(db, "alice")
    first = login(client, "alice")
    second = login(client, "alice")
    assert first != second
    assert client.get("/users", headers=bearer(first)).status_code == 200
    assert client.get("/users", headers=bearer(second)).status_code == 200


def test_login_wrong_password(client, db):
    create_user(db, "alice")
    response = client.post("/users/login", json={"account": "alice", "password": "wrong"})
    assert response.status_code == 400
    assert response.json()["message"] == "密碼錯誤"


def test_login_unknown_account(client):
    response = client.post("/users/login", json={"account": "nobody", "password": "secret"})
    assert response.status_code == 400
    assert response.json()["message"] == "帳號錯誤"


def test_login_requires_json(client, db):
    create_user(db, "alice")
    response = client.post("/users/login", data={"account": "alice", "password": "secret"})
    assert response.status_code == 400
    assert response.json()["message"] == "資料格式不正確"


def test_get_user_info(client, member_token):
    response = client.get("/users", headers=bearer(member_token))
    assert response.status_code == 200
    result = response.json()["result"]
    assert result["account"] == "member"
    assert result["email"] == "member@example.com"
    assert "password" not in result


def test_missing_token_is_rejected(client):
    response = client.get("/users")
    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "驗證錯誤"}


def test_garbage_token_is_rejected(client):
    assert client.get("/users", headers=bearer("not-a-jwt")).status_code == 401


def test_logout_revokes_token(client, db, member_token):
    response = client.delete("/users/logout", headers=bearer(member_token))
    assert response.status_code == 200
    assert db["users"].find_one({"account": "member"})["tokens"] == []
    assert client.get("/users", headers=bearer(member_token)).status_code == 401


def _registered_token(db, user_id, exp, secret=None):
    token = jwt.encode({"_id": str(user_id), "exp": exp}, secret or config.SECRET, algorithm="HS256")
    db["users"].update_one({"_id": user_id}, {"$push": {"tokens": token}})
    return token


def test_token_with_wrong_signature_is_rejected(client, db):
    user_id = create_user(db, "alice")
    token = _registered_token(db, user_id, datetime.now(timezone.utc) + timedelta(days=1), secret="other")
    assert client.get("/users", headers=bearer(token)).status_code == 401
    assert client.post("/users/extend", headers=bearer(token)).status_code == 401


def test_extend_replaces_expired_token(client, db):
    user_id = create_user(db, "alice")
    old = _registered_token(db, user_id, datetime.now(timezone.utc) - timedelta(hours=1))
    assert client.get("/users", headers=bearer(old)).status_code == 401

    response = client.post("/users/extend", headers=bearer(old))
    assert response.status_code == 200
    new = response.json()["result"]
    assert db["users"].find_one({"_id": user_id})["tokens"] == [new]
    assert client.get("/users", headers=bearer(new)).status_code == 200
    assert client.post("/users/extend", headers=bearer(old)).status_code == 401


def test_extend_refuses_token_past_grace_window(client, db):
    user_id = create_user(db, "alice")
    stale = datetime.now(timezone.utc) - timedelta(days=config.EXTEND_GRACE_DAYS + 1)
    token = _registered_token(db, user_id, stale)
    assert client.post("/users/extend", headers=bearer(token)).status_code == 401


def test_list_users_requires_admin(client, member_token):
    response = client.get("/users/all", headers=bearer(member_token))
    assert response.status_code == 403
    assert response.json()["message"] == "沒有權限"


def test_admin_lists_users_without_secrets(client, admin_token, member_token):
    response = client.get("/users/all", headers=bearer(admin_token))
    assert response.status_code == 200
    users = response.json()["result"]
    assert sorted(u["account"] for u in users) == ["admin", "member"]
    assert all("password" not in u and "tokens" not in u for u in users)


def test_admin_deletes_user(client, db, admin_token):
    user_id = create_user(db, "victim")
    response = client.delete(f"/users/{user_id}", headers=bearer(admin_token))
    assert response.status_code == 200
    assert db["users"].find_one({"_id": user_id}) is None

    response = client.delete(f"/users/{user_id}", headers=bearer(admin_token))
    assert response.status_code == 404
    assert client.delete("/users/bad-id", headers=bearer(admin_token)).status_code == 404


def test_member_cannot_delete_user(client, db, member_token):
    user_id = create_user(db, "victim")
    assert client.delete(f"/users/{user_id}", headers=bearer(member_token)).status_code == 403


def test_unknown_route(client):
    response = client.get("/nowhere")
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "找不到內容"}


def test_duplicate_register_discards_avatar(client, db):
    create_user(db, "alice")
    files = form(account="alice", password="pass1234", email="new@example.com")
    files["image"] = ("me.png", PNG, "image/png")
    response = client.post("/users", files=files)
    assert response.status_code == 400
    assert os.listdir(config.UPLOAD_DIR) == []
    assert db["users"].count_documents({}) == 1


class FakeFTP:
    """Records what the upload gate sends instead of talking to a server"""
    sessions = []

    def __init__(self, host):
        self.host = host
        self.calls = []
        FakeFTP.sessions.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def login(self, user, password):
        self.calls.append(("login", user, password))

    def storbinary(self, command, fp):
        self.calls.append(("storbinary", command, fp.read()))

    def delete(self, path):
        self.calls.append(("delete", path))


def test_register_stores_avatar_over_ftp(client, db, monkeypatch):
    FakeFTP.sessions = []
    monkeypatch.setattr(upload, "FTP", FakeFTP)
    monkeypatch.setattr(config, "FTP", True)
    monkeypatch.setattr(config, "FTP_HOST", "ftp.example.com")
    monkeypatch.setattr(config, "FTP_USER", "shop")
    monkeypatch.setattr(config, "FTP_PASS", "hunter2")

    files = form(account="alice", password="pass1234", email="alice@example.com")
    files["image"] = ("me.JPG", PNG, "image/jpeg")
    response = client.post("/users", files=files)
    assert response.status_code == 200

    image = db["users"].find_one({"account": "alice"})["image"]
    assert re.fullmatch(r"[0-9a-f]{32}\.jpg", image)
    [session] = FakeFTP.sessions
    assert session.host == "ftp.example.com"
    assert session.calls == [
        ("login", "shop", "hunter2"),
        ("storbinary", f"STOR /{image}", PNG),
    ]
    assert not os.path.exists(os.path.join(config.UPLOAD_DIR, image))


def test_failed_register_removes_ftp_upload(client, db, monkeypatch):
    FakeFTP.sessions = []
    monkeypatch.setattr(upload, "FTP", FakeFTP)
    monkeypatch.setattr(config, "FTP", True)
    create_user(db, "alice")

    files = form(account="alice", password="pass1234", email="new@example.com")
    files["image"] = ("me.png", PNG, "image/png")
    assert client.post("/users", files=files).status_code == 400

    stored, removed = FakeFTP.sessions
    filename = stored.calls[-1][1][len("STOR /"):]
    assert removed.calls[-1] == ("delete", f"/{filename}")


def test_duplicate_key_message_follows_index():
    email = DuplicateKeyError("E11000", 11000, {"keyPattern": {"email": 1}, "keyValue": {"email": "a@b.c"}})
    account = DuplicateKeyError("E11000", 11000, {"keyPattern": {"account": 1}, "keyValue": {"account": "alice"}})

    assert json.loads(asyncio.run(duplicate_key_handler(None, email)).body) == {"success": False, "message": "信箱已存在"}
    assert json.loads(asyncio.run(duplicate_key_handler(None, account)).body) == {"success": False, "message": "帳號已存在"}

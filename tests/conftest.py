import mongomock
import pytest
from fastapi.testclient import TestClient

import config
import database
from auth import hash_password
from main import app

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def form(**fields):
    """Plain fields sent as multipart/form-data parts."""
    return {k: (None, str(v)) for k, v in fields.items()}


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def db():
    mock_db = mongomock.MongoClient()["storefront_test"]
    database.init_indexes(mock_db)
    return mock_db


@pytest.fixture
def client(db, tmp_path, monkeypatch):
    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path / "upload"))
    app.dependency_overrides[database.get_db] = lambda: db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def create_user(db, account, password="secret", role=0, **extra):
    doc = {
        "account": account,
        "password": hash_password(password),
        "email": f"{account}@example.com",
        "role": role,
        "tokens": [],
        "cart": [],
        "favorite": [],
    }
    doc.update(extra)
    return db["users"].insert_one(doc).inserted_id


def login(client, account, password="secret"):
    response = client.post("/users/login", json={"account": account, "password": password})
    assert response.status_code == 200, response.json()
    return response.json()["result"]["token"]


@pytest.fixture
def member_token(client, db):
    create_user(db, "member", address="Taipei 101")
    return login(client, "member")


@pytest.fixture
def admin_token(client, db):
    create_user(db, "admin", role=1)
    return login(client, "admin")


@pytest.fixture
def product_id(db):
    return str(db["products"].insert_one({"name": "Tea", "price": 120, "sell": True, "cate": "drink", "brand": "Leaf"}).inserted_id)


@pytest.fixture
def hidden_product_id(db):
    return str(db["products"].insert_one({"name": "Retired mug", "price": 80, "sell": False}).inserted_id)

import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="modhub-tests-")
os.environ.setdefault("DATA_FILE", os.path.join(_TMP, "storage.json"))
os.environ.setdefault("UPLOAD_FOLDER", os.path.join(_TMP, "uploads"))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import main  # noqa: E402
from auth import SessionStore  # noqa: E402
from database import JsonFileDatabase  # noqa: E402
from realtime import Broadcaster  # noqa: E402
from schemas import ModCreate  # noqa: E402
from storage import Storage  # noqa: E402


@pytest.fixture
def storage(tmp_path):
    return Storage(JsonFileDatabase(tmp_path / "storage.json"), admin_username="admin", admin_password="admin123")


@pytest.fixture
def hub():
    return Broadcaster()


@pytest.fixture
def client(storage, hub):
    session_store = SessionStore()
    main.app.dependency_overrides[main.get_storage] = lambda: storage
    main.app.dependency_overrides[main.get_broadcaster] = lambda: hub
    main.app.dependency_overrides[main.get_sessions] = lambda: session_store
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_token(client):
    res = client.post("/api/login", json={"username": "admin", "password": "admin123"})
    assert res.status_code == 200
    return res.json()["token"]


@pytest.fixture
def admin_headers(admin_token):
    return _auth(admin_token)


@pytest.fixture
def user_token(client):
    res = client.post("/api/register", json={"username": "alice", "password": "secret123"})
    assert res.status_code == 201
    return res.json()["token"]


@pytest.fixture
def user_headers(user_token):
    return _auth(user_token)


@pytest.fixture
def mod(storage):
    return storage.create_mod(
        ModCreate(
            title="Better Trees",
            description="Replaces vanilla foliage",
            imageUrl="/uploads/trees.png",
            downloadUrl="https://example.com/trees.zip",
            tags=["graphics", "nature"],
        )
    )

import os
import tempfile
import itertools

# Ensure dev-friendly behavior for tests BEFORE app import
os.environ["DEV_ALLOW_MEMORY"] = "1"
os.environ.pop("MONGO_URI", None)
os.environ.pop("DATABASE_URL", None)
os.environ.pop("SENDGRID_API_KEY", None)
os.environ.pop("EMAIL_HOST", None)
os.environ["JWT_SECRET"] = "test_secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["REQUIRE_EMAIL_VERIFICATION"] = "0"
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="refocus-uploads-"))

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import database
from main import app

PASSWORD = "Str0ng!Passw0rd"
_counter = itertools.count(1)


@pytest.fixture(autouse=True)
def clean_db():
    for name in database.db.list_collection_names():
        database.db.drop_collection(name)
    database.ensure_indexes()
    yield


@pytest.fixture
def client():
    return TestClient(app)


def auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user(client):
    """Register a user through the API, set its role directly, then log in."""
    def _make(role="user", name=None, email=None, password=PASSWORD):
        n = next(_counter)
        name = name or "Test User " + "".join(chr(97 + int(d)) for d in str(n))
        email = email or f"user{n}@example.com"
        r = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
        assert r.status_code == 201, r.text
        user_id = r.json()["user"]["id"]
        if role != "user":
            updates = {"role": role}
            if role == "coach":
                updates["coachStatus"] = "approved"
            database.db["user"].update_one({"_id": ObjectId(user_id)}, {"$set": updates})
        r = client.post("/api/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.text
        token = r.json()["token"]
        return {"id": user_id, "email": email, "name": name, "token": token, "headers": auth(token)}
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def developer(make_user):
    return make_user("developer")


@pytest.fixture
def coach(make_user):
    return make_user("coach")

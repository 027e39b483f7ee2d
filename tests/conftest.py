import mongomock
import pytest
from fastapi.testclient import TestClient
from mongomock.collection import Collection
from pymongo.errors import PyMongoError

from auth import create_access_token, hash_password, public_user
from database import get_db
from main import app


@pytest.fixture
def db():
    return mongomock.MongoClient()["storefront_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(email="shopper@example.com", role="user", address="1 Main St, Springfield", password="Passw0rd!"):
        result = db["users"].insert_one({
            "full_name": email.split("@")[0].title(),
            "email": email,
            "password_hash": hash_password(password),
            "phone_number": None,
            "address": address,
            "role": role,
        })
        return public_user(db["users"].find_one({"_id": result.inserted_id}))
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin_user(make_user):
    return make_user(email="boss@example.com", role="admin")


@pytest.fixture
def headers_for():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token({'sub': user['id']})}"}
    return _headers


@pytest.fixture
def make_product(db):
    def _make(name="Mint Pod", price=10.0, stock=3, brand="Aero", category_id=None, tags=None, description=None):
        result = db["products"].insert_one({
            "category_id": category_id,
            "name": name,
            "brand": brand,
            "description": description,
            "price": price,
            "image_url": None,
            "features": [],
            "tags": tags or [],
            "stock_quantity": stock,
        })
        return str(result.inserted_id)
    return _make


@pytest.fixture
def fail_db_call(monkeypatch):
    """Make one collection method raise PyMongoError for the named collection."""
    def _fail(method, collection_name, message="network down"):
        real = getattr(Collection, method)

        def failing(self, *args, **kwargs):
            if self.name == collection_name:
                raise PyMongoError(message)
            return real(self, *args, **kwargs)

        monkeypatch.setattr(Collection, method, failing)
    return _fail

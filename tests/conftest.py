import itertools

import mongomock
import pytest
from fastapi.testclient import TestClient

from gebeya.config import Settings
from gebeya.context import AppContext
from gebeya.database import create_document, ensure_indexes
from gebeya.main import create_app
from gebeya.schemas import Product, User
from gebeya.security import create_token, hash_password


@pytest.fixture
def settings(tmp_path):
    return Settings(
        jwt_secret="gebeya-test-secret-0123456789abcdef",
        upload_dir=str(tmp_path / "uploads"),
        public_url="http://testserver",
    )


@pytest.fixture
def db():
    database = mongomock.MongoClient(tz_aware=True)["gebeya-test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(settings, db):
    app = create_app(AppContext.build(settings, db))
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(db, settings):
    counter = itertools.count(1)

    def _make(role="user", password=None, **extra):
        n = next(counter)
        doc = User(
            name=extra.pop("name", f"User {n}"),
            email=extra.pop("email", f"user{n}@gebeya.et"),
            role=role,
            is_verified=True,
            password_hash=hash_password(password) if password else None,
            **extra,
        ).to_document()
        user_id = create_document(db, "user", doc)
        token = create_token({"id": user_id, "email": doc["email"], "role": role}, settings)
        return {"id": user_id, "email": doc["email"], "headers": {"Authorization": f"Bearer {token}"}}

    return _make


@pytest.fixture
def make_product(db):
    def _make(seller, price=100.0, stock=10, **extra):
        product = Product(
            seller_id=seller["id"],
            name=extra.pop("name", "Acoustic guitar"),
            price=price,
            stock=stock,
            payment_options=[{"method": "telebirr", "account_number": "0911223344"}],
            **extra,
        )
        return create_document(db, "product", product)

    return _make

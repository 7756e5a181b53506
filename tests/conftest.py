import datetime
import io

import mongomock
import pytest
from flask_jwt_extended import create_access_token
from werkzeug.security import generate_password_hash

from campus_trade import create_app, lifecycle
from campus_trade.db import ensure_indexes
from campus_trade.extensions import mongo

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def insert_user(db, student_id, nickname, password="secret", is_admin=False):
    now = datetime.datetime.utcnow()
    result = db.users.insert_one({
        "studentId": student_id,
        "nickname": nickname,
        "passwordHash": generate_password_hash(password),
        "isAdmin": is_admin,
        "reputation": {"good": 0, "neutral": 0, "bad": 0},
        "viewHistory": [],
        "evaluationKeys": [],
        "createdAt": now,
        "updatedAt": now,
    })
    return result.inserted_id


def listing_fields(**overrides):
    fields = {
        "title": "Calculus textbook",
        "description": "Some highlighting",
        "price": "100",
        "category": "books",
        "campus": "主校区",
        "condition": "九成新",
    }
    fields.update(overrides)
    return fields


def insert_product(db, owner_id, **overrides):
    return lifecycle.create_listing(
        db,
        owner_id,
        listing_fields(**overrides),
        {"data": PNG_BYTES, "contentType": "image/png"},
    )


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def store():
    """Bare mongomock database for exercising the lifecycle functions."""
    db = mongomock.MongoClient()["campus_trade_test"]
    ensure_indexes(db)
    return db


@pytest.fixture
def app():
    app = create_app({
        "TESTING": True,
        "MONGO_URI": "mongodb://localhost:27017/campus_trade_test",
        "ENSURE_INDEXES": False,
        "JWT_SECRET_KEY": "test-secret-key-that-is-long-enough-for-hs256",
        "ADMIN_SECRET_KEY": "let-me-in",
    })
    mongo.cx = mongomock.MongoClient()
    mongo.db = mongo.cx["campus_trade_test"]
    ensure_indexes(mongo.db)
    yield app


@pytest.fixture
def db(app):
    return mongo.db


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(app):
    def make(user_id):
        with app.app_context():
            token = create_access_token(identity=str(user_id))
        return {"Authorization": f"Bearer {token}"}
    return make


@pytest.fixture
def seller(db):
    return insert_user(db, "2021001", "alice")


@pytest.fixture
def buyer(db):
    return insert_user(db, "2021002", "bob")


@pytest.fixture
def admin(db):
    return insert_user(db, "9000001", "root", is_admin=True)


@pytest.fixture
def image_upload():
    def make():
        return (io.BytesIO(PNG_BYTES), "photo.png", "image/png")
    return make

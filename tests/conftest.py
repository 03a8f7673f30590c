"""Shared fixtures: in-memory MongoDB, fake payment gateway, signed callers.

Invariants:
    - Every test gets a fresh mongomock database through the get_db override
    - The app lifespan never runs, so no real MongoDB or Stripe connection is made
    - Callers are real users in the store; tokens only carry their email
"""

import os

# Must be set before auth.py reads them at import time
os.environ.setdefault("ACCESS_TOKEN_SECRET", "test-secret-key-with-enough-length-123")
os.environ.setdefault("LOG_FORMAT", "text")

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from auth import issue_token
from database import get_db, utcnow
from main import app
from payments import PaymentGatewayError, get_payment_gateway


class FakeGateway:
    """Records intent requests instead of calling Stripe."""

    def __init__(self):
        self.calls = []
        self.fail = False

    def create_payment_intent(self, amount: int, currency: str = "usd") -> str:
        if self.fail:
            raise PaymentGatewayError("card_declined")
        self.calls.append((amount, currency))
        return f"pi_{amount}_secret_test"


@pytest.fixture
def db():
    return mongomock.MongoClient()["eduPlatformTest"]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


def bearer(email: str) -> dict:
    return {"Authorization": f"Bearer {issue_token({'email': email})}"}


@pytest.fixture
def login(db):
    """Create a user with ``role`` and return Authorization headers for them."""

    def _login(email: str, role: str = "student", name: str = None) -> dict:
        if not db["users"].find_one({"email": email}):
            db["users"].insert_one({
                "email": email,
                "displayName": name or email.split("@")[0],
                "role": role,
                "created_at": utcnow(),
            })
        return bearer(email)

    return _login


@pytest.fixture
def student(login):
    return login("student@school.edu")


@pytest.fixture
def teacher(login):
    return login("teacher@school.edu", "teacher", "Ms Teacher")


@pytest.fixture
def admin(login):
    return login("admin@school.edu", "admin")


@pytest.fixture
def seed_class(db):
    """Insert a class directly and return its id string."""

    def _seed(**overrides) -> str:
        doc = {
            "title": "Intro to Python",
            "teacherEmail": "teacher@school.edu",
            "teacherName": "Ms Teacher",
            "price": 49.0,
            "description": "Basics",
            "image": "https://img.example/py.png",
            "status": "approved",
            "enrolled": 0,
            "createdAt": utcnow(),
        }
        doc.update(overrides)
        return str(db["classes"].insert_one(doc).inserted_id)

    return _seed


@pytest.fixture
def unknown_id():
    return str(ObjectId())

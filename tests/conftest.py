import os

# Must be set before the application modules read their settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest
from unittest.mock import patch
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fitmarket.main import app
from fitmarket.database import Base, get_db
from fitmarket.models.user import User, UserRole
from fitmarket.security import create_access_token
from fitmarket.utils.cache import cache_service


# Create test database (SQLite in-memory for testing)
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    """Override database dependency for testing."""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


# Override the dependency
app.dependency_overrides[get_db] = override_get_db

CUSTOMER_ID = 1
OTHER_CUSTOMER_ID = 2
TRAINER_ID = 3
ADMIN_ID = 4

SEED_USERS = [
    (CUSTOMER_ID, "alice@example.com", "Alice", "Runner", UserRole.CUSTOMER),
    (OTHER_CUSTOMER_ID, "bob@example.com", "Bob", "Lifter", UserRole.CUSTOMER),
    (TRAINER_ID, "tina@example.com", "Tina", "Coach", UserRole.TRAINER),
    (ADMIN_ID, "admin@example.com", "Ada", "Admin", UserRole.ADMIN),
]

SHIPPING_INFO = {
    "full_name": "Alice Runner",
    "email": "alice@example.com",
    "phone": "+15551234567",
    "address": "1 Track Lane",
    "city": "Springfield",
    "postal_code": "12345",
}


class FakeRedis:
    """In-process stand-in for the Redis client used by the cache service."""

    def __init__(self):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value

    def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)


@pytest.fixture(autouse=True)
def fake_cache(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(cache_service, "client", fake)
    return fake


@pytest.fixture(autouse=True)
def task_mocks():
    """Keep Celery notifications out of the request path during tests."""
    with patch("fitmarket.api.orders.send_order_confirmation.delay") as confirmation, \
            patch("fitmarket.api.orders.send_order_status_update.delay") as status_update:
        yield {"confirmation": confirmation, "status_update": status_update}


@pytest.fixture(scope="function")
def db_session():
    """Create database session for direct database access in tests."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    for user_id, email, first, last, role in SEED_USERS:
        session.add(User(id=user_id, email=email, first_name=first, last_name=last, role=role))
    session.commit()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session):
    """Create test client with fresh database for each test."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def task_db(monkeypatch, db_session):
    """Run Celery task bodies inline against the test database."""
    monkeypatch.setattr("fitmarket.tasks.order_tasks.SessionLocal", TestingSessionLocal)
    monkeypatch.setattr("fitmarket.tasks.inventory_tasks.SessionLocal", TestingSessionLocal)
    return db_session


def _headers(user_id: int, role: UserRole) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


@pytest.fixture
def customer_headers():
    return _headers(CUSTOMER_ID, UserRole.CUSTOMER)


@pytest.fixture
def other_customer_headers():
    return _headers(OTHER_CUSTOMER_ID, UserRole.CUSTOMER)


@pytest.fixture
def trainer_headers():
    return _headers(TRAINER_ID, UserRole.TRAINER)


@pytest.fixture
def admin_headers():
    return _headers(ADMIN_ID, UserRole.ADMIN)


@pytest.fixture
def make_product(client, admin_headers):
    """Create a product through the API and return its JSON."""
    def factory(**overrides):
        payload = {"name": "Whey Protein", "category": "protein", "price": 100.00, "stock": 10}
        payload.update(overrides)
        response = client.post("/api/v1/products/", json=payload, headers=admin_headers)
        assert response.status_code == 201, response.text
        return response.json()
    return factory


@pytest.fixture
def place_order(client, customer_headers):
    """Check out a cart of (product_id, quantity) pairs; returns the response."""
    def factory(lines, headers=None, **overrides):
        payload = {
            "items": [{"product_id": pid, "quantity": qty} for pid, qty in lines],
            "shipping_info": SHIPPING_INFO,
            "payment_method": "card",
        }
        payload.update(overrides)
        return client.post("/api/v1/orders/", json=payload, headers=headers or customer_headers)
    return factory

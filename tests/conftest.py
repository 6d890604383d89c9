import hashlib
import hmac
import json
import os
import time
from decimal import Decimal

os.environ["DATABASE_URL"] = "sqlite:///./test_app.db"
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from marketplace.auth import create_access_token
from marketplace.database import Base, get_db
from marketplace.main import app as fastapi_app
from marketplace.models import CartItem, Product, ProductStatus

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_temp.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def override_db():
    fastapi_app.dependency_overrides[get_db] = override_get_db
    yield
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(override_db):
    with TestClient(fastapi_app) as c:
        yield c


@pytest.fixture
def auth_headers():
    def build(user_id="user-1", role="user"):
        return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}
    return build


@pytest.fixture
def make_product(db):
    def build(title="Widget", price="10.00", stock=5, status=ProductStatus.AVAILABLE,
              seller_id="seller-1", description=None):
        product = Product(title=title, price=Decimal(price), stock=stock, status=status,
                          seller_id=seller_id, description=description)
        db.add(product)
        db.commit()
        db.refresh(product)
        return product
    return build


@pytest.fixture
def fill_cart(db):
    def build(user_id, product, quantity):
        item = CartItem(user_id=user_id, product_id=product.id, quantity=quantity)
        db.add(item)
        db.commit()
        return item
    return build


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def stripe_event(event_type, obj, event_id="evt_test", created=None):
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": created or int(time.time()),
        "data": {"object": obj},
    }


@pytest.fixture
def send_event(client, webhook_headers):
    def send(event, secret=WEBHOOK_SECRET):
        payload = json.dumps(event)
        return client.post("/api/payment/webhook", content=payload,
                           headers=webhook_headers(payload, secret))
    return send


@pytest.fixture
def event_factory():
    return stripe_event


@pytest.fixture
def webhook_headers():
    def build(payload: str, secret=WEBHOOK_SECRET):
        return {"stripe-signature": sign_payload(payload, secret),
                "content-type": "application/json"}
    return build


@pytest.fixture
def anyio_backend():
    return "asyncio"

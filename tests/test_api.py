import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.exc import SQLAlchemyError

from marketplace import config
from marketplace.main import app as fastapi_app
from marketplace.models import ProductStatus


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_startup_fails_without_webhook_secret(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", None)

    with pytest.raises(RuntimeError):
        with TestClient(fastapi_app):
            pass


def test_invalid_token_is_rejected(client):
    response = client.get("/api/cart", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired token"


def test_token_signed_with_other_secret_is_rejected(client):
    token = jwt.encode({"sub": "user-1", "role": "user"}, "other-secret", algorithm="HS256")
    response = client.get("/api/cart", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_wrong_scheme_is_rejected(client):
    response = client.get("/api/cart", headers={"Authorization": "Basic abc"})
    assert response.status_code == 401


def test_list_products_filters_and_paginates(client, make_product):
    make_product(title="Cheap", price="5.00")
    make_product(title="Mid", price="15.00")
    make_product(title="Pricey", price="50.00")
    make_product(title="Hidden", price="15.00", status=ProductStatus.UNAVAILABLE)

    response = client.get("/api/product?minPrice=10&maxPrice=20")

    assert response.status_code == 200
    body = response.json()
    assert [p["title"] for p in body["products"]] == ["Mid"]
    assert body["pagination"]["total"] == 1


def test_get_product(client, make_product):
    product = make_product(price="7.25")

    response = client.get(f"/api/product/{product.id}")

    assert response.status_code == 200
    assert response.json()["product"]["price"] == "7.25"


def test_get_missing_product(client):
    assert client.get("/api/product/nope").status_code == 404


def test_admin_creates_product(client, auth_headers):
    response = client.post(
        "/api/product",
        json={"title": "Chair", "price": "49.90", "stock": 4, "category": "furniture"},
        headers=auth_headers("admin-1", "admin"),
    )

    assert response.status_code == 201
    product = response.json()["product"]
    assert product["price"] == "49.90"
    assert product["sellerId"] == "admin-1"
    assert product["status"] == "AVAILABLE"


def test_regular_user_cannot_create_product(client, auth_headers):
    response = client.post("/api/product", json={"title": "Chair", "price": "49.90"},
                           headers=auth_headers())
    assert response.status_code == 403


def test_validation_errors_name_fields(client, auth_headers):
    response = client.post("/api/payment/create-checkout-session", json={}, headers=auth_headers())

    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "orderId"


def test_unexpected_error_renders_internal_body(override_db, mocker, auth_headers):
    mocker.patch("marketplace.cart.list_with_total", side_effect=SQLAlchemyError("database gone"))

    with TestClient(fastapi_app, raise_server_exceptions=False) as c:
        response = c.get("/api/cart", headers=auth_headers())

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal Server Error", "errors": []}

"""Tests for Order API endpoints."""
import re
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from fitmarket.exceptions import StoreFailureError
from fitmarket.services.order_service import OrderService


def test_create_order_success(client, make_product, place_order, task_mocks):
    """Test creating an order successfully."""
    product_id = make_product(name="Test Product", price=100.00, stock=10)["id"]

    response = place_order([(product_id, 2)])

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["subtotal"] == 200.00
    assert data["total_price"] == 200.00
    assert data["items"][0]["product_id"] == product_id
    assert data["items"][0]["name"] == "Test Product"
    assert data["items"][0]["quantity"] == 2
    assert data["user"]["email"] == "alice@example.com"
    assert data["billing_info"] == data["shipping_info"]
    task_mocks["confirmation"].assert_called_once_with(data["id"])


def test_order_number_format(client, make_product, place_order):
    product_id = make_product()["id"]

    first = place_order([(product_id, 1)]).json()["order_number"]
    second = place_order([(product_id, 1)]).json()["order_number"]

    assert re.fullmatch(r"ORD-\d{13}-0001", first)
    assert re.fullmatch(r"ORD-\d{13}-0002", second)


def test_order_decrements_stock(client, make_product, place_order):
    """Test that creating an order decrements stock and counts the sale."""
    product_id = make_product(name="Stock Test", price=25.00, stock=10)["id"]

    place_order([(product_id, 3)])

    product = client.get(f"/api/v1/products/{product_id}").json()
    assert product["stock"] == 7  # 10 - 3
    assert product["sales"] == 3


def test_create_order_insufficient_stock(client, make_product, place_order):
    """Test order fails when insufficient stock."""
    product_id = make_product(name="Limited Product", price=50.00, stock=3)["id"]

    response = place_order([(product_id, 5)])

    assert response.status_code == 400
    data = response.json()
    assert data["kind"] == "insufficient_stock"
    assert "Insufficient stock" in data["message"]
    assert data["details"]["available"] == 3
    assert data["details"]["requested"] == 5
    assert client.get(f"/api/v1/products/{product_id}").json()["stock"] == 3


def test_create_order_product_not_found(client, place_order):
    """Test order fails when product doesn't exist."""
    response = place_order([(9999, 1)])

    assert response.status_code == 404
    assert response.json()["kind"] == "product_not_found"


def test_create_order_without_items(client, place_order):
    response = place_order([])

    assert response.status_code == 400
    assert response.json()["kind"] == "empty_order"


def test_create_order_inactive_product(client, make_product, place_order):
    product_id = make_product(status="inactive")["id"]

    response = place_order([(product_id, 1)])

    assert response.status_code == 400
    assert response.json()["kind"] == "validation_error"


def test_create_order_requires_authentication(client, make_product):
    product_id = make_product()["id"]

    response = client.post(
        "/api/v1/orders/",
        json={
            "items": [{"product_id": product_id, "quantity": 1}],
            "shipping_info": {
                "full_name": "Anon",
                "email": "anon@example.com",
                "phone": "5550000",
                "address": "Nowhere 1",
                "city": "Springfield",
                "postal_code": "00000",
            },
            "payment_method": "cash",
        }
    )

    assert response.status_code == 401
    assert client.get(f"/api/v1/products/{product_id}").json()["stock"] == 10


def test_create_order_quantity_bounds(client, make_product, place_order):
    product_id = make_product(stock=500)["id"]

    assert place_order([(product_id, 0)]).status_code == 422
    assert place_order([(product_id, 101)]).status_code == 422


def test_multi_line_order_is_all_or_nothing(client, make_product, place_order):
    """A failing second line must leave the first line's stock untouched."""
    plenty = make_product(name="Plenty", stock=10)["id"]
    scarce = make_product(name="Scarce", stock=1)["id"]

    response = place_order([(plenty, 4), (scarce, 2)])

    assert response.status_code == 400
    assert client.get(f"/api/v1/products/{plenty}").json()["stock"] == 10
    assert client.get(f"/api/v1/products/{plenty}").json()["sales"] == 0


def test_repeated_lines_are_reserved_together(client, make_product, place_order, customer_headers):
    """Each line passes the early check alone; together they exceed stock."""
    product_id = make_product(stock=5)["id"]

    response = place_order([(product_id, 3), (product_id, 3)])

    assert response.status_code == 400
    assert response.json()["kind"] == "insufficient_stock"
    assert client.get(f"/api/v1/products/{product_id}").json()["stock"] == 5
    assert client.get("/api/v1/orders/", headers=customer_headers).json()["total"] == 0


def test_round_trip_cancel_restores_stock(client, make_product, place_order, customer_headers):
    first = make_product(name="Bar", price=50.0, stock=10)["id"]
    second = make_product(name="Band", price=25.0, stock=10)["id"]

    response = place_order([(first, 3), (second, 4)])
    assert response.status_code == 201
    order = response.json()
    assert order["subtotal"] == 250.0
    assert client.get(f"/api/v1/products/{first}").json()["stock"] == 7
    assert client.get(f"/api/v1/products/{second}").json()["stock"] == 6

    response = client.post(
        f"/api/v1/orders/{order['id']}/cancel",
        json={"reason": "Changed my mind"},
        headers=customer_headers
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "cancelled"
    assert data["cancellation_reason"] == "Changed my mind"
    assert data["cancelled_at"] is not None
    for product_id in (first, second):
        product = client.get(f"/api/v1/products/{product_id}").json()
        assert product["stock"] == 10
        assert product["sales"] == 0


def test_order_line_uses_sale_price(client, make_product, place_order):
    product_id = make_product(price=100.0, sale_price=80.0)["id"]

    order = place_order([(product_id, 2)]).json()

    assert order["items"][0]["price"] == 80.0
    assert order["subtotal"] == 160.0


# Reading orders

def test_get_order_owner_and_admin(client, make_product, place_order, customer_headers, admin_headers):
    order_id = place_order([(make_product()["id"], 1)]).json()["id"]

    assert client.get(f"/api/v1/orders/{order_id}", headers=customer_headers).status_code == 200
    assert client.get(f"/api/v1/orders/{order_id}", headers=admin_headers).status_code == 200


def test_get_order_of_another_user_is_forbidden(client, make_product, place_order, other_customer_headers):
    order_id = place_order([(make_product()["id"], 1)]).json()["id"]

    response = client.get(f"/api/v1/orders/{order_id}", headers=other_customer_headers)

    assert response.status_code == 403


def test_get_order_not_found(client, customer_headers):
    response = client.get("/api/v1/orders/9999", headers=customer_headers)

    assert response.status_code == 404


def test_list_orders_is_scoped_to_owner(
    client, make_product, place_order, customer_headers, other_customer_headers, admin_headers
):
    product_id = make_product(stock=20)["id"]
    place_order([(product_id, 1)])
    place_order([(product_id, 1)])
    place_order([(product_id, 1)], headers=other_customer_headers)

    assert client.get("/api/v1/orders/", headers=customer_headers).json()["total"] == 2
    assert client.get("/api/v1/orders/", headers=other_customer_headers).json()["total"] == 1
    assert client.get("/api/v1/orders/", headers=admin_headers).json()["total"] == 3


def test_list_orders_by_status(client, make_product, place_order, customer_headers):
    product_id = make_product()["id"]
    place_order([(product_id, 1)])
    cancelled = place_order([(product_id, 1)]).json()["id"]
    client.post(f"/api/v1/orders/{cancelled}/cancel", headers=customer_headers)

    response = client.get("/api/v1/orders/status/cancelled", headers=customer_headers)

    data = response.json()
    assert data["total"] == 1
    assert data["items"][0]["id"] == cancelled


# Status transitions

def test_status_walk_to_delivered(client, make_product, place_order, admin_headers, task_mocks):
    order_id = place_order([(make_product()["id"], 1)]).json()["id"]

    for status in ("confirmed", "processing", "shipped", "delivered"):
        response = client.patch(
            f"/api/v1/orders/{order_id}/status",
            json={"status": status, "tracking_number": "TRK-1"},
            headers=admin_headers
        )
        assert response.status_code == 200, response.text
        assert response.json()["status"] == status

    data = response.json()
    assert data["delivered_at"] is not None
    assert data["tracking_number"] == "TRK-1"
    assert data["allowed_transitions"] == ["returned"]
    assert task_mocks["status_update"].call_count == 4


def test_invalid_status_transition(client, make_product, place_order, admin_headers):
    order_id = place_order([(make_product()["id"], 1)]).json()["id"]

    response = client.patch(
        f"/api/v1/orders/{order_id}/status", json={"status": "shipped"}, headers=admin_headers
    )

    assert response.status_code == 400
    data = response.json()
    assert data["kind"] == "invalid_transition"
    assert data["details"]["allowed"] == ["confirmed", "cancelled"]


def test_status_update_requires_admin(client, make_product, place_order, customer_headers):
    order_id = place_order([(make_product()["id"], 1)]).json()["id"]

    response = client.patch(
        f"/api/v1/orders/{order_id}/status", json={"status": "confirmed"}, headers=customer_headers
    )

    assert response.status_code == 403


def test_cancel_through_status_endpoint_restores_stock(client, make_product, place_order, admin_headers):
    product_id = make_product(stock=10)["id"]
    order_id = place_order([(product_id, 4)]).json()["id"]

    response = client.patch(
        f"/api/v1/orders/{order_id}/status", json={"status": "cancelled"}, headers=admin_headers
    )

    assert response.status_code == 200
    assert client.get(f"/api/v1/products/{product_id}").json()["stock"] == 10


def test_cancel_processing_order(client, make_product, place_order, admin_headers, customer_headers):
    order_id = place_order([(make_product()["id"], 1)]).json()["id"]
    for status in ("confirmed", "processing"):
        client.patch(f"/api/v1/orders/{order_id}/status", json={"status": status}, headers=admin_headers)

    response = client.post(f"/api/v1/orders/{order_id}/cancel", headers=customer_headers)

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert response.json()["cancelled_at"] is not None


def test_cancel_shipped_order_fails(client, make_product, place_order, admin_headers, customer_headers):
    product_id = make_product(stock=10)["id"]
    order_id = place_order([(product_id, 2)]).json()["id"]
    for status in ("confirmed", "processing", "shipped"):
        client.patch(f"/api/v1/orders/{order_id}/status", json={"status": status}, headers=admin_headers)

    response = client.post(f"/api/v1/orders/{order_id}/cancel", headers=customer_headers)

    assert response.status_code == 400
    assert response.json()["kind"] == "invalid_transition"
    assert client.get(f"/api/v1/products/{product_id}").json()["stock"] == 8


def test_cancel_other_users_order_is_forbidden(client, make_product, place_order, other_customer_headers):
    order_id = place_order([(make_product()["id"], 1)]).json()["id"]

    response = client.post(f"/api/v1/orders/{order_id}/cancel", headers=other_customer_headers)

    assert response.status_code == 403


# Administrative update and delete

def test_update_order_recomputes_total(client, make_product, place_order, admin_headers):
    order_id = place_order([(make_product(price=100.0)["id"], 2)]).json()["id"]

    response = client.put(
        f"/api/v1/orders/{order_id}",
        json={"tax": 16.0, "shipping_cost": 9.5, "discount": 20.0, "payment_status": "paid"},
        headers=admin_headers
    )

    assert response.status_code == 200
    data = response.json()
    assert data["total_price"] == 205.5  # 200 + 16 + 9.5 - 20
    assert data["payment_status"] == "paid"


def test_update_order_discount_cannot_exceed_amount(client, make_product, place_order, admin_headers):
    order_id = place_order([(make_product(price=10.0)["id"], 1)]).json()["id"]

    response = client.put(f"/api/v1/orders/{order_id}", json={"discount": 50.0}, headers=admin_headers)

    assert response.status_code == 400
    order = client.get(f"/api/v1/orders/{order_id}", headers=admin_headers).json()
    assert order["discount"] == 0
    assert order["total_price"] == 10.0


def test_delete_pending_order_releases_stock(client, make_product, place_order, customer_headers):
    product_id = make_product(stock=10)["id"]
    order_id = place_order([(product_id, 6)]).json()["id"]

    response = client.delete(f"/api/v1/orders/{order_id}", headers=customer_headers)

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert client.get(f"/api/v1/orders/{order_id}", headers=customer_headers).status_code == 404
    assert client.get(f"/api/v1/products/{product_id}").json()["stock"] == 10


def test_delete_cancelled_order_does_not_release_twice(client, make_product, place_order, customer_headers):
    product_id = make_product(stock=10)["id"]
    order_id = place_order([(product_id, 6)]).json()["id"]
    client.post(f"/api/v1/orders/{order_id}/cancel", headers=customer_headers)

    client.delete(f"/api/v1/orders/{order_id}", headers=customer_headers)

    assert client.get(f"/api/v1/products/{product_id}").json()["stock"] == 10


def test_delete_confirmed_order_fails(client, make_product, place_order, admin_headers, customer_headers):
    order_id = place_order([(make_product()["id"], 1)]).json()["id"]
    client.patch(f"/api/v1/orders/{order_id}/status", json={"status": "confirmed"}, headers=admin_headers)

    response = client.delete(f"/api/v1/orders/{order_id}", headers=customer_headers)

    assert response.status_code == 400


# Statistics

def test_order_stats(client, make_product, place_order, customer_headers, other_customer_headers, admin_headers):
    product_id = make_product(price=10.0, stock=50)["id"]
    place_order([(product_id, 1)])
    place_order([(product_id, 3)])
    place_order([(product_id, 2)], headers=other_customer_headers)

    own = client.get("/api/v1/orders/stats", headers=customer_headers).json()
    assert own["total_orders"] == 2
    assert own["total_revenue"] == 40.0
    assert own["average_order_value"] == 20.0
    assert own["status_counts"] == {"pending": 2}

    everyone = client.get("/api/v1/orders/stats", headers=admin_headers).json()
    assert everyone["total_orders"] == 3
    assert everyone["total_revenue"] == 60.0


def test_order_stats_empty(client, customer_headers):
    response = client.get("/api/v1/orders/stats", headers=customer_headers)

    assert response.json() == {
        "total_orders": 0,
        "total_revenue": 0,
        "average_order_value": 0,
        "status_counts": {},
    }


def test_order_stats_rejects_inverted_range(client, customer_headers):
    response = client.get(
        "/api/v1/orders/stats?start_date=2026-02-01T00:00:00&end_date=2026-01-01T00:00:00",
        headers=customer_headers
    )

    assert response.status_code == 400


def test_order_stats_with_offset_bounds(client, make_product, place_order, customer_headers):
    product_id = make_product(price=10.0, stock=5)["id"]
    place_order([(product_id, 1)])
    now = datetime.now(timezone.utc)

    earlier = (now - timedelta(minutes=1)).astimezone(timezone(timedelta(hours=5)))
    response = client.get(
        "/api/v1/orders/stats", params={"start_date": earlier.isoformat()}, headers=customer_headers
    )
    assert response.json()["total_orders"] == 1

    later = (now + timedelta(minutes=1)).astimezone(timezone(timedelta(hours=-5)))
    response = client.get(
        "/api/v1/orders/stats", params={"start_date": later.isoformat()}, headers=customer_headers
    )
    assert response.json()["total_orders"] == 0


def test_store_failure_maps_to_500(client, customer_headers):
    with patch.object(OrderService, "get_order_stats", side_effect=StoreFailureError("load order stats")):
        response = client.get("/api/v1/orders/stats", headers=customer_headers)

    assert response.status_code == 500
    assert response.json() == {
        "success": False,
        "kind": "store_failure",
        "message": "Failed to load order stats",
        "details": {},
    }

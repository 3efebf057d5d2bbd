import pytest
from fastapi.testclient import TestClient

import main
from cache import ProductCache
from rows import parse_products
from schemas import OrderResult
from sessions import SessionRegistry, memory_storage_factory


@pytest.fixture
def client(sheet, sink):
    calls = []

    async def loader():
        calls.append(1)
        return parse_products(sheet)

    async def broken():
        raise TimeoutError("sheets down")

    state = {"loader": loader}
    main.app.dependency_overrides[main.get_product_cache] = lambda: state["cache"]
    main.app.dependency_overrides[main.get_order_sink] = lambda: sink
    registry = SessionRegistry(memory_storage_factory(), sink)
    main.app.dependency_overrides[main.get_sessions] = lambda: registry
    state["cache"] = ProductCache(loader)

    with TestClient(main.app) as c:
        c.loader_calls = calls
        c.break_products = lambda: state.update(cache=ProductCache(broken))
        yield c
    main.app.dependency_overrides.clear()


def test_root(client):
    assert client.get("/").status_code == 200


def test_products_are_cached(client):
    first = client.get("/api/products").json()
    second = client.get("/api/products").json()
    assert [p["id"] for p in first] == [1, 2, 3]
    assert first == second
    assert len(client.loader_calls) == 1


def test_product_by_id_and_404(client):
    assert client.get("/api/products", params={"id": 2}).json()["name"] == "Clay Mug"
    response = client.get("/api/products", params={"id": 99})
    assert response.status_code == 404
    assert response.json()["detail"] == "Product not found"


def test_products_by_category_and_actions(client):
    assert [p["id"] for p in client.get("/api/products", params={"category": "Clothing"}).json()] == [1, 3]
    assert client.get("/api/products", params={"action": "categories"}).json() == ["Clothing", "Home"]
    subs = client.get("/api/products", params={"action": "subcategories", "category": "Clothing"})
    assert subs.json() == ["Tops", "Hats"]


def test_fetch_failure_is_500(client):
    client.break_products()
    response = client.get("/api/products")
    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to fetch products"


def test_product_by_slug_with_related(client):
    body = client.get("/api/products/slug/cotton-tee-1").json()
    assert body["product"]["id"] == 1
    assert [p["id"] for p in body["related"]] == [3]


def test_search(client):
    body = client.get("/api/search", params={"q": "Clothing", "limit": 1}).json()
    assert body["query"] == "clothing"
    assert len(body["results"]) == 1
    assert body["total"] == 2
    assert client.get("/api/search").status_code == 400


def test_blank_search_query_is_rejected(client):
    response = client.get("/api/search", params={"q": "   "})
    assert response.status_code == 400


def test_coupon_check(client):
    assert client.post("/api/coupon", json={"code": "first20"}).json() == {"valid": True, "percent": 0.2}
    assert client.post("/api/coupon", json={"code": "BOGUS"}).json() == {"valid": False, "percent": 0}


def test_orders_endpoint_reports_sink_failure(client, sink):
    sink.result = OrderResult(success=False, error="quota exceeded")
    order = {
        "order_id": "ORD-1",
        "customer": {"name": "A", "contact": "01712345678"},
        "items": [],
        "subtotal": 0,
        "courier_cost": 60,
        "total": 60,
        "date": "01/01/2025, 10:00:00 AM",
    }
    response = client.post("/api/orders", json=order)
    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "quota exceeded"}


def test_orders_endpoint_success(client):
    order = {
        "order_id": "ORD-2",
        "customer": {"name": "A", "contact": "01712345678"},
        "items": [],
        "subtotal": 0,
        "courier_cost": 60,
        "total": 60,
        "date": "01/01/2025, 10:00:00 AM",
    }
    body = client.post("/api/orders", json=order).json()
    assert body["success"] is True
    assert body["orderId"] == "ORD-2"


def test_cart_actions_through_session(client):
    tee = client.get("/api/products", params={"id": 1}).json()
    url = "/api/session/s1/actions"
    client.post(url, json={"type": "ADD_TO_CART", "product": tee, "selected_options": {"size": "M"}})
    body = client.post(url, json={"type": "ADD_TO_CART", "product": tee, "selected_options": {"size": "M"}}).json()
    assert body["cart_count"] == 2
    assert len(body["state"]["cart_items"]) == 1
    assert body["subtotal"] == 900

    body = client.post(url, json={"type": "UPDATE_QUANTITY", "id": 1, "quantity": 0, "selected_options": {"size": "M"}}).json()
    assert body["state"]["cart_items"] == []

    assert client.post(url, json={"type": "NOPE"}).status_code == 422


def test_checkout_flow_end_to_end(client, sink):
    tee = client.get("/api/products", params={"id": 1}).json()
    client.post("/api/session/s2/actions", json={"type": "ADD_TO_CART_WITH_QUANTITY", "product": tee, "quantity": 2})
    client.post("/api/session/s2/actions", json={"type": "APPLY_COUPON", "coupon_code": "FIRST20"})

    base = "/api/session/s2/checkout"
    blocked = client.post(f"{base}/next").json()
    assert blocked["step"] == 0
    assert blocked["message"] == "Full name is required"

    client.put(base, json={
        "name": "Rahim", "contact": "+8801712345678",
        "district": "Dhaka", "town": "Mirpur", "street": "Road 10",
        "courier_cost": "outside-dhaka",
    })
    assert client.post(f"{base}/next").json()["step"] == 1
    view = client.post(f"{base}/next").json()
    assert view["step"] == 2
    assert view["can_submit"] is False
    assert client.post(f"{base}/submit").status_code == 409

    view = client.post(f"{base}/terms", json={"accepted": True}).json()
    assert view["pricing"] == {"subtotal": 900, "discount_amount": 180, "courier_cost": 120, "total": 840}

    response = client.post(f"{base}/submit")
    assert response.status_code == 200
    body = response.json()
    order_id = body["order"]["order_id"]
    assert body["redirect"] == f"/order-confirmation?orderId={order_id}"
    assert body["order"]["customer"]["address"] == "Road 10, Mirpur, Dhaka"

    state = client.get("/api/session/s2/state").json()
    assert state["state"]["cart_items"] == []
    assert state["state"]["coupon_code"] is None
    assert client.get(f"/api/session/s2/orders/{order_id}").json()["total"] == 840
    assert client.get("/api/session/s2/orders/ORD-0").status_code == 404


def test_checkout_submit_failure_is_502(client, sink):
    sink.result = OrderResult(success=False, error="sheet locked")
    tee = client.get("/api/products", params={"id": 1}).json()
    client.post("/api/session/s3/actions", json={"type": "ADD_TO_CART", "product": tee})
    base = "/api/session/s3/checkout"
    client.put(base, json={"name": "Rahim", "contact": "01712345678",
                           "district": "Dhaka", "town": "Mirpur", "street": "Road 10"})
    client.post(f"{base}/next")
    client.post(f"{base}/next")
    client.post(f"{base}/terms", json={"accepted": True})

    response = client.post(f"{base}/submit")
    assert response.status_code == 502
    assert len(client.get("/api/session/s3/state").json()["state"]["cart_items"]) == 1

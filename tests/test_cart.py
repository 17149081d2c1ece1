import mongomock
import pytest

import cart
from errors import Conflict, InvalidArgument, NotFound


@pytest.fixture
def buyer(make_user):
    return make_user()


def test_get_cart_without_cart_returns_empty_default(client, buyer, auth_headers, db):
    r = client.get("/api/cart", headers=auth_headers(buyer))
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["data"]["items"] == []
    assert body["data"]["user_id"] == str(buyer["_id"])
    assert db["cart"].count_documents({}) == 0


def test_cart_requires_authentication(client):
    r = client.get("/api/cart")
    assert r.status_code == 401
    assert r.json() == {"error": "Missing or invalid authorization header"}


def test_cart_rejects_garbage_token(client):
    r = client.get("/api/cart", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert "error" in r.json()


def test_add_same_product_twice_merges_quantity(client, buyer, auth_headers, make_product):
    pid = make_product(name="Pattachitra Scroll", price=1000.0, image_url="https://img/p.jpg")
    headers = auth_headers(buyer)
    client.post("/api/cart/items", json={"product_id": pid, "quantity": 1}, headers=headers)
    r = client.post("/api/cart/items", json={"product_id": pid, "quantity": 2}, headers=headers)
    assert r.status_code == 200
    items = r.json()["data"]["items"]
    assert len(items) == 1
    assert items[0] == {
        "product_id": pid,
        "name": "Pattachitra Scroll",
        "price": 1000.0,
        "image_url": "https://img/p.jpg",
        "quantity": 3,
    }


def test_add_keeps_insertion_order(client, buyer, auth_headers, make_product):
    first, second = make_product(), make_product()
    headers = auth_headers(buyer)
    client.post("/api/cart/items", json={"product_id": first}, headers=headers)
    r = client.post("/api/cart/items", json={"product_id": second}, headers=headers)
    assert [it["product_id"] for it in r.json()["data"]["items"]] == [first, second]


def test_add_unknown_product_is_not_found(client, buyer, auth_headers):
    r = client.post("/api/cart/items", json={"product_id": "64b7f0c2a1b2c3d4e5f60718"}, headers=auth_headers(buyer))
    assert r.status_code == 404
    assert r.json() == {"error": "Product not found"}


def test_add_malformed_product_id_is_not_found(client, buyer, auth_headers):
    r = client.post("/api/cart/items", json={"product_id": "42"}, headers=auth_headers(buyer))
    assert r.status_code == 404


def test_add_without_product_id_is_invalid(client, buyer, auth_headers):
    r = client.post("/api/cart/items", json={"quantity": 1}, headers=auth_headers(buyer))
    assert r.status_code == 400
    assert r.json() == {"error": "Product ID is required"}


def test_add_zero_quantity_is_invalid(client, buyer, auth_headers, make_product):
    pid = make_product()
    r = client.post("/api/cart/items", json={"product_id": pid, "quantity": 0}, headers=auth_headers(buyer))
    assert r.status_code == 400


def test_update_sets_quantity_absolutely(client, buyer, auth_headers, make_product):
    pid = make_product()
    headers = auth_headers(buyer)
    client.post("/api/cart/items", json={"product_id": pid, "quantity": 4}, headers=headers)
    r = client.put(f"/api/cart/items/{pid}", json={"quantity": 2}, headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["items"][0]["quantity"] == 2


def test_update_to_zero_removes_line(client, buyer, auth_headers, make_product):
    pid, other = make_product(), make_product()
    headers = auth_headers(buyer)
    client.post("/api/cart/items", json={"product_id": pid}, headers=headers)
    client.post("/api/cart/items", json={"product_id": other}, headers=headers)
    r = client.put(f"/api/cart/items/{pid}", json={"quantity": 0}, headers=headers)
    items = r.json()["data"]["items"]
    assert [it["product_id"] for it in items] == [other]
    assert all(it["quantity"] >= 1 for it in items)


def test_update_negative_quantity_is_invalid(client, buyer, auth_headers, make_product):
    pid = make_product()
    headers = auth_headers(buyer)
    client.post("/api/cart/items", json={"product_id": pid}, headers=headers)
    r = client.put(f"/api/cart/items/{pid}", json={"quantity": -1}, headers=headers)
    assert r.status_code == 400


def test_update_without_cart_is_not_found(client, buyer, auth_headers, make_product):
    pid = make_product()
    r = client.put(f"/api/cart/items/{pid}", json={"quantity": 2}, headers=auth_headers(buyer))
    assert r.status_code == 404
    assert r.json() == {"error": "Cart not found"}


def test_remove_is_idempotent(client, buyer, auth_headers, make_product):
    pid = make_product()
    headers = auth_headers(buyer)
    client.post("/api/cart/items", json={"product_id": pid}, headers=headers)
    first = client.delete(f"/api/cart/items/{pid}", headers=headers)
    second = client.delete(f"/api/cart/items/{pid}", headers=headers)
    assert first.status_code == second.status_code == 200
    assert second.json()["data"]["items"] == []


def test_remove_without_cart_returns_empty(client, buyer, auth_headers):
    r = client.delete("/api/cart/items/64b7f0c2a1b2c3d4e5f60718", headers=auth_headers(buyer))
    assert r.status_code == 200
    assert r.json()["data"]["items"] == []


def test_clear_keeps_cart_row(client, buyer, auth_headers, make_product, db):
    pid = make_product()
    headers = auth_headers(buyer)
    client.post("/api/cart/items", json={"product_id": pid, "quantity": 2}, headers=headers)
    r = client.delete("/api/cart/clear", headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["items"] == []
    row = db["cart"].find_one({"user_id": str(buyer["_id"])})
    assert row is not None and row["items"] == []


def test_mutations_bump_version(db, make_product):
    pid = make_product()
    created = cart.add_item(db, "user-1", pid, 1)
    updated = cart.update_item(db, "user-1", pid, 5)
    assert updated["version"] == created["version"] + 1
    assert updated["updated_at"] is not None


def test_carts_are_isolated_per_user(db, make_product):
    pid = make_product()
    cart.add_item(db, "user-a", pid, 2)
    assert cart.get_cart(db, "user-b")["items"] == []
    assert cart.get_cart(db, "user-a")["items"][0]["quantity"] == 2


def test_concurrent_write_is_reapplied_not_lost(db, make_product, monkeypatch):
    first, second = make_product(), make_product()
    cart.add_item(db, "user-1", first, 1)

    original = mongomock.Collection.find_one_and_update
    calls = {"n": 0}

    # Another request commits between our read and our conditional write.
    def racing_update(self, filt, update, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            current = self.find_one({"user_id": "user-1"})
            items = [dict(it, quantity=7) for it in current["items"]]
            self.update_one({"user_id": "user-1"}, {"$set": {"items": items}, "$inc": {"version": 1}})
        return original(self, filt, update, **kwargs)

    monkeypatch.setattr(mongomock.Collection, "find_one_and_update", racing_update)
    result = cart.add_item(db, "user-1", second, 1)
    by_id = {it["product_id"]: it["quantity"] for it in result["items"]}
    assert by_id == {first: 7, second: 1}
    assert calls["n"] == 2


def test_persistent_contention_gives_up_with_conflict(db, make_product, monkeypatch):
    pid = make_product()
    cart.add_item(db, "user-1", pid, 1)
    monkeypatch.setattr(mongomock.Collection, "find_one_and_update", lambda self, *a, **k: None)
    with pytest.raises(Conflict):
        cart.add_item(db, "user-1", pid, 1)


def test_service_level_validation(db):
    with pytest.raises(InvalidArgument):
        cart.update_item(db, "user-1", "x", None)
    with pytest.raises(NotFound):
        cart.update_item(db, "user-1", "x", 1)

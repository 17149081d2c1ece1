"""
Client for the Artisy API plus the local cart and wishlist state a storefront
keeps between requests.

The stores are plain objects handed to whatever UI layer uses them. They never
talk to the server behind the caller's back: ``sync()`` is the one explicit
reconciliation step, and wishlist changes are applied optimistically with the
previous value kept for rollback.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}")


class ApiClient:
    def __init__(self, base_url: str = "http://localhost:8000", token: Optional[str] = None,
                 http: Optional[httpx.Client] = None, timeout: float = 10.0):
        self.http = http or httpx.Client(base_url=base_url, timeout=timeout)
        self.token = token

    def close(self) -> None:
        self.http.close()

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        response = self.http.request(method, f"/api{path}", headers=headers, **kwargs)
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            message = body.get("error") or body.get("message") or "Request failed"
            raise ApiError(response.status_code, message)
        return body

    # Auth
    def signup(self, email: str, password: str, name: Optional[str] = None) -> dict:
        return self._request("POST", "/auth/signup", json={"email": email, "password": password, "name": name})["data"]

    def login(self, email: str, password: str) -> dict:
        data = self._request("POST", "/auth/login", json={"email": email, "password": password})["data"]
        self.token = data["session"]["access_token"]
        return data

    def refresh(self, refresh_token: str) -> dict:
        data = self._request("POST", "/auth/refresh-token", json={"refresh_token": refresh_token})["data"]
        self.token = data["access_token"]
        return data

    def logout(self) -> None:
        self._request("POST", "/auth/logout")
        self.token = None

    def get_user(self) -> dict:
        return self._request("GET", "/auth/user")["data"]

    # Products
    def get_products(self, **params) -> dict:
        return self._request("GET", "/products", params=params)

    def get_product(self, product_id: str) -> dict:
        return self._request("GET", f"/products/{product_id}")["data"]

    def get_featured(self, limit: int = 4) -> List[dict]:
        return self._request("GET", "/products/featured", params={"limit": limit})["data"]

    def get_filters(self) -> dict:
        return self._request("GET", "/products/filters")["data"]

    def semantic_search(self, query: str, limit: int = 20) -> List[dict]:
        return self._request("POST", "/products/semantic-search", json={"query": query, "limit": limit})["data"]

    def add_review(self, product_id: str, rating: int, review_text: Optional[str] = None) -> dict:
        return self._request("POST", f"/products/{product_id}/reviews",
                             json={"rating": rating, "review_text": review_text})["data"]

    def get_reviews(self, product_id: str, limit: int = 20, offset: int = 0) -> dict:
        return self._request("GET", f"/products/{product_id}/reviews", params={"limit": limit, "offset": offset})

    # Cart
    def get_cart(self) -> dict:
        return self._request("GET", "/cart")["data"]

    def add_cart_item(self, product_id: str, quantity: int = 1) -> dict:
        return self._request("POST", "/cart/items", json={"product_id": product_id, "quantity": quantity})["data"]

    def update_cart_item(self, product_id: str, quantity: int) -> dict:
        return self._request("PUT", f"/cart/items/{product_id}", json={"quantity": quantity})["data"]

    def remove_cart_item(self, product_id: str) -> dict:
        return self._request("DELETE", f"/cart/items/{product_id}")["data"]

    def clear_cart(self) -> dict:
        return self._request("DELETE", "/cart/clear")["data"]

    # Wishlist
    def get_wishlist(self) -> List[str]:
        return self._request("GET", "/wishlist")["data"]

    def add_wishlist_item(self, product_id: str) -> dict:
        return self._request("POST", "/wishlist/items", json={"product_id": product_id})["data"]

    def remove_wishlist_item(self, product_id: str) -> None:
        self._request("DELETE", f"/wishlist/items/{product_id}")

    def check_wishlist(self, product_id: str) -> bool:
        return self._request("GET", f"/wishlist/check/{product_id}")["data"]["inWishlist"]

    # Orders
    def create_checkout(self, items: List[dict], user_email: str, user_id: Optional[str] = None) -> dict:
        body = {"items": items, "userEmail": user_email, "userId": user_id}
        return self._request("POST", "/orders/checkout", json=body)["data"]

    def get_orders(self) -> List[dict]:
        return self._request("GET", "/orders")["data"]

    def get_order(self, order_id: str) -> dict:
        return self._request("GET", f"/orders/{order_id}")["data"]

    def get_order_status(self, order_id: str) -> dict:
        return self._request("GET", f"/orders/{order_id}/status")["data"]


class CartStore:
    """Local cart lines, keyed by product id, in insertion order."""

    def __init__(self, items: Optional[List[dict]] = None):
        self.items: List[dict] = [dict(it) for it in items or []]
        self.is_open = False

    def _find(self, product_id: str) -> Optional[dict]:
        return next((it for it in self.items if it["product_id"] == product_id), None)

    def add_item(self, product: dict, quantity: int = 1) -> None:
        existing = self._find(product["product_id"])
        if existing:
            existing["quantity"] += quantity
        else:
            self.items.append({
                "product_id": product["product_id"],
                "name": product["name"],
                "price": product["price"],
                "image_url": product.get("image_url"),
                "quantity": quantity,
            })

    def remove_item(self, product_id: str) -> None:
        self.items = [it for it in self.items if it["product_id"] != product_id]

    def update_quantity(self, product_id: str, quantity: int) -> None:
        if quantity <= 0:
            self.remove_item(product_id)
            return
        existing = self._find(product_id)
        if existing:
            existing["quantity"] = quantity

    def clear(self) -> None:
        self.items = []

    def toggle(self) -> None:
        self.is_open = not self.is_open

    @property
    def total(self) -> float:
        return round(sum(it["price"] * it["quantity"] for it in self.items), 2)

    @property
    def total_items(self) -> int:
        return sum(it["quantity"] for it in self.items)

    def sync(self, client: ApiClient) -> List[dict]:
        """Pull the server cart, push lines only this client knows about, then
        adopt the server's view as the local state. A line the server rejects
        is dropped; the rest are still pushed."""
        server = client.get_cart()
        known = {it["product_id"] for it in server.get("items", [])}
        for it in self.items:
            if it["product_id"] in known:
                continue
            try:
                server = client.add_cart_item(it["product_id"], it["quantity"])
            except ApiError as e:
                logger.warning("Dropping cart line %s during sync: %s", it["product_id"], e.message)
        self.items = [dict(it) for it in server.get("items", [])]
        return self.items


class WishlistStore:
    def __init__(self, client: ApiClient, items: Optional[List[str]] = None):
        self.client = client
        self.items: List[str] = list(items or [])
        self.is_initialized = False

    def contains(self, product_id: str) -> bool:
        return product_id in self.items

    def add(self, product_id: str) -> bool:
        if product_id in self.items:
            return True
        rollback = list(self.items)
        self.items.append(product_id)
        try:
            self.client.add_wishlist_item(product_id)
        except ApiError as e:
            logger.warning("Adding %s to wishlist failed, reverting: %s", product_id, e.message)
            self.items = rollback
            return False
        return True

    def remove(self, product_id: str) -> bool:
        if product_id not in self.items:
            return True
        rollback = list(self.items)
        self.items = [p for p in self.items if p != product_id]
        try:
            self.client.remove_wishlist_item(product_id)
        except ApiError as e:
            logger.warning("Removing %s from wishlist failed, reverting: %s", product_id, e.message)
            self.items = rollback
            return False
        return True

    def toggle(self, product_id: str) -> bool:
        if self.contains(product_id):
            return self.remove(product_id)
        return self.add(product_id)

    def sync(self) -> List[str]:
        self.items = self.client.get_wishlist()
        self.is_initialized = True
        return self.items

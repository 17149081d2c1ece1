"""
Cart aggregate: one cart document per user holding an ordered list of line items.

Every mutation rewrites the whole ``items`` array. Writes are conditional on the
``version`` read beforehand, so two requests racing on the same cart cannot
silently drop each other's changes: the loser re-reads and re-applies its change.
"""
import logging
from typing import Callable, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import now_utc, object_id, to_public
from errors import Conflict, InvalidArgument, NotFound
from schemas import Cart, CartItem

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3

Mutation = Callable[[List[dict]], List[dict]]


def empty_cart(user_id: str) -> dict:
    return {"user_id": user_id, "items": [], "version": 0}


def get_cart(db: Database, user_id: str) -> dict:
    cart = db["cart"].find_one({"user_id": user_id})
    return to_public(cart) if cart else empty_cart(user_id)


def _product_snapshot(db: Database, product_id: Optional[str]) -> dict:
    oid = object_id(product_id)
    product = db["product"].find_one({"_id": oid}, {"name": 1, "price": 1, "image_url": 1}) if oid else None
    if not product:
        raise NotFound("Product not found")
    return {
        "product_id": str(product["_id"]),
        "name": product.get("name"),
        "price": product.get("price", 0.0),
        "image_url": product.get("image_url"),
    }


def _write(db: Database, user_id: str, mutate: Mutation, create_missing: bool) -> Optional[dict]:
    """Read-modify-write the cart with a version check. Returns None when the
    cart does not exist and ``create_missing`` is false."""
    for attempt in range(MAX_WRITE_ATTEMPTS):
        cart = db["cart"].find_one({"user_id": user_id})
        stamp = now_utc()
        if cart is None:
            if not create_missing:
                return None
            doc = Cart(user_id=user_id, items=mutate([])).model_dump()
            doc.update({"created_at": stamp, "updated_at": stamp})
            try:
                db["cart"].insert_one(doc)
            except DuplicateKeyError:
                logger.info("Cart for user %s created concurrently, retrying", user_id)
                continue
            return to_public(doc)
        items = mutate([dict(it) for it in cart.get("items", [])])
        updated = db["cart"].find_one_and_update(
            {"_id": cart["_id"], "version": cart.get("version", 0)},
            {"$set": {"items": items, "updated_at": stamp}, "$inc": {"version": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is not None:
            return to_public(updated)
        logger.info("Cart for user %s changed during update (attempt %d)", user_id, attempt + 1)
    raise Conflict("Cart was modified concurrently, please retry")


def add_item(db: Database, user_id: str, product_id: Optional[str], quantity: int = 1) -> dict:
    if not product_id:
        raise InvalidArgument("Product ID is required")
    if quantity is None or quantity < 1:
        raise InvalidArgument("Quantity must be at least 1")
    snapshot = _product_snapshot(db, product_id)

    def merge(items: List[dict]) -> List[dict]:
        for it in items:
            if it.get("product_id") == snapshot["product_id"]:
                it["quantity"] = it.get("quantity", 0) + quantity
                return items
        items.append(CartItem(quantity=quantity, **snapshot).model_dump())
        return items

    return _write(db, user_id, merge, create_missing=True)


def update_item(db: Database, user_id: str, product_id: str, quantity: Optional[int]) -> dict:
    if quantity is None or quantity < 0:
        raise InvalidArgument("Valid quantity is required")

    def apply(items: List[dict]) -> List[dict]:
        if quantity == 0:
            return [it for it in items if it.get("product_id") != product_id]
        for it in items:
            if it.get("product_id") == product_id:
                it["quantity"] = quantity
        return items

    cart = _write(db, user_id, apply, create_missing=False)
    if cart is None:
        raise NotFound("Cart not found")
    return cart


def remove_item(db: Database, user_id: str, product_id: str) -> dict:
    cart = _write(db, user_id, lambda items: [it for it in items if it.get("product_id") != product_id], create_missing=False)
    return cart if cart is not None else empty_cart(user_id)


def clear_cart(db: Database, user_id: str) -> dict:
    cart = _write(db, user_id, lambda items: [], create_missing=False)
    return cart if cart is not None else empty_cart(user_id)

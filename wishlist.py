"""
Wishlist: one ``(user_id, product_id)`` row per saved product.
"""
import logging
from typing import List, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, object_id, to_public
from errors import Conflict, InvalidArgument, NotFound
from schemas import WishlistItem

logger = logging.getLogger(__name__)


def list_items(db: Database, user_id: str) -> List[str]:
    cursor = db["wishlist"].find({"user_id": user_id}, {"product_id": 1}).sort([("created_at", -1), ("_id", -1)])
    return [w["product_id"] for w in cursor]


def contains(db: Database, user_id: Optional[str], product_id: str) -> bool:
    if not user_id:
        return False
    return db["wishlist"].find_one({"user_id": user_id, "product_id": product_id}, {"_id": 1}) is not None


def add_item(db: Database, user_id: str, product_id: Optional[str]) -> dict:
    if not product_id:
        raise InvalidArgument("Product ID is required")
    oid = object_id(product_id)
    if oid is None or db["product"].find_one({"_id": oid}, {"_id": 1}) is None:
        raise NotFound("Product not found")
    if contains(db, user_id, product_id):
        raise Conflict("Product already in wishlist")
    entry = WishlistItem(user_id=user_id, product_id=product_id).model_dump()
    try:
        entry_id = create_document(db, "wishlist", entry)
    except DuplicateKeyError:
        # Lost the race against a concurrent add of the same pair.
        raise Conflict("Product already in wishlist")
    return to_public(db["wishlist"].find_one({"_id": object_id(entry_id)}))


def remove_item(db: Database, user_id: str, product_id: str) -> None:
    db["wishlist"].delete_one({"user_id": user_id, "product_id": product_id})

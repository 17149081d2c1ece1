"""
Product reviews. Adding a review is the only thing that writes a product's
``rating`` and ``review_count``; both are recomputed from every stored review
rather than adjusted incrementally.
"""
import logging
from typing import List, Optional, Tuple

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, now_utc, object_id, to_public
from errors import Conflict, InvalidArgument, NotFound
from schemas import Review

logger = logging.getLogger(__name__)


def _require_product(db: Database, product_id: str):
    oid = object_id(product_id)
    if oid is None or db["product"].find_one({"_id": oid}, {"_id": 1}) is None:
        raise NotFound("Product not found")
    return oid


def recompute_rating(db: Database, product_id: str) -> Tuple[float, int]:
    ratings = [r["rating"] for r in db["review"].find({"product_id": product_id}, {"rating": 1})]
    count = len(ratings)
    average = round(sum(ratings) / count, 1) if count else 0.0
    db["product"].update_one(
        {"_id": object_id(product_id)},
        {"$set": {"rating": average, "review_count": count, "updated_at": now_utc()}},
    )
    return average, count


def add_review(db: Database, product_id: str, user_id: str, rating: int, review_text: Optional[str] = None) -> dict:
    if rating is None or not 1 <= rating <= 5:
        raise InvalidArgument("Rating must be between 1 and 5")
    _require_product(db, product_id)
    if db["review"].find_one({"product_id": product_id, "user_id": user_id}, {"_id": 1}):
        raise Conflict("You have already reviewed this product")
    review = Review(product_id=product_id, user_id=user_id, rating=rating, review_text=review_text or None)
    try:
        review_id = create_document(db, "review", review.model_dump())
    except DuplicateKeyError:
        raise Conflict("You have already reviewed this product")
    average, count = recompute_rating(db, product_id)
    logger.info("Product %s now rated %.1f over %d reviews", product_id, average, count)
    return to_public(db["review"].find_one({"_id": object_id(review_id)}))


def list_reviews(db: Database, product_id: str, limit: int = 20, offset: int = 0) -> Tuple[List[dict], dict]:
    if limit < 1 or limit > 100:
        raise InvalidArgument("limit must be between 1 and 100")
    if offset < 0:
        raise InvalidArgument("offset must not be negative")
    _require_product(db, product_id)
    filt = {"product_id": product_id}
    total = db["review"].count_documents(filt)
    cursor = db["review"].find(filt).sort([("created_at", -1), ("_id", -1)]).skip(offset).limit(limit)
    items = [to_public(r) for r in cursor]
    return items, {"total": total, "limit": limit, "offset": offset, "hasMore": offset + limit < total}

"""
Catalog reads: filtered/sorted/paginated product search, featured products,
filter facets and embedding-based semantic search.
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from database import object_id, to_public
from embeddings import EmbeddingError, MATCH_THRESHOLD, ProductEmbedder, rank_by_similarity
from errors import Internal, InvalidArgument, NotFound

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
FEATURED_LIMIT = 4

# Raw vectors are large and only useful server side.
HIDDEN_FIELDS = {"embedding": 0}

TIE_BREAK = [("created_at", DESCENDING), ("_id", DESCENDING)]
SORTS = {
    "price_asc": [("price", ASCENDING)],
    "price_desc": [("price", DESCENDING)],
    "newest": [],
    "rating": [("rating", DESCENDING)],
    "featured": [("is_featured", DESCENDING)],
}

FACETS = {
    "categories": "category",
    "subcategories": "subcategory",
    "artForms": "art_form",
    "states": "origin_state",
}


@dataclass
class SearchParams:
    query: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    art_form: Optional[str] = None
    state: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    is_featured: Optional[bool] = None
    is_handmade: Optional[bool] = None
    sort_by: str = "featured"
    limit: int = DEFAULT_LIMIT
    offset: int = 0


def build_filter(params: SearchParams) -> Dict[str, Any]:
    filt: Dict[str, Any] = {}
    if params.query:
        pattern = {"$regex": re.escape(params.query), "$options": "i"}
        filt["$or"] = [{"name": pattern}, {"description": pattern}, {"tags": pattern}]
    for field, value in (
        ("category", params.category),
        ("subcategory", params.subcategory),
        ("art_form", params.art_form),
        ("origin_state", params.state),
    ):
        if value:
            filt[field] = value
    price_cond = {}
    if params.min_price is not None:
        price_cond["$gte"] = params.min_price
    if params.max_price is not None:
        price_cond["$lte"] = params.max_price
    if price_cond:
        filt["price"] = price_cond
    if params.is_featured is not None:
        filt["is_featured"] = params.is_featured
    if params.is_handmade is not None:
        filt["is_handmade"] = params.is_handmade
    return filt


def build_sort(sort_by: Optional[str]) -> List[Tuple[str, int]]:
    return SORTS.get(sort_by or "featured", SORTS["featured"]) + TIE_BREAK


def search(db: Database, params: SearchParams) -> Tuple[List[dict], dict]:
    if params.limit < 1 or params.limit > MAX_LIMIT:
        raise InvalidArgument(f"limit must be between 1 and {MAX_LIMIT}")
    if params.offset < 0:
        raise InvalidArgument("offset must not be negative")
    if params.min_price is not None and params.max_price is not None and params.min_price > params.max_price:
        raise InvalidArgument("minPrice must not exceed maxPrice")

    filt = build_filter(params)
    total = db["product"].count_documents(filt)
    cursor = (
        db["product"].find(filt, HIDDEN_FIELDS)
        .sort(build_sort(params.sort_by))
        .skip(params.offset)
        .limit(params.limit)
    )
    items = [to_public(p) for p in cursor]
    pagination = {
        "total": total,
        "limit": params.limit,
        "offset": params.offset,
        "hasMore": params.offset + params.limit < total,
    }
    return items, pagination


def get_product(db: Database, product_id: str) -> dict:
    oid = object_id(product_id)
    product = db["product"].find_one({"_id": oid}, HIDDEN_FIELDS) if oid else None
    if not product:
        raise NotFound("Product not found")
    return to_public(product)


def featured(db: Database, limit: int = FEATURED_LIMIT) -> List[dict]:
    if limit < 1 or limit > MAX_LIMIT:
        raise InvalidArgument(f"limit must be between 1 and {MAX_LIMIT}")
    cursor = db["product"].find({"is_featured": True}, HIDDEN_FIELDS).sort(TIE_BREAK).limit(limit)
    return [to_public(p) for p in cursor]


def filter_options(db: Database) -> Dict[str, List[str]]:
    options = {key: set() for key in FACETS}
    # Full scan of the facet columns; fine while the catalog is small.
    for p in db["product"].find({}, {field: 1 for field in FACETS.values()}):
        for key, field in FACETS.items():
            value = p.get(field)
            if value:
                options[key].add(value)
    return {key: sorted(values) for key, values in options.items()}


def semantic_search(db: Database, embedder: ProductEmbedder, query: Optional[str], limit: int = DEFAULT_LIMIT) -> List[dict]:
    if not query or not query.strip():
        raise InvalidArgument("Query is required")
    try:
        vector = embedder.embed(query.strip())
    except EmbeddingError as e:
        raise Internal(str(e))
    candidates = db["product"].find({"embedding": {"$exists": True, "$ne": None}})
    results = rank_by_similarity(vector, candidates, threshold=MATCH_THRESHOLD, limit=limit)
    logger.info("Semantic search matched %d products", len(results))
    return [to_public(p) for p in results]

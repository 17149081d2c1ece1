import logging
import os
import sys
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPAuthorizationCredentials
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool

import cart
import catalog
import checkout
import database
import reviews
import webhooks
import wishlist
from config import Settings, get_settings
from database import get_db, now_utc
from embeddings import ProductEmbedder, get_embedder
from errors import Internal, register_error_handlers
from identity import (
    get_profile,
    login,
    logout,
    optional_identity,
    refresh_session,
    require_identity,
    security,
    signup,
)
from payments import PaymentGateway, get_payment_gateway
from schemas import (
    AddCartItemRequest,
    AddWishlistRequest,
    CheckoutRequest,
    Identity,
    LoginRequest,
    RefreshRequest,
    ReviewRequest,
    SemanticSearchRequest,
    SignupRequest,
    UpdateCartItemRequest,
)

logger = logging.getLogger("artisy")


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        root.addHandler(handler)


def ok(data: Any = None, pagination: Optional[dict] = None, **extra) -> dict:
    body = {"success": True, "data": data}
    if pagination is not None:
        body["pagination"] = pagination
    body.update(extra)
    return body


# App setup
# Raises ConfigError when a credential is missing, so the server never starts half-configured.
app = FastAPI(title="Artisy API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().site_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)

api = APIRouter(prefix="/api")


@app.on_event("startup")
def on_startup():
    settings = get_settings()
    setup_logging(settings.log_level)
    db = database.connect(settings.database_url, settings.database_name)
    database.ensure_indexes(db)
    logger.info("Artisy API started (%s)", settings.environment)


# Health
@app.get("/")
def root():
    return {"message": "Artisy API running"}


@api.get("/health")
def health(settings: Settings = Depends(get_settings)):
    response = {
        "status": "OK",
        "timestamp": now_utc().isoformat(),
        "environment": settings.environment,
        "database": "Not Connected",
    }
    try:
        db = get_db()
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "Connected"
    except (Internal, PyMongoError) as e:
        response["database"] = f"Error: {str(e)[:80]}"
    return response


# Auth
@api.post("/auth/signup")
def auth_signup(payload: SignupRequest, db: Database = Depends(get_db)):
    data = signup(db, payload.email, payload.password, payload.name)
    return ok(data, message="User created successfully")


@api.post("/auth/login")
def auth_login(payload: LoginRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    return ok(login(db, settings, payload.email, payload.password))


@api.post("/auth/refresh-token")
def auth_refresh(payload: RefreshRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    return ok(refresh_session(db, settings, payload.refresh_token))


@api.post("/auth/logout")
def auth_logout(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
                db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    logout(db, settings, credentials.credentials if credentials else None)
    return ok(message="Logged out successfully")


@api.get("/auth/user")
def auth_user(identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(get_profile(db, identity))


# Products
@api.get("/products")
def list_products(
    query: Optional[str] = None,
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    art_form: Optional[str] = None,
    state: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    is_featured: Optional[bool] = None,
    is_handmade: Optional[bool] = None,
    sort_by: str = Query("featured", alias="sortBy"),
    limit: int = Query(catalog.DEFAULT_LIMIT, ge=1, le=catalog.MAX_LIMIT),
    offset: int = Query(0, ge=0),
    db: Database = Depends(get_db),
):
    params = catalog.SearchParams(
        query=query, category=category, subcategory=subcategory, art_form=art_form, state=state,
        min_price=min_price, max_price=max_price, is_featured=is_featured, is_handmade=is_handmade,
        sort_by=sort_by, limit=limit, offset=offset,
    )
    items, pagination = catalog.search(db, params)
    return ok(items, pagination)


@api.get("/products/featured")
def featured_products(limit: int = Query(catalog.FEATURED_LIMIT, ge=1, le=catalog.MAX_LIMIT), db: Database = Depends(get_db)):
    return ok(catalog.featured(db, limit))


@api.get("/products/filters")
def product_filters(db: Database = Depends(get_db)):
    return ok(catalog.filter_options(db))


@api.post("/products/semantic-search")
def semantic_search(payload: SemanticSearchRequest, db: Database = Depends(get_db),
                    embedder: ProductEmbedder = Depends(get_embedder)):
    return ok(catalog.semantic_search(db, embedder, payload.query, payload.limit))


@api.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return ok(catalog.get_product(db, product_id))


# Reviews
@api.post("/products/{product_id}/reviews")
def add_review(product_id: str, payload: ReviewRequest, identity: Identity = Depends(require_identity),
               db: Database = Depends(get_db)):
    return ok(reviews.add_review(db, product_id, identity.id, payload.rating, payload.review_text))


@api.get("/products/{product_id}/reviews")
def list_reviews(product_id: str, limit: int = Query(20, ge=1, le=100), offset: int = Query(0, ge=0),
                 db: Database = Depends(get_db)):
    items, pagination = reviews.list_reviews(db, product_id, limit, offset)
    return ok(items, pagination)


# Cart
@api.get("/cart")
def get_cart(identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(cart.get_cart(db, identity.id))


@api.post("/cart/items")
def cart_add(item: AddCartItemRequest, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(cart.add_item(db, identity.id, item.product_id, item.quantity))


@api.put("/cart/items/{product_id}")
def cart_update(product_id: str, item: UpdateCartItemRequest, identity: Identity = Depends(require_identity),
                db: Database = Depends(get_db)):
    return ok(cart.update_item(db, identity.id, product_id, item.quantity))


@api.delete("/cart/items/{product_id}")
def cart_remove(product_id: str, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(cart.remove_item(db, identity.id, product_id))


@api.delete("/cart/clear")
def cart_clear(identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(cart.clear_cart(db, identity.id), message="Cart cleared")


# Wishlist
@api.get("/wishlist")
def get_wishlist(identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(wishlist.list_items(db, identity.id))


@api.post("/wishlist/items")
def wishlist_add(payload: AddWishlistRequest, identity: Identity = Depends(require_identity),
                 db: Database = Depends(get_db)):
    return ok(wishlist.add_item(db, identity.id, payload.product_id))


@api.delete("/wishlist/items/{product_id}")
def wishlist_remove(product_id: str, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    wishlist.remove_item(db, identity.id, product_id)
    return ok(message="Item removed from wishlist")


@api.get("/wishlist/check/{product_id}")
def wishlist_check(product_id: str, identity: Optional[Identity] = Depends(optional_identity),
                   db: Database = Depends(get_db)):
    in_wishlist = wishlist.contains(db, identity.id if identity else None, product_id)
    return ok({"inWishlist": in_wishlist})


# Checkout & Orders
@api.post("/orders/checkout")
def create_checkout(
    payload: CheckoutRequest,
    identity: Optional[Identity] = Depends(optional_identity),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    user_id = identity.id if identity else payload.user_id
    return ok(checkout.create_checkout(db, gateway, settings, payload.items, payload.user_email, user_id))


@api.get("/orders")
def list_orders(identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(checkout.list_orders(db, identity.id))


@api.get("/orders/{order_id}")
def get_order(order_id: str, identity: Optional[Identity] = Depends(optional_identity), db: Database = Depends(get_db)):
    return ok(checkout.get_order(db, order_id, identity))


@api.get("/orders/{order_id}/status")
def get_order_status(order_id: str, db: Database = Depends(get_db)):
    return ok(checkout.get_order_status(db, order_id))


# Payments
@api.post("/payments/webhook")
async def payment_webhook(request: Request, stripe_signature: Optional[str] = Header(None),
                          db: Database = Depends(get_db), gateway: PaymentGateway = Depends(get_payment_gateway)):
    # Signature verification needs the exact bytes Stripe signed.
    payload = await request.body()
    result = await run_in_threadpool(webhooks.handle_webhook, db, gateway, payload, stripe_signature)
    return ok(result)


app.include_router(api)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

"""
Checkout orchestration and order reads.

An order row is written first (status ``pending``, empty session reference),
then the hosted checkout session is requested and its id back-filled onto the
order. Order status only moves later, from the payment webhook.
"""
import logging
from typing import List, Optional

import stripe
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import Settings
from database import create_document, now_utc, object_id, to_public
from errors import Forbidden, Internal, InvalidArgument, NotFound
from payments import PaymentGateway
from schemas import CheckoutItem, Identity, Order, OrderItem

logger = logging.getLogger(__name__)


def order_amount(items: List[CheckoutItem]) -> float:
    return round(sum(it.price * it.quantity for it in items), 2)


def stripe_line_items(items: List[CheckoutItem], currency: str) -> List[dict]:
    line_items = []
    for it in items:
        product_data = {"name": it.name}
        if it.image_url:
            product_data["images"] = [it.image_url]
        line_items.append({
            "price_data": {
                "currency": currency,
                "product_data": product_data,
                "unit_amount": int(round(it.price * 100)),
            },
            "quantity": it.quantity,
        })
    return line_items


def create_checkout(db: Database, gateway: PaymentGateway, settings: Settings, items: List[CheckoutItem],
                    user_email: Optional[str], user_id: Optional[str] = None) -> dict:
    if not items:
        raise InvalidArgument("No items provided")
    if not user_email:
        raise InvalidArgument("Email is required")

    # Prices come from the client's cart snapshot, not the product records.
    order = Order(
        user_id=user_id or None,
        email=user_email,
        stripe_session_id="",
        amount=order_amount(items),
        currency=settings.currency,
        status="pending",
        items=[OrderItem(**it.model_dump()) for it in items],
    )
    try:
        order_id = create_document(db, "order", order.model_dump())
    except PyMongoError as e:
        logger.error("Failed to create order: %s", e)
        raise Internal("Failed to create order")

    metadata = {"orderId": order_id, "userId": user_id or ""}
    try:
        session = gateway.create_checkout_session(
            line_items=stripe_line_items(items, settings.currency),
            customer_email=user_email,
            metadata=metadata,
            success_url=f"{settings.site_url}/order-success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{settings.site_url}/checkout",
        )
    except stripe.StripeError as e:
        logger.error("Checkout session failed for pending order %s: %s", order_id, e)
        raise Internal("Failed to create checkout session")

    try:
        db["order"].update_one(
            {"_id": object_id(order_id)},
            {"$set": {"stripe_session_id": session.id, "updated_at": now_utc()}},
        )
    except PyMongoError as e:
        logger.error("Failed to attach session %s to order %s: %s", session.id, order_id, e)

    logger.info("Created order %s with checkout session %s", order_id, session.id)
    return {"sessionId": session.id, "checkoutUrl": session.url, "orderId": order_id}


def list_orders(db: Database, user_id: str) -> List[dict]:
    cursor = db["order"].find({"user_id": user_id}).sort([("created_at", -1), ("_id", -1)])
    return [to_public(o) for o in cursor]


def _find_order(db: Database, order_id: str, projection: Optional[dict] = None) -> dict:
    oid = object_id(order_id)
    order = db["order"].find_one({"_id": oid}, projection) if oid else None
    if not order:
        raise NotFound("Order not found")
    return order


def get_order(db: Database, order_id: str, identity: Optional[Identity] = None) -> dict:
    order = _find_order(db, order_id)
    if identity is not None and order.get("user_id") != identity.id:
        raise Forbidden("Access denied")
    return to_public(order)


def get_order_status(db: Database, order_id: str) -> dict:
    order = _find_order(db, order_id, {"status": 1, "amount": 1, "created_at": 1})
    return {"status": order["status"], "amount": order["amount"], "created_at": order.get("created_at")}

"""
Payment webhook reconciliation.

Signature verification is the only hard gate: an unverified event is rejected
and never touches an order. Once an event is verified and parsed it is always
acknowledged; if applying it fails, the event is written to the
``failed_webhook_event`` collection for manual reconciliation instead of being
left to the sender's redelivery.
"""
import json
import logging
from typing import Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import now_utc, object_id
from errors import InvalidArgument
from payments import PaymentGateway, WebhookSignatureError

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_FAILED = "payment_intent.payment_failed"


def mark_paid(db: Database, session_id: Optional[str]) -> bool:
    if not session_id:
        logger.warning("Checkout completed event without a session id")
        return False
    result = db["order"].update_one(
        {"stripe_session_id": session_id, "status": "pending"},
        {"$set": {"status": "paid", "updated_at": now_utc()}},
    )
    if result.modified_count:
        logger.info("Order for session %s marked paid", session_id)
        return True
    if db["order"].find_one({"stripe_session_id": session_id}, {"_id": 1}) is None:
        logger.warning("No order found for checkout session %s", session_id)
    else:
        logger.info("Order for session %s already settled, ignoring", session_id)
    return False


def mark_cancelled(db: Database, order_id: Optional[str]) -> bool:
    oid = object_id(order_id)
    if oid is None:
        logger.warning("Payment failed event without a usable orderId (%r)", order_id)
        return False
    result = db["order"].update_one(
        {"_id": oid, "status": "pending"},
        {"$set": {"status": "cancelled", "updated_at": now_utc()}},
    )
    if result.modified_count:
        logger.info("Order %s cancelled after failed payment", order_id)
        return True
    logger.info("Order %s not pending or not found, ignoring payment failure", order_id)
    return False


def dispatch(db: Database, event: dict) -> bool:
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    if event_type == CHECKOUT_COMPLETED:
        return mark_paid(db, obj.get("id"))
    if event_type == PAYMENT_FAILED:
        return mark_cancelled(db, (obj.get("metadata") or {}).get("orderId"))
    logger.info("Unhandled event type %s", event_type)
    return False


def record_failure(db: Database, event: dict, error: Exception) -> None:
    event_id = event.get("id") or f"unknown-{now_utc().timestamp()}"
    try:
        db["failed_webhook_event"].update_one(
            {"event_id": event_id},
            {
                "$set": {"type": event.get("type"), "error": str(error), "payload": event, "last_failed_at": now_utc()},
                "$inc": {"attempts": 1},
                "$setOnInsert": {"first_failed_at": now_utc()},
            },
            upsert=True,
        )
    except PyMongoError:
        logger.exception("Could not record failed webhook event %s", event_id)


def handle_webhook(db: Database, gateway: PaymentGateway, payload: bytes, signature: Optional[str]) -> dict:
    if not signature:
        logger.error("Webhook request without signature header")
        raise InvalidArgument("Missing signature or webhook secret")
    try:
        gateway.verify_webhook(payload, signature)
    except WebhookSignatureError as e:
        logger.error("Webhook signature verification failed: %s", e)
        raise InvalidArgument(f"Webhook Error: {e}")

    try:
        event = json.loads(payload)
    except ValueError as e:
        raise InvalidArgument(f"Webhook Error: invalid payload ({e})")
    if not isinstance(event, dict):
        raise InvalidArgument("Webhook Error: invalid payload")

    try:
        changed = dispatch(db, event)
    except Exception as e:
        logger.exception("Error handling webhook event %s", event.get("id"))
        record_failure(db, event, e)
        changed = False
    return {"received": True, "type": event.get("type"), "updated": changed}

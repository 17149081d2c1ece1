"""
Stripe gateway: hosted checkout sessions and webhook signature verification.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import stripe

from config import get_settings

logger = logging.getLogger(__name__)

WEBHOOK_TOLERANCE_SECONDS = 300


class WebhookSignatureError(ValueError):
    pass


@dataclass
class CheckoutSession:
    id: str
    url: Optional[str]


class PaymentGateway:
    def __init__(self, secret_key: str, webhook_secret: str):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    def create_checkout_session(self, line_items: List[dict], customer_email: str, metadata: Dict[str, str],
                                success_url: str, cancel_url: str) -> CheckoutSession:
        session = stripe.checkout.Session.create(
            api_key=self.secret_key,
            payment_method_types=["card"],
            line_items=line_items,
            mode="payment",
            success_url=success_url,
            cancel_url=cancel_url,
            customer_email=customer_email,
            metadata=metadata,
            payment_intent_data={"metadata": metadata},
        )
        return CheckoutSession(id=session.id, url=session.url)

    def verify_webhook(self, payload: bytes, signature: str) -> None:
        if not self.webhook_secret:
            raise WebhookSignatureError("Missing webhook secret")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"), signature, self.webhook_secret, WEBHOOK_TOLERANCE_SECONDS
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            raise WebhookSignatureError(str(e)) from e


_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        settings = get_settings()
        _gateway = PaymentGateway(settings.stripe_secret_key, settings.stripe_webhook_secret)
    return _gateway

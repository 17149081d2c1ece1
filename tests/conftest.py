import hashlib
import hmac
import itertools
import json
import os
import time
from datetime import datetime, timedelta

os.environ.update({
    "SITE_URL": "http://localhost:5173",
    "DATABASE_URL": "mongodb://localhost:27017",
    "DATABASE_NAME": "artisy_test",
    "JWT_SECRET": "test-jwt-secret-that-is-long-enough-for-hs256",
    "STRIPE_SECRET_KEY": "sk_test_dummy",
    "STRIPE_WEBHOOK_SECRET": "whsec_test_secret",
    "OPENAI_API_KEY": "sk-test-dummy",
    "ENVIRONMENT": "test",
})

import mongomock
import pytest
import stripe
from fastapi.testclient import TestClient

import database
import main
from config import get_settings
from embeddings import EmbeddingError, get_embedder, product_text
from identity import create_token
from payments import CheckoutSession, PaymentGateway, get_payment_gateway
from schemas import Product


class FakeGateway(PaymentGateway):
    """Records checkout sessions instead of calling Stripe. Webhook signature
    verification is the real one."""

    def __init__(self, secret_key, webhook_secret):
        super().__init__(secret_key, webhook_secret)
        self.sessions = []
        self.fail_with = None
        self._ids = itertools.count(1)

    def create_checkout_session(self, line_items, customer_email, metadata, success_url, cancel_url):
        if self.fail_with is not None:
            raise self.fail_with
        session_id = f"cs_test_{next(self._ids)}"
        self.sessions.append({
            "id": session_id,
            "line_items": line_items,
            "customer_email": customer_email,
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
        })
        return CheckoutSession(id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}")


class FakeEmbedder:
    def __init__(self):
        self.vectors = {}
        self.default = [0.0, 0.0, 1.0]
        self.fail = False
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        if self.fail:
            raise EmbeddingError("Failed to generate embedding")
        return self.vectors.get(text, self.default)

    def embed_product(self, name, description):
        return self.embed(product_text(name, description))


def sign_payload(payload: bytes, secret: str, timestamp: int = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def settings():
    get_settings.cache_clear()
    return get_settings()


@pytest.fixture
def db():
    return mongomock.MongoClient()["artisy_test"]


@pytest.fixture
def gateway(settings):
    return FakeGateway(settings.stripe_secret_key, settings.stripe_webhook_secret)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def client(db, gateway, embedder, monkeypatch):
    monkeypatch.setattr(database, "db", db)
    main.app.dependency_overrides[get_payment_gateway] = lambda: gateway
    main.app.dependency_overrides[get_embedder] = lambda: embedder
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(email=None, role="user", hashed_password="not-a-real-hash", name="Test User"):
        n = next(counter)
        doc = {
            "name": name,
            "email": email or f"buyer{n}@artisy.in",
            "hashed_password": hashed_password,
            "role": role,
            "is_active": True,
            "created_at": datetime(2024, 1, 1),
            "updated_at": datetime(2024, 1, 1),
        }
        doc["_id"] = db["user"].insert_one(doc).inserted_id
        return doc

    return _make


@pytest.fixture
def auth_headers(settings):
    def _headers(user):
        token = create_token(user, settings)["token"]
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def make_product(db):
    counter = itertools.count(1)

    def _make(**overrides):
        n = next(counter)
        fields = {"name": f"Madhubani Panel {n}", "price": 1000.0}
        fields.update(overrides)
        created_at = fields.pop("created_at", datetime(2024, 1, 1) + timedelta(minutes=n))
        doc = Product(**fields).model_dump()
        doc.update({"created_at": created_at, "updated_at": created_at})
        return str(db["product"].insert_one(doc).inserted_id)

    return _make


@pytest.fixture
def send_webhook(client, settings):
    def _send(event, secret=None, signature=None):
        payload = json.dumps(event).encode("utf-8")
        if signature is None:
            signature = sign_payload(payload, secret or settings.stripe_webhook_secret)
        return client.post(
            "/api/payments/webhook",
            content=payload,
            headers={"Stripe-Signature": signature, "Content-Type": "application/json"},
        )

    return _send


@pytest.fixture
def stripe_down(gateway):
    gateway.fail_with = stripe.APIConnectionError("Stripe unreachable")
    return gateway

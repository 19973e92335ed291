"""
Shared fixtures.

The environment is set before any project module is imported: db, auth and
stripe_gateway read their configuration at import time.
"""
import hashlib
import hmac
import json
import os
import tempfile
import time

_TMP_DIR = tempfile.mkdtemp(prefix="dinherin-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["ENVIRONMENT"] = "development"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["STRIPE_SECRET_KEY_TEST"] = "sk_test_dummy"
os.environ["STRIPE_CHECKOUT_PRICE_ID_DEV"] = "price_test_123"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["CRON_SECRET"] = "cron-test-secret"
os.environ["APP_URL"] = "http://localhost:3000"
os.environ["SMTP_HOST"] = ""
os.environ["DB_WARMUP_TRIES"] = "1"
os.environ["DB_WARMUP_DELAY"] = "0"

import pytest
from fastapi.testclient import TestClient

import main
import user_routes
from auth import generate_api_key, get_password_hash
from db import Base, SessionLocal, User, engine

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]
CRON_SECRET = os.environ["CRON_SECRET"]
PASSWORD = "Sup3r$ecret"


@pytest.fixture(autouse=True)
def _database():
    Base.metadata.create_all(bind=engine)
    user_routes.reset_limiter.reset()
    yield
    SessionLocal.remove()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client():
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    """Factory: committed account with an API key (and a password unless password=None)."""
    def _make(email="ana@example.com", name="Ana", password=PASSWORD, **fields):
        user = User(
            email=email,
            name=name,
            hashed_password=get_password_hash(password) if password else None,
            api_key=generate_api_key(),
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


def reload(db, user):
    """Fresh copy of an account after the app changed it in another session."""
    db.expire_all()
    return db.get(User, user.id)


def api_headers(user):
    return {"API_KEY": user.api_key}


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    ts = int(timestamp if timestamp is not None else time.time())
    signature = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


def post_webhook(client, event: dict):
    payload = json.dumps(event)
    return client.post(
        "/api/payments/webhook",
        content=payload,
        headers={"Stripe-Signature": sign_payload(payload), "Content-Type": "application/json"},
    )


# ------------------------- Event builders -----------------------------------

PERIOD_START = 1735689600  # 2025-01-01T00:00:00Z
PERIOD_END = 1738368000    # 2025-02-01T00:00:00Z


def invoice_event(event_type, email="ana@example.com", customer="cus_123", amount_paid=4990, event_id="evt_1"):
    return {
        "id": event_id,
        "type": event_type,
        "data": {
            "object": {
                "id": "in_123",
                "object": "invoice",
                "customer": customer,
                "customer_email": email,
                "customer_name": "Ana",
                "amount_paid": amount_paid,
                "hosted_invoice_url": "https://invoice.stripe.com/i/test",
                "invoice_pdf": "https://pay.stripe.com/invoice/test/pdf",
                "lines": {"data": [{"period": {"start": PERIOD_START, "end": PERIOD_END}}]},
            }
        },
    }


def subscription_updated_event(customer="cus_123", reason="too_expensive", canceled_at=None, cancel_at=PERIOD_END, status="active"):
    return {
        "id": "evt_sub",
        "type": "customer.subscription.updated",
        "data": {
            "object": {
                "id": "sub_123",
                "object": "subscription",
                "customer": customer,
                "status": status,
                "cancel_at": cancel_at,
                "canceled_at": canceled_at,
                "cancellation_details": {"feedback": "too_expensive", "reason": reason, "comment": "pricey"},
            }
        },
    }


def checkout_completed_event(email="ana@example.com", session_id="cs_test_123"):
    return {
        "id": "evt_cs",
        "type": "checkout.session.completed",
        "data": {"object": {"id": session_id, "object": "checkout.session", "customer_details": {"email": email}}},
    }

# stripe_gateway.py
# Thin wrapper over the Stripe SDK: customers, checkout and billing-portal
# sessions, subscription listing and webhook signature checks.
import json
import logging
import os
from typing import Any, Dict, Optional

import stripe

log = logging.getLogger("payments")

# ------------------------- Environment / Config ------------------------------

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").strip().lower()
IS_PRODUCTION = ENVIRONMENT == "production"

STRIPE_SECRET_KEY = (
    os.getenv("STRIPE_SECRET_KEY_LIVE", "") if IS_PRODUCTION else os.getenv("STRIPE_SECRET_KEY_TEST", "")
).strip()
STRIPE_PRICE_ID = (
    os.getenv("STRIPE_CHECKOUT_PRICE_ID_PROD", "") if IS_PRODUCTION else os.getenv("STRIPE_CHECKOUT_PRICE_ID_DEV", "")
).strip()
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "").strip()
WEBHOOK_TOLERANCE_SECONDS = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", "300"))

TRIAL_PERIOD_DAYS = int(os.getenv("STRIPE_TRIAL_DAYS", "7"))
APP_URL = os.getenv("APP_URL", "http://localhost:3000").rstrip("/")
LOCALE = "en"

stripe.api_key = STRIPE_SECRET_KEY or None
if not STRIPE_SECRET_KEY:
    log.warning("Stripe secret key not set for environment=%s; billing routes will refuse requests.", ENVIRONMENT)


class WebhookVerificationError(Exception):
    pass


def is_configured() -> bool:
    return bool(STRIPE_SECRET_KEY and STRIPE_PRICE_ID)


# ------------------------- Customers -----------------------------------------

def create_customer(email: str, name: Optional[str]) -> Any:
    return stripe.Customer.create(email=email, name=name)


def retrieve_customer(customer_id: str) -> Any:
    return stripe.Customer.retrieve(customer_id)


# ------------------------- Sessions ------------------------------------------
# No idempotency keys: a retried request creates another session. Unused
# sessions expire on Stripe's side, and only the newest id is kept locally.

def create_checkout_session(customer_id: str, with_trial: bool) -> Any:
    params: Dict[str, Any] = {
        "mode": "subscription",
        "customer": customer_id,
        "line_items": [{"price": STRIPE_PRICE_ID, "quantity": 1}],
        "locale": LOCALE,
        # Stripe fills the placeholder; create-password uses it to prove ownership
        "success_url": f"{APP_URL}/app?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": APP_URL,
    }
    if with_trial:
        params["subscription_data"] = {"trial_period_days": TRIAL_PERIOD_DAYS}
    return stripe.checkout.Session.create(**params)


def create_billing_portal_session(customer_id: str, return_path: str = "/profile") -> Any:
    return stripe.billing_portal.Session.create(
        customer=customer_id,
        return_url=f"{APP_URL}{return_path}",
        locale=LOCALE,
    )


LIVE_SUBSCRIPTION_STATUSES = {"active", "trialing"}


def has_active_subscription(customer_id: str) -> bool:
    # a trial is a live subscription too; status="active" alone would miss it
    subscriptions = stripe.Subscription.list(customer=customer_id, status="all", limit=100)
    return any(getattr(s, "status", None) in LIVE_SUBSCRIPTION_STATUSES for s in subscriptions.data)


# ------------------------- Webhooks ------------------------------------------

def verify_webhook(payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
    """
    Check the Stripe-Signature header against the raw body and return the
    decoded event envelope. Raises WebhookVerificationError on any mismatch.
    """
    if not signature:
        raise WebhookVerificationError("Missing Stripe-Signature header")
    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise WebhookVerificationError("Webhook body is not valid UTF-8") from e
    try:
        stripe.WebhookSignature.verify_header(
            body, signature, STRIPE_WEBHOOK_SECRET, WEBHOOK_TOLERANCE_SECONDS
        )
    except stripe.SignatureVerificationError as e:
        raise WebhookVerificationError(str(e)) from e
    try:
        return json.loads(body)
    except ValueError as e:
        raise WebhookVerificationError("Webhook body is not valid JSON") from e

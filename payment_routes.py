from __future__ import annotations
import logging
from datetime import datetime
from typing import Optional

import stripe
from fastapi import APIRouter, HTTPException, Request, Depends
from sqlalchemy.orm import Session

from db import get_db, User
from auth import generate_api_key, get_user_by_email
import stripe_gateway
from stripe_gateway import WebhookVerificationError
from webhook_sync import process_event

log = logging.getLogger("payments")
router = APIRouter(prefix="/api/payments", tags=["payments"])

MODE = "stripe"

# ------------------------- Helpers ------------------------------------------

def _header(request: Request, name: str) -> str:
    # the frontend sends snake_case header names; accept the dashed form too
    value = request.headers.get(name) or request.headers.get(name.replace("_", "-")) or ""
    return value.strip()

def _require_configured() -> None:
    if not stripe_gateway.is_configured():
        raise HTTPException(500, "Stripe configuration not found")

def _gateway_error(e: stripe.StripeError, action: str) -> HTTPException:
    msg = getattr(e, "user_message", None) or str(e)
    if isinstance(e, stripe.InvalidRequestError):
        return HTTPException(400, f"{action} failed: {msg}")
    return HTTPException(502, f"Stripe error: {msg}")

def _upsert_account(db: Session, email: str, name: str, customer_id: str, trial_finished: bool) -> User:
    user = get_user_by_email(db, email)
    if not user:
        user = User(email=email, api_key=generate_api_key(), created_at=datetime.utcnow())
        db.add(user)
    if name:
        user.name = name
    user.stripe_customer_id = customer_id
    user.testing_subscription_finished = trial_finished
    user.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(user)
    return user

def _resolve_customer_id(db: Session, email: str, name: str, explicit_id: Optional[str]) -> str:
    """
    Priority:
      1) customer id sent by the client
      2) customer id stored on the account
      3) a new customer, saved on the account
    """
    if explicit_id:
        return stripe_gateway.retrieve_customer(explicit_id).id
    existing = get_user_by_email(db, email)
    if existing and existing.stripe_customer_id:
        return stripe_gateway.retrieve_customer(existing.stripe_customer_id).id
    customer = stripe_gateway.create_customer(email, name)
    _upsert_account(db, email, name, customer.id, trial_finished=True)
    return customer.id

# ------------------------- Routes -------------------------------------------

@router.get("/config")
def payments_config():
    return {
        "ok": True,
        "mode": MODE,
        "configured": stripe_gateway.is_configured(),
        "environment": stripe_gateway.ENVIRONMENT,
        "trial_days": stripe_gateway.TRIAL_PERIOD_DAYS,
    }

@router.get("/checkout")
def create_checkout(request: Request, db: Session = Depends(get_db)):
    """
    Start a subscription. A caller who has not used the trial yet gets a
    fresh customer and a checkout with the trial period; anyone else checks
    out without a trial on their existing customer.
    """
    _require_configured()

    email = _header(request, "email").lower()
    name = _header(request, "name")
    if not email:
        raise HTTPException(400, "email header is required")
    trial_finished = _header(request, "stripe_testing_subscription_finished").lower() != "false"

    try:
        if not trial_finished:
            customer = stripe_gateway.create_customer(email, name)
            user = _upsert_account(db, email, name, customer.id, trial_finished=False)
            session = stripe_gateway.create_checkout_session(customer.id, with_trial=True)
            user.stripe_checkout_session_id = session.id
            db.commit()
        else:
            customer_id = _resolve_customer_id(db, email, name, _header(request, "stripe_customer_id") or None)
            session = stripe_gateway.create_checkout_session(customer_id, with_trial=False)
    except stripe.StripeError as e:
        db.rollback()
        log.error("Checkout session for %s failed: %s", email, e)
        raise _gateway_error(e, "Checkout") from e

    log.info("Checkout session %s created for %s (trial=%s)", session.id, email, not trial_finished)
    return {"stripe_checkout_url": session.url}

@router.get("/billing-portal")
def billing_portal(request: Request):
    customer_id = _header(request, "stripe_customer_id")
    if not customer_id:
        raise HTTPException(400, "stripe_customer_id header is required")
    if not stripe_gateway.STRIPE_SECRET_KEY:
        raise HTTPException(500, "Stripe configuration not found")

    try:
        portal = stripe_gateway.create_billing_portal_session(customer_id, return_path="/profile")
    except stripe.StripeError as e:
        log.error("Billing portal for %s failed: %s", customer_id, e)
        raise _gateway_error(e, "Billing portal") from e

    return {"success": True, "stripe_billing_portal_session_url": portal.url}

# -------------------------- Webhook (authoritative) --------------------------

@router.post("/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """
    checkout.session.completed      => remember checkout session id
    invoice.finalized (paid)        => subscription active, trial over
    customer.subscription.updated   => cancellation details
    invoice.paid                    => billing portal link; trial start when amount is 0
    Always answers 200 once the signature checks out.
    """
    if not stripe_gateway.STRIPE_WEBHOOK_SECRET:
        raise HTTPException(503, "Webhook secret not configured")

    body = await request.body()
    try:
        event = stripe_gateway.verify_webhook(body, request.headers.get("Stripe-Signature"))
    except WebhookVerificationError as e:
        log.warning("Rejected webhook: %s", e)
        raise HTTPException(400, "Invalid signature")

    return process_event(db, event)

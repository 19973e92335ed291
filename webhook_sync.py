# webhook_sync.py
"""
Applies Stripe webhook events to account entitlement fields.

Each event type is handled on its own; Stripe sends several of them for one
billing action (checkout completes, invoice is finalized, invoice is paid).
Every field write is an absolute set, so replaying an event leaves the
account exactly as a single delivery did.

Failures never reach Stripe as an error status: the caller gets a
``{"success": False}`` body with HTTP 200 and the event is not redelivered.
"""
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session

import stripe_gateway
from auth import active_users, get_user_by_email
from db import User, Subscription, WebhookLog
from entitlements import apply_transition

log = logging.getLogger("webhooks")

PLAN_PRICE_CENTS = int(os.getenv("PLAN_PRICE_CENTS", "4990"))


class AccountNotFound(LookupError):
    pass


# ------------------------- Helpers ------------------------------------------

def _ts(epoch: Optional[int]) -> Optional[datetime]:
    # Stripe timestamps are epoch seconds
    return datetime.fromtimestamp(epoch, tz=timezone.utc) if epoch else None


def _first_line_period(obj: Dict[str, Any]) -> Tuple[Optional[datetime], Optional[datetime]]:
    period = obj["lines"]["data"][0]["period"]
    return _ts(period.get("start")), _ts(period.get("end"))


def _account_by_email(db: Session, email: Optional[str]) -> User:
    user = get_user_by_email(db, email.strip().lower()) if email else None
    if not user:
        raise AccountNotFound(f"No account for email={email!r}")
    return user


def _account_by_customer(db: Session, customer_id: Optional[str]) -> User:
    user = None
    if customer_id:
        user = active_users(db).filter(User.stripe_customer_id == customer_id).first()
    if not user:
        raise AccountNotFound(f"No account for customer={customer_id!r}")
    return user


def _is_paid_invoice(amount_paid: Optional[int]) -> bool:
    amount = amount_paid or 0
    return amount == PLAN_PRICE_CENTS or amount > 0


# ------------------------- Handlers -----------------------------------------

def _checkout_session_completed(db: Session, event: Dict[str, Any], obj: Dict[str, Any]) -> None:
    email = (obj.get("customer_details") or {}).get("email")
    user = _account_by_email(db, email)
    user.stripe_checkout_session_id = obj.get("id")
    user.updated_at = datetime.utcnow()


def _invoice_finalized(db: Session, event: Dict[str, Any], obj: Dict[str, Any]) -> None:
    if not _is_paid_invoice(obj.get("amount_paid")):
        return

    user = _account_by_email(db, obj.get("customer_email"))
    start, end = _first_line_period(obj)

    user.stripe_customer_id = obj.get("customer")
    user.some_subscription_active = True
    user.testing_subscription_finished = True
    user.testing_subscription = False
    user.stripe_hosted_invoice_url = obj.get("hosted_invoice_url")
    user.stripe_invoice_pdf = obj.get("invoice_pdf")
    user.testing_start_at = None
    user.testing_end_at = None
    user.subscription_start_at = start
    user.subscription_end_at = end

    user.canceled_subscription = False
    user.subscription_canceled_feedback = None
    user.subscription_canceled_reason = None
    user.subscription_canceled_comment = None
    user.subscription_cancel_at = None
    user.subscription_canceled_at = None

    apply_transition(user, "invoice.finalized", obj)
    user.updated_at = datetime.utcnow()


def _subscription_updated(db: Session, event: Dict[str, Any], obj: Dict[str, Any]) -> None:
    # Any update counts as a cancellation signal; plan changes are not told apart.
    user = _account_by_customer(db, obj.get("customer"))
    details = obj.get("cancellation_details") or {}

    user.canceled_subscription = True
    user.subscription_canceled_feedback = details.get("feedback")
    user.subscription_canceled_reason = details.get("reason")
    user.subscription_canceled_comment = details.get("comment")
    user.subscription_canceled_at = _ts(obj.get("canceled_at"))
    user.subscription_cancel_at = _ts(obj.get("cancel_at"))

    apply_transition(user, "customer.subscription.updated", obj)
    user.updated_at = datetime.utcnow()


def _invoice_paid(db: Session, event: Dict[str, Any], obj: Dict[str, Any]) -> None:
    portal = stripe_gateway.create_billing_portal_session(obj.get("customer"), return_path="/dashboard")

    user = _account_by_email(db, obj.get("customer_email"))
    user.stripe_billing_portal_url = portal.url

    if obj.get("amount_paid") == 0:
        start, end = _first_line_period(obj)
        user.stripe_customer_id = obj.get("customer")
        user.some_subscription_active = True
        user.testing_subscription_finished = False
        user.testing_subscription = True
        user.stripe_hosted_invoice_url = obj.get("hosted_invoice_url")
        user.stripe_invoice_pdf = obj.get("invoice_pdf")
        user.testing_start_at = start
        user.testing_end_at = end
        apply_transition(user, "invoice.paid", obj)

    user.updated_at = datetime.utcnow()

    db.add(Subscription(
        customer_id=obj.get("customer"),
        customer_name=obj.get("customer_name") or "",
        customer_email=obj.get("customer_email"),
        complete_log=json.dumps(event),
    ))


HANDLERS: Dict[str, Callable[[Session, Dict[str, Any], Dict[str, Any]], None]] = {
    "checkout.session.completed": _checkout_session_completed,
    "invoice.finalized": _invoice_finalized,
    "customer.subscription.updated": _subscription_updated,
    "invoice.paid": _invoice_paid,
}


# ------------------------- Entry point --------------------------------------

def _record_webhook(db: Session, event: Dict[str, Any]) -> None:
    db.add(WebhookLog(json=json.dumps(event)))


def process_event(db: Session, event: Dict[str, Any]) -> Dict[str, Any]:
    event_type = event.get("type", "")
    obj = ((event.get("data") or {}).get("object")) or {}

    try:
        handler = HANDLERS.get(event_type)
        if handler:
            handler(db, event, obj)
        else:
            log.info("Ignoring webhook type=%s", event_type)
        _record_webhook(db, event)
        db.commit()
        return {"success": True, "status": 200}
    except Exception:
        db.rollback()
        log.exception("Webhook %s (%s) failed", event_type, event.get("id", "?"))

    # keep the raw payload even when handling failed
    try:
        _record_webhook(db, event)
        db.commit()
    except Exception:
        db.rollback()
        log.exception("Could not store webhook log for %s", event_type)
    return {"success": False, "status": 500, "error": "Webhook processing failed"}

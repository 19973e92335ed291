# entitlements.py
"""
Subscription state for an account, and the gate that paid features sit behind.

The users table still carries the individual Stripe flags (trial running,
some subscription active, canceled, ...). Those flags alone can drift into
combinations that mean nothing, so every webhook also moves an explicit
state along a fixed set of transitions:

    invoice.paid (amount 0)           -> trialing
    invoice.finalized (amount > 0)    -> active
    customer.subscription.updated     -> canceling | canceled
    verification found no active sub  -> canceled

Any other event leaves the state where it is.
"""
import logging
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status

from auth import get_api_key_user
from db import User

log = logging.getLogger("entitlements")


class SubscriptionState(str, Enum):
    NONE = "none"
    TRIALING = "trialing"
    ACTIVE = "active"
    CANCELING = "canceling"  # scheduled to end, still paid for
    CANCELED = "canceled"


ENTITLED_STATES = {SubscriptionState.TRIALING, SubscriptionState.ACTIVE, SubscriptionState.CANCELING}

# pseudo event emitted by the subscription verification job
VERIFICATION_INACTIVE = "verification.inactive"


def transition(current: SubscriptionState, event_type: str, obj: Optional[Dict[str, Any]] = None) -> SubscriptionState:
    obj = obj or {}
    if event_type == "invoice.paid":
        return SubscriptionState.TRIALING if obj.get("amount_paid") == 0 else current
    if event_type == "invoice.finalized":
        return SubscriptionState.ACTIVE if (obj.get("amount_paid") or 0) > 0 else current
    if event_type == "customer.subscription.updated":
        if obj.get("status") == "canceled" or obj.get("canceled_at"):
            return SubscriptionState.CANCELED
        return SubscriptionState.CANCELING
    if event_type == VERIFICATION_INACTIVE:
        return SubscriptionState.CANCELED
    return current


def derive_state(user: User) -> SubscriptionState:
    """State of an account, falling back to the legacy flags for rows that predate the column."""
    if user.subscription_state:
        try:
            return SubscriptionState(user.subscription_state)
        except ValueError:
            log.warning("Unknown subscription_state %r on user %s", user.subscription_state, user.id)

    if not user.some_subscription_active:
        return SubscriptionState.CANCELED if user.canceled_subscription else SubscriptionState.NONE
    if user.canceled_subscription:
        return SubscriptionState.CANCELING
    if user.testing_subscription:
        return SubscriptionState.TRIALING
    return SubscriptionState.ACTIVE


def apply_transition(user: User, event_type: str, obj: Optional[Dict[str, Any]] = None) -> SubscriptionState:
    new_state = transition(derive_state(user), event_type, obj)
    user.subscription_state = new_state.value
    return new_state


def is_entitled(user: User) -> bool:
    return derive_state(user) in ENTITLED_STATES


def require_entitlement(current_user: User = Depends(get_api_key_user)) -> User:
    if not is_entitled(current_user):
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail="An active subscription or trial is required",
        )
    return current_user

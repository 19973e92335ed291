# subscription_verifier.py
# Periodic reconciliation: accounts the webhooks left marked as subscribed
# are checked against Stripe and downgraded when nothing is live anymore.
import logging
from datetime import datetime

import stripe
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import stripe_gateway
from db import User
from entitlements import VERIFICATION_INACTIVE, apply_transition

log = logging.getLogger("cron")


def verify_users_subscriptions_active(db: Session) -> int:
    """Returns how many accounts were downgraded."""
    users = (
        db.query(User)
        .filter(User.stripe_customer_id.isnot(None), User.some_subscription_active.is_(True))
        .all()
    )

    updated = 0
    for user in users:
        try:
            if stripe_gateway.has_active_subscription(user.stripe_customer_id):
                continue
        except stripe.StripeError as e:
            # one bad customer must not stop the sweep
            log.error("Stripe check failed for %s: %s", user.email, e)
            continue

        email = user.email
        try:
            user.some_subscription_active = False
            apply_transition(user, VERIFICATION_INACTIVE)
            user.updated_at = datetime.utcnow()
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            log.exception("Could not downgrade %s", email)
            continue
        updated += 1
        log.info("Updated user %s - no active subscriptions found", email)

    return updated

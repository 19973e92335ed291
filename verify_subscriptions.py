# verify_subscriptions.py
"""
Run the subscription verification sweep once, outside the web process.

Usage:
  export DATABASE_URL="<postgres url>"
  export STRIPE_SECRET_KEY_LIVE="sk_live_..."  ENVIRONMENT=production
  python verify_subscriptions.py
  python verify_subscriptions.py --dry-run
"""

import argparse
import logging
import os

import stripe_gateway


def main(argv=None):
    parser = argparse.ArgumentParser()
    parser.add_argument("--dry-run", action="store_true", help="list accounts that would be downgraded")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"))
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper())

    if not os.getenv("DATABASE_URL"):
        raise SystemExit("DATABASE_URL env var is required")
    if not stripe_gateway.STRIPE_SECRET_KEY:
        raise SystemExit("Stripe secret key is required (STRIPE_SECRET_KEY_LIVE / STRIPE_SECRET_KEY_TEST)")

    # db reads DATABASE_URL at import
    from db import SessionLocal, User
    from subscription_verifier import verify_users_subscriptions_active

    db = SessionLocal()
    try:
        if args.dry_run:
            users = (
                db.query(User)
                .filter(User.stripe_customer_id.isnot(None), User.some_subscription_active.is_(True))
                .all()
            )
            stale = [u.email for u in users if not stripe_gateway.has_active_subscription(u.stripe_customer_id)]
            for email in stale:
                print(f"would downgrade: {email}")
            print(f"OK: {len(stale)} account(s) would be downgraded")
            return len(stale)

        updated = verify_users_subscriptions_active(db)
        print(f"OK: {updated} account(s) downgraded")
        return updated
    finally:
        db.close()
        SessionLocal.remove()


if __name__ == "__main__":
    main()

# cron_routes.py
import os
import hmac
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from db import get_db
from subscription_verifier import verify_users_subscriptions_active

log = logging.getLogger("cron")
router = APIRouter(prefix="/api/cron", tags=["cron"])

CRON_SECRET = os.getenv("CRON_SECRET", "")


def _require_cron_secret(request: Request) -> None:
    # an unset secret locks the route instead of opening it
    header = request.headers.get("authorization") or ""
    if not CRON_SECRET or not hmac.compare_digest(header, f"Bearer {CRON_SECRET}"):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/verify-subscriptions")
def verify_subscriptions(request: Request, db: Session = Depends(get_db)):
    _require_cron_secret(request)
    updated = verify_users_subscriptions_active(db)
    log.info("Subscription verification done: %s account(s) downgraded", updated)
    return {
        "success": True,
        "message": "Subscription verification completed",
        "updatedUsers": updated,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

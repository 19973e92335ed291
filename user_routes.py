# user_routes.py
import os
import re
import time
import uuid
import logging
import smtplib
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db import get_db, Expense, User
from auth import (
    active_users, authenticate_user, create_access_token, generate_api_key,
    get_current_user, get_password_hash, get_user_by_email,
)
from entitlements import derive_state, is_entitled
from mailer import send_password_reset_email
from rate_limiter import RateLimiter

log = logging.getLogger("users")
router = APIRouter(prefix="/api", tags=["users"])

APP_URL = os.getenv("APP_URL", "http://localhost:3000").rstrip("/")
RESET_TOKEN_TTL = timedelta(hours=1)
RESET_TOKEN_LENGTH = 32

reset_limiter = RateLimiter(
    max_requests=int(os.getenv("RESET_RATE_LIMIT_MAX", "3")),
    window_seconds=float(os.getenv("RESET_RATE_LIMIT_WINDOW", "3600")),
)

EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")
SPECIAL_CHARS = set("!@#$%^&*()_+-=[]{};':\"\\|,.<>/?")

# ------------------------- Validation ---------------------------------------

def password_problems(password: str) -> List[str]:
    problems = []
    if len(password or "") < 8:
        problems.append("Password must be at least 8 characters")
    if not re.search(r"[A-Z]", password or ""):
        problems.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password or ""):
        problems.append("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", password or ""):
        problems.append("Password must contain at least one number")
    if not any(ch in SPECIAL_CHARS for ch in (password or "")):
        problems.append("Password must contain at least one special character")
    return problems

def _strong_password(v: str) -> str:
    problems = password_problems(v)
    if problems:
        raise ValueError("; ".join(problems))
    return v

def format_name(name: str) -> str:
    return " ".join(part[:1].upper() + part[1:].lower() for part in name.strip().split(" "))

# ------------------------- Schemas ------------------------------------------

class SignupIn(BaseModel):
    name: str
    email: EmailStr
    password: str

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("name cannot be empty")
        return v

    @field_validator("password")
    @classmethod
    def password_min_len(cls, v: str) -> str:
        if v is None or len(v) < 8:
            raise ValueError("password must be at least 8 characters")
        return v

class UpdateProfileIn(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def name_length(cls, v: str) -> str:
        v = (v or "").strip()
        if len(v) < 4:
            raise ValueError("Name is required")
        if len(v) > 16:
            raise ValueError("Name must be at most 16 characters")
        return format_name(v)

class UpdatePasswordIn(BaseModel):
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return _strong_password(v)

class CreatePasswordIn(BaseModel):
    email: EmailStr
    session_id: str
    password: str

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return _strong_password(v)

class ResetRequestIn(BaseModel):
    email: str

class ResetPasswordIn(BaseModel):
    token: str
    password: str

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return _strong_password(v)

# ------------------------- Helpers ------------------------------------------

def _profile_dict(u: User) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "name": u.name,
        "api_key": u.api_key,
        "has_password": bool(u.hashed_password),
        "stripe_customer_id": u.stripe_customer_id,
        "stripe_billing_portal_url": u.stripe_billing_portal_url,
        "stripe_hosted_invoice_url": u.stripe_hosted_invoice_url,
        "stripe_invoice_pdf": u.stripe_invoice_pdf,
        "testing_subscription": bool(u.testing_subscription),
        "testing_subscription_finished": bool(u.testing_subscription_finished),
        "testing_end_at": u.testing_end_at.isoformat() if u.testing_end_at else None,
        "some_subscription_active": bool(u.some_subscription_active),
        "subscription_end_at": u.subscription_end_at.isoformat() if u.subscription_end_at else None,
        "canceled_subscription": bool(u.canceled_subscription),
        "subscription_cancel_at": u.subscription_cancel_at.isoformat() if u.subscription_cancel_at else None,
        "subscription_state": derive_state(u).value,
        "entitled": is_entitled(u),
        "created_at": u.created_at.isoformat() if u.created_at else None,
    }

def _token_response(u: User) -> dict:
    return {
        "success": True,
        "access_token": create_access_token(u),
        "token_type": "bearer",
        "api_key": u.api_key,
    }

async def _read_credentials(request: Request) -> Tuple[str, str]:
    # JSON for the SPA, form for OAuth2PasswordRequestForm-style clients
    ctype = (request.headers.get("content-type") or "").lower()
    try:
        if ctype.startswith("application/json"):
            data = await request.json()
        else:
            data = await request.form()
    except ValueError:
        return "", ""
    email = (data.get("email") or data.get("username") or "").strip().lower()
    return email, data.get("password") or ""

def _user_by_reset_token(db: Session, token: str) -> User:
    if not token or len(token) != RESET_TOKEN_LENGTH:
        raise HTTPException(status_code=400, detail="Invalid token")
    user = (
        active_users(db)
        .filter(User.reset_password_token == token, User.reset_password_token_expires_at > datetime.utcnow())
        .first()
    )
    if not user:
        raise HTTPException(status_code=400, detail="Invalid or expired token")
    return user

# ------------------------- Auth ---------------------------------------------

@router.post("/signup", status_code=201)
def signup(payload: SignupIn, db: Session = Depends(get_db)):
    email = payload.email.strip().lower()
    if get_user_by_email(db, email):
        raise HTTPException(status_code=400, detail="User already exists")

    user = User(
        email=email,
        name=payload.name,
        hashed_password=get_password_hash(payload.password),
        api_key=generate_api_key(),
        created_at=datetime.utcnow(),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail="User already exists")
    db.refresh(user)

    log.info("Signup %s", email)
    out = _token_response(user)
    out["user"] = {"id": user.id, "email": user.email, "name": user.name}
    return out

@router.post("/login")
async def login(request: Request, db: Session = Depends(get_db)):
    """
    Accepts JSON or form bodies. Soft-deleted accounts never authenticate.
    """
    email, password = await _read_credentials(request)
    if not email or not password:
        raise HTTPException(status_code=400, detail="Email and password required")

    try:
        user = authenticate_user(db, email, password)
    except ValueError:
        raise HTTPException(
            status_code=401,
            detail="This account has no password yet. Create one from the link shown after checkout.",
        )
    if not user:
        raise HTTPException(status_code=401, detail="Incorrect email or password")

    return _token_response(user)

@router.get("/profile")
def profile(current: User = Depends(get_current_user)):
    return {"success": True, "user": _profile_dict(current)}

# ------------------------- Account ------------------------------------------

@router.post("/user/update-profile")
def update_profile(payload: UpdateProfileIn, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    current.name = payload.name
    current.updated_at = datetime.utcnow()
    db.commit()
    return {"success": True, "name": current.name}

@router.post("/user/update-password")
def update_password(payload: UpdatePasswordIn, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    current.hashed_password = get_password_hash(payload.new_password)
    current.updated_at = datetime.utcnow()
    db.commit()
    return {"success": True, "message": "Password updated successfully"}

@router.post("/user/create-password")
def create_password(payload: CreatePasswordIn, db: Session = Depends(get_db)):
    """
    First password for an account created at checkout. The checkout session id
    Stripe appended to the success URL is the proof of ownership.
    """
    user = get_user_by_email(db, payload.email.strip().lower())
    if not user or not user.stripe_checkout_session_id or user.stripe_checkout_session_id != payload.session_id:
        raise HTTPException(status_code=404, detail="User not found")
    if user.hashed_password:
        raise HTTPException(status_code=400, detail="Password already created; use password reset instead")

    user.hashed_password = get_password_hash(payload.password)
    user.api_key = generate_api_key()
    user.updated_at = datetime.utcnow()
    db.commit()
    log.info("Password created for %s", user.email)
    return _token_response(user)

@router.post("/user/regenerate-api-key")
def regenerate_api_key(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    current.api_key = generate_api_key()
    current.updated_at = datetime.utcnow()
    db.commit()
    return {"success": True, "api_key": current.api_key}

@router.post("/user/delete-account")
def delete_account(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    # frees the email for a new signup; the row itself is kept
    original = current.email
    now = datetime.utcnow()
    current.email = f"deleted_{int(time.time() * 1000)}_{original}"
    # expenses are owned by email; move them off the freed address
    db.query(Expense).filter(Expense.user_email == original).update(
        {Expense.user_email: current.email}, synchronize_session=False
    )
    current.deleted_at = now
    current.updated_at = now
    db.commit()
    log.info("Soft-deleted account %s", original)
    return {"success": True}

# ------------------------- Password reset -----------------------------------

@router.post("/reset-password/request")
def reset_password_request(payload: ResetRequestIn, db: Session = Depends(get_db)):
    email = (payload.email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise HTTPException(status_code=400, detail="Invalid email")

    limit = reset_limiter.check(email)
    if not limit.success:
        retry_after = max(1, int(limit.reset_at - time.time()))
        raise HTTPException(
            status_code=429,
            detail="Too many reset requests. Try again later.",
            headers={"Retry-After": str(retry_after)},
        )

    user = get_user_by_email(db, email)
    if not user:
        # same answer as for a known email
        return {"success": True}

    token = uuid.uuid4().hex
    user.reset_password_token = token
    user.reset_password_token_expires_at = datetime.utcnow() + RESET_TOKEN_TTL
    user.updated_at = datetime.utcnow()
    db.commit()

    link = f"{APP_URL}/reset-password?token={token}"
    try:
        send_password_reset_email(user.email, user.name, link)
    except (smtplib.SMTPException, OSError) as e:
        log.error("Reset email to %s failed: %s", user.email, e)
        raise HTTPException(status_code=500, detail="Error sending password reset email")
    return {"success": True}

@router.get("/reset-password/verify")
def reset_password_verify(token: Optional[str] = Query(None), db: Session = Depends(get_db)):
    _user_by_reset_token(db, token or "")
    return {"success": True, "valid": True}

@router.post("/reset-password/reset")
def reset_password(payload: ResetPasswordIn, db: Session = Depends(get_db)):
    user = _user_by_reset_token(db, payload.token)
    user.hashed_password = get_password_hash(payload.password)
    user.reset_password_token = None
    user.reset_password_token_expires_at = None
    user.updated_at = datetime.utcnow()
    db.commit()
    return {"success": True}

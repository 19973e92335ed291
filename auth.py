# auth.py
import os
import uuid
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from db import get_db, User

# --- Config ---
JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-prod")
JWT_ALG = "HS256"
ACCESS_TOKEN_EXPIRE_MIN = int(os.getenv("ACCESS_TOKEN_EXPIRE_MIN", str(30 * 24 * 60)))  # 30 days
API_KEY_PREFIX = "api_key_dinherin_"
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login")
pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")


# --- Password helpers ---
def get_password_hash(password: str) -> str:
    return pwd_ctx.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_ctx.verify(plain_password, hashed_password)
    except Exception:
        return False


def generate_api_key() -> str:
    return f"{API_KEY_PREFIX}{uuid.uuid4().hex}"


# --- Lookups (soft-deleted accounts never match) ---
def active_users(db: Session):
    return db.query(User).filter(User.deleted_at.is_(None))


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return active_users(db).filter(User.email == email).first()


# --- Auth primitives ---
def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
    """
    Returns the account for a valid email/password pair, else None.
    Raises ValueError("no_password") when the account exists but was created
    without a password (checkout-created accounts).
    """
    user = get_user_by_email(db, email)
    if not user:
        return None
    hp = getattr(user, "hashed_password", None)
    if not hp:
        raise ValueError("no_password")
    if not verify_password(password, hp):
        return None
    return user


def create_access_token(user: User, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MIN) -> str:
    # subject is the row id: emails are freed again by soft delete
    to_encode = {
        "sub": str(user.id),
        "email": user.email,
        "exp": datetime.utcnow() + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALG)


def _decode_token(token: str) -> str:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
        sub: str = payload.get("sub")
        if not sub:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
        return sub
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


# --- FastAPI dependencies ---
def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    sub = _decode_token(token)
    if not sub.isdigit():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    user = active_users(db).filter(User.id == int(sub)).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


def get_api_key_user(request: Request, db: Session = Depends(get_db)) -> User:
    # header name keeps its underscore, so read it off the raw headers
    api_key = request.headers.get("API_KEY") or request.headers.get("API-KEY")
    if not api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="API_KEY header is required")
    user = active_users(db).filter(User.api_key == api_key).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")
    return user

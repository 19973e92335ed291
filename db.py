# db.py
import os
import uuid
from datetime import datetime
from sqlalchemy import create_engine, Column, Integer, String, Boolean, DateTime, Date, Text
from sqlalchemy.orm import sessionmaker, declarative_base, scoped_session

# --- DB URL normalizer (Render/Heroku compatibility) -------------------------
def _normalize_db_url(url: str) -> str:
    # Heroku-style URLs use postgres://; SQLAlchemy expects postgresql://
    return url.replace("postgres://", "postgresql://", 1) if url.startswith("postgres://") else url

DATABASE_URL = _normalize_db_url(os.getenv("DATABASE_URL", "")) or "sqlite:///./dinherin.db"

# SQLite needs this flag for multi-threaded FastAPI usage
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, pool_pre_ping=True, connect_args=connect_args)
SessionLocal = scoped_session(sessionmaker(bind=engine, autocommit=False, autoflush=False))
Base = declarative_base()

# --- Models -------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    hashed_password = Column(String(255), nullable=True)  # null for accounts created at checkout
    api_key = Column(String(64), unique=True, index=True, nullable=True)

    # Stripe linkage
    stripe_customer_id = Column(String(255), index=True, nullable=True)
    stripe_checkout_session_id = Column(String(255), nullable=True)
    stripe_billing_portal_url = Column(Text, nullable=True)
    stripe_hosted_invoice_url = Column(Text, nullable=True)
    stripe_invoice_pdf = Column(Text, nullable=True)

    # Entitlement flags, written by webhook_sync
    testing_subscription = Column(Boolean, nullable=True)           # trial running
    testing_subscription_finished = Column(Boolean, nullable=True)
    testing_start_at = Column(DateTime(timezone=True), nullable=True)
    testing_end_at = Column(DateTime(timezone=True), nullable=True)
    some_subscription_active = Column(Boolean, nullable=True)
    subscription_start_at = Column(DateTime(timezone=True), nullable=True)
    subscription_end_at = Column(DateTime(timezone=True), nullable=True)
    canceled_subscription = Column(Boolean, nullable=True)
    subscription_canceled_feedback = Column(String(255), nullable=True)
    subscription_canceled_reason = Column(String(255), nullable=True)
    subscription_canceled_comment = Column(Text, nullable=True)
    subscription_cancel_at = Column(DateTime(timezone=True), nullable=True)
    subscription_canceled_at = Column(DateTime(timezone=True), nullable=True)
    subscription_state = Column(String(20), nullable=True)  # entitlements.SubscriptionState

    reset_password_token = Column(String(64), index=True, nullable=True)
    reset_password_token_expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)

class Expense(Base):
    __tablename__ = "expenses"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # owner is keyed by email, not id
    user_email = Column(String(255), index=True, nullable=False)
    title = Column(String(255), nullable=False)
    amount = Column(Integer, nullable=False)  # cents
    category_id = Column(String(50), index=True, nullable=False)
    date = Column(Date, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "amount": self.amount,
            "date": self.date.isoformat() if self.date else None,
            "category_id": self.category_id,
            "user_email": self.user_email,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

class Subscription(Base):
    """Append-only log of invoice.paid events."""
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(String(255), nullable=True)
    customer_name = Column(String(255), default="")
    customer_email = Column(String(255), nullable=True)
    complete_log = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

class WebhookLog(Base):
    """Append-only raw payload of every received webhook."""
    __tablename__ = "webhook_logs"

    id = Column(Integer, primary_key=True, index=True)
    json = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

# --- Helpers ------------------------------------------------------------------
def init_db():
    Base.metadata.create_all(bind=engine)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

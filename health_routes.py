# health_routes.py
from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db import get_db

SERVICE = "dinherin-backend"
VERSION = "1.0.0"

router = APIRouter(tags=["health"])

# filled in by the lifespan in main.py
STARTUP = {"db_ready": False, "ok": False, "error": ""}


@router.get("/")
def root():
    return {"ok": True, "service": SERVICE, "version": VERSION}


@router.get("/api/health")
def health():
    # super fast: proves the app is mounted
    return {"status": "ok", "version": VERSION}


@router.get("/api/ready")
def ready(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        db_up = True
    except SQLAlchemyError:
        db_up = False
    return {
        "ready": db_up and STARTUP["ok"],
        "db": "up" if db_up else "down",
        "db_ready": STARTUP["db_ready"],
        "startup_ok": STARTUP["ok"],
        "startup_error": STARTUP["error"][:4000],
        "time": datetime.utcnow().isoformat() + "Z",
    }

# -*- coding: utf-8 -*-
# main.py: Dinherin backend (expenses API + Stripe subscription sync)

import os
import asyncio
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from db import init_db
from error_handlers import register_error_handlers
import health_routes
import payment_routes
import user_routes
import expense_routes
import statistics_routes
import cron_routes

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("dinherin")

# --------------------------------------------------------------------------------------
# Lifespan: resilient startup with diagnostics (appears in /api/ready)
# --------------------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Warm the DB with retries; never hard-crash the process.
    Failures are kept in health_routes.STARTUP for /api/ready.
    """
    state = health_routes.STARTUP
    tries = int(os.getenv("DB_WARMUP_TRIES", "20"))
    delay = float(os.getenv("DB_WARMUP_DELAY", "1.5"))
    try:
        for i in range(tries):
            try:
                init_db()
                state["db_ready"] = True
                break
            except Exception as e:
                logger.warning("init_db attempt %s/%s failed: %s", i + 1, tries, e)
                await asyncio.sleep(delay)
        state["ok"] = state["db_ready"]
        state["error"] = "" if state["db_ready"] else f"database not reachable after {tries} attempts"
    except Exception:
        state["ok"] = False
        state["error"] = traceback.format_exc()
        logger.error("Startup failed:\n%s", state["error"])
    yield


app = FastAPI(title="Dinherin Backend", version=health_routes.VERSION, lifespan=lifespan)
register_error_handlers(app)

# --------------------------------------------------------------------------------------
# CORS
# --------------------------------------------------------------------------------------
def _env_list(name: str) -> list:
    raw = os.getenv(name, "")
    return [o.strip() for o in raw.split(",") if o.strip()]

ALLOWED_ORIGINS = [
    "https://dinherin.com",
    "https://www.dinherin.com",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
] + _env_list("ALLOWED_ORIGINS")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=86400,
)

# --------------------------------------------------------------------------------------
# Routers
# --------------------------------------------------------------------------------------
app.include_router(health_routes.router)
app.include_router(user_routes.router)
app.include_router(expense_routes.router)
app.include_router(expense_routes.categories_router)
app.include_router(statistics_routes.router)
app.include_router(payment_routes.router)
app.include_router(cron_routes.router)

logger.info("Dinherin backend loaded; CORS origins: %s", ", ".join(ALLOWED_ORIGINS))

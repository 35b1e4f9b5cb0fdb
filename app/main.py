import logging

from fastapi import FastAPI, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.base import get_db
from app.core.config import settings
from app.core.logging import RequestIdMiddleware, configure_logging
from app.routers import users as users_router
from app.routers import habits as habits_router
from app.routers import streaks as streaks_router
from app.routers import squads as squads_router
from app.routers import admin as admin_router
from app.core.errors import (
    StreakAppException,
    streak_exception_handler,
    validation_exception_handler,
    unhandled_exception_handler,
)

configure_logging(settings.APP_ENV, settings.LOG_LEVEL)
logger = logging.getLogger("streaks.health")

app = FastAPI(
    title="Ember Streaks API",
    description=(
        "**Habit tracking with a streak consistency engine**\n\n"
        "Daily habit completions are classified as full, ember (partial) or "
        "extinguished days in one fixed civil timezone. Streaks are always "
        "re-derived from day history; freezes earned at 7-day milestones can "
        "buy back a broken gap.\n\n"
        "All error responses follow the `{code, message, details}` envelope."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# --- Middleware ---
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Exception handlers (most specific first) ---
app.add_exception_handler(StreakAppException, streak_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# --- Routers ---
app.include_router(users_router.router)
app.include_router(habits_router.router)
app.include_router(streaks_router.router)
app.include_router(squads_router.router)
app.include_router(admin_router.router)


@app.get("/health", tags=["health"], summary="Liveness plus a database round trip")
def health(db: Session = Depends(get_db)):
    """200 with the streak timezone when the DB answers, 503 otherwise."""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("health check: database unreachable", exc_info=True)
        return JSONResponse(status_code=503, content={"status": "error", "db": "unreachable"})
    return {
        "status": "ok",
        "db": "ok",
        "env": settings.APP_ENV,
        "timezone": settings.STREAK_TIMEZONE,
    }

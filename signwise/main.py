"""FastAPI application entrypoint. No business logic; only wiring, middleware and the reaper schedule."""

from dotenv import load_dotenv

load_dotenv()

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from signwise.api.v1 import router as v1_router
from signwise.core.config import configure_logging, settings
from signwise.core.database import SessionLocal
from signwise.core.scheduler import PeriodicTask, seconds_until_next_midnight
from signwise.services.reaper import ExpiryReaper

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger("signwise")


def build_token_reaper_task() -> PeriodicTask:
    """Daily sweep at 00:00 UTC, each run on its own short-lived session."""
    reaper_logger = logging.getLogger("signwise.reaper")
    reaper = ExpiryReaper(settings.TOKEN_REAPER_BATCH_SIZE, reaper_logger)

    def sweep() -> int:
        db = SessionLocal()
        try:
            return reaper.sweep(db)
        finally:
            db.close()

    return PeriodicTask(
        "token-reaper",
        sweep,
        interval=timedelta(hours=settings.TOKEN_REAPER_INTERVAL_HOURS),
        first_delay=timedelta(seconds=seconds_until_next_midnight()),
        logger=reaper_logger,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    task = build_token_reaper_task() if settings.TOKEN_REAPER_ENABLED else None
    app.state.token_reaper = task
    if task is not None:
        task.start()
    try:
        yield
    finally:
        if task is not None:
            task.stop()


app = FastAPI(
    title="Signwise API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.APP_ENV == "dev" else [settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(v1_router, prefix=settings.API_V1_PREFIX)


@app.get("/")
def root() -> dict[str, str]:
    """Root route; minimal payload for discovery."""
    return {"message": "Signwise API"}

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.db.database import dispose_engine
from app.routes import ttlock
from app.services.ttlock_service import close_ttlock_service
from app.utils.config import get_settings

logging.basicConfig(level=logging.INFO)

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if not settings.ttlock_configured:
        logger.warning("TTLock credentials are not configured; access code routes will return 503")
    yield
    await close_ttlock_service()
    await dispose_engine()


app = FastAPI(title="Rental Access Codes API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.frontend_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

app.include_router(ttlock.router, prefix="/api")


@app.get("/health")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}

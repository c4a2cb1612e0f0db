"""
FastAPI API Server.

HTTP entry point for voice reports: submission, clarification and
processing-log lookups. Notification delivery runs in its own worker.

Start with:
    uvicorn voice_intake.api_server:app --reload --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from dotenv import load_dotenv
load_dotenv(".env.local")

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from voice_intake.api.middleware import (
    RateLimitMiddleware,
    RequestIdMiddleware,
    UploadSizeMiddleware,
)
from voice_intake.api.voice import router as voice_router
from voice_intake.config import get_settings
from voice_intake.logging_config import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)

SERVICE_NAME = "voice-intake-service"
VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    logger.info(
        "api_server_starting",
        environment=settings.environment.value,
        extraction_model=settings.extraction_model,
        resolver_threshold=settings.resolver_threshold,
    )
    if not settings.openai_api_key:
        logger.warning("openai_api_key_missing")
    yield
    logger.info("api_server_stopping")


app = FastAPI(
    title="Voice Intake Service API",
    description="Turns spoken maintenance and purchase reports into structured records",
    version=VERSION,
    lifespan=lifespan,
)

# Last added runs first
app.add_middleware(RateLimitMiddleware)
app.add_middleware(UploadSizeMiddleware)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(voice_router)


@app.get("/health", tags=["System"])
async def health_check() -> dict[str, str]:
    return {"status": "ok", "service": SERVICE_NAME}


@app.get("/", tags=["System"])
async def root() -> dict[str, str]:
    return {
        "service": "Voice Intake Service",
        "version": VERSION,
        "docs": "/docs",
    }

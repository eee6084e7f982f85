#!/usr/bin/env python
"""FastAPI server for the vesper generation pipeline."""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

# Add src directory to Python path for imports
src_dir = Path(__file__).parent.parent
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import close_services, get_config
from api.job_store import close_job_store, get_job_store
from api.routers import generation
from api.schemas import HealthResponse
from utils.config import validate_config
from utils.logging import setup_logging

API_VERSION = "1.0.0"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = get_config()
    setup_logging(config.get("log_level", "INFO"), json_output=config.get("log_json", False))
    for error in validate_config(config):
        logger.warning(f"Configuration: {error}")

    await get_job_store()
    logger.info("vesper API started")
    try:
        yield
    finally:
        await close_services()
        await close_job_store()
        logger.info("vesper API stopped")


app = FastAPI(title="vesper API", version=API_VERSION, lifespan=lifespan)

# CORS middleware for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(generation.router)


@app.get("/api/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="healthy", version=API_VERSION)

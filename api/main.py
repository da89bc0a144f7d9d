"""
Client Dedupe - Duplicate detection and merge service for CRM clients
FastAPI Application Entry Point

Run with:

    client-dedupe-api    # serves on DEDUP_HOST:DEDUP_PORT (default 127.0.0.1:8010)
"""
# Load environment variables from .env file first, before any imports
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from api.routes import clients
from api.services.merge_models import StoreUnavailable
from config.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the client store on startup so schema problems surface early."""
    try:
        from api.services.client_store import get_client_store
        store = get_client_store()
        logger.info(f"Client store ready at {store.db_path}")
    except StoreUnavailable as e:
        logger.error(f"Client store unavailable at startup: {e}")

    yield  # Application runs here


app = FastAPI(
    title="Client Dedupe",
    description="Finds duplicate CRM clients by email/phone and merges them without losing linked records",
    version="0.1.0",
    lifespan=lifespan
)

# CORS middleware for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(clients.router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert validation errors to 400 with clear messages."""
    errors = exc.errors()

    # Sanitize errors for JSON serialization (convert bytes to string)
    sanitized_errors = []
    for error in errors:
        sanitized = dict(error)
        if "input" in sanitized and isinstance(sanitized["input"], bytes):
            sanitized["input"] = sanitized["input"].decode("utf-8", errors="replace")
        sanitized.pop("ctx", None)
        sanitized_errors.append(sanitized)

    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "detail": sanitized_errors}
    )


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    """The client store is down: nothing was (or could be) done."""
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": exc.kind.value, "detail": exc.message}
    )


@app.get("/health")
async def health_check():
    """Health check endpoint that verifies the client store is reachable."""
    from api.services.client_store import get_client_store

    checks = {}
    try:
        checks["client_count"] = get_client_store().count()
        checks["store_reachable"] = True
    except StoreUnavailable:
        checks["store_reachable"] = False

    return {
        "status": "healthy" if checks["store_reachable"] else "degraded",
        "service": "client-dedupe",
        "default_country_code": settings.country_code,
        "checks": checks,
    }


def run():
    """Serve the API on the configured host and port."""
    import uvicorn
    uvicorn.run("api.main:app", host=settings.host, port=settings.port)

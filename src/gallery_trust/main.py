# src/gallery_trust/main.py
"""Main entry point for the gallery trust-and-safety service."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from gallery_trust.api.v1 import (
    account_router,
    admin_router,
    messages_router,
    system_router,
)
from gallery_trust.core.errors import TrustSafetyError
from gallery_trust.core.settings import settings

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Gallery Trust API",
    description="Rate limiting, abuse detection and message moderation for the gallery platform",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    expose_headers=[
        "X-RateLimit-Limit",
        "X-RateLimit-Remaining",
        "X-RateLimit-Reset",
        "Retry-After",
    ],
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(messages_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")
app.include_router(account_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.exception_handler(TrustSafetyError)
async def trust_safety_error_handler(request: Request, exc: TrustSafetyError) -> JSONResponse:
    """Render service errors as ``{"error": {...}}`` with their status and headers."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info(
            "%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.code
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_payload(),
        headers=exc.headers or None,
    )


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("gallery_trust.main:app", host="0.0.0.0", port=8000, reload=settings.debug)

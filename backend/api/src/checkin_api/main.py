"""FastAPI application for the lane check-in API.

This package provides REST endpoints for:
- Health checks
- Lane check-in (start, scan, selection, assignment, payment, agreement)
- Inventory and waitlist information
- Staff sign-in
and a WebSocket feed of lane events.
"""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from checkin_api.dependencies import get_event_bus
from checkin_api.exceptions import register_exception_handlers
from checkin_api.middleware.correlation import CorrelationIdMiddleware
from checkin_api.routes.auth import router as auth_router
from checkin_api.routes.checkin import router as checkin_router
from checkin_api.routes.inventory import router as inventory_router
from checkin_api.routes.payments import router as payments_router
from checkin_api.routes.ws import router as ws_router
from checkin_core.utils.logging import configure_logging, get_logger

configure_logging(os.getenv("LOG_LEVEL", "INFO"))
logger = get_logger(__name__)

DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run the lane event bus for the lifetime of the app."""
    bus = get_event_bus()
    await bus.start()
    app.state.event_bus = bus
    try:
        yield
    finally:
        await bus.stop()


app = FastAPI(
    title="Lane Check-in API",
    description="REST API for lane check-in, resource assignment and agreements",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.getenv("CORS_ALLOWED_ORIGINS", DEFAULT_CORS_ORIGINS).split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

# Register exception handlers for consistent error responses
register_exception_handlers(app)

# Include routers under /api prefix
app.include_router(checkin_router, prefix="/api")
app.include_router(payments_router, prefix="/api")
app.include_router(inventory_router, prefix="/api")
app.include_router(auth_router, prefix="/api")
app.include_router(ws_router, prefix="/api")


@app.get("/api/ping")
async def ping() -> dict[str, Any]:
    """Health check endpoint at /api/ping."""
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "service": "checkin-api",
    }


# Lambda handler - Mangum wraps FastAPI for AWS Lambda + API Gateway.
# Events are only delivered to subscribers of this process.
handler = Mangum(app, lifespan="auto")


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = True) -> None:
    """Run the FastAPI server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to listen on (default: 8080)
        reload: Enable hot reload for development (default: True)
    """
    import uvicorn

    if reload:
        # Use string reference for reload mode (uvicorn requirement)
        uvicorn.run(
            "checkin_api.main:app",
            host=host,
            port=port,
            reload=True,
            reload_dirs=["api/src", "core/src"],
        )
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
